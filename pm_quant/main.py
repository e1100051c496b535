from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Sequence

from pm_quant.backtester import STRATEGIES, BacktestConfig, strategy_settings_from_dict
from pm_quant.config import load_settings
from pm_quant.engine import QuantEngine
from pm_quant.logging_setup import configure_logging
from pm_quant.models import KellyInput, MarketSnapshot

LOGGER = logging.getLogger(__name__)


def _market_from_dict(raw: dict[str, Any]) -> MarketSnapshot:
    prices = raw.get("outcome_prices", raw.get("outcomePrices"))
    if isinstance(prices, str):
        prices = json.loads(prices)
    outcomes = raw.get("outcomes") or ("Yes", "No")
    if isinstance(outcomes, str):
        outcomes = json.loads(outcomes)
    return MarketSnapshot(
        market_id=str(raw.get("id") or raw.get("market_id")),
        question=str(raw.get("question") or ""),
        outcome_prices=tuple(float(p) for p in prices),
        volume=float(raw.get("volume") or 0.0),
        liquidity=float(raw.get("liquidity") or 0.0),
        active=bool(raw.get("active", True)),
        outcomes=tuple(str(o) for o in outcomes),
    )


def load_markets(path: str) -> List[MarketSnapshot]:
    """Read a JSON list of market snapshots (Gamma-style or snake_case keys)."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("markets", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a JSON list of markets")
    return [_market_from_dict(item) for item in payload if isinstance(item, dict)]


def _parse_setting(values: Sequence[str]) -> dict[str, float]:
    parsed: dict[str, float] = {}
    for item in values:
        if "=" not in item:
            raise ValueError(f"expected key=value, got {item!r}")
        key, value = item.split("=", 1)
        parsed[key.strip()] = float(value)
    return parsed


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Prediction-market strategy and risk engine",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override PMQ_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    backtest = sub.add_parser("backtest", help="Run a backtest over synthetic history")
    backtest.add_argument("--markets", required=True, help="JSON file of market snapshots")
    backtest.add_argument("--strategy", choices=STRATEGIES, default="spike")
    backtest.add_argument("--days", type=int, default=None, help="Synthetic history length")
    backtest.add_argument("--capital", type=float, default=10_000.0)
    backtest.add_argument("--seed", type=int, default=None)
    backtest.add_argument(
        "--set",
        dest="settings",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Strategy setting override, e.g. --set spike_threshold=0.05",
    )
    backtest.add_argument("--csv", type=str, default=None, help="Export trades to CSV")

    kelly = sub.add_parser("kelly", help="Fractional Kelly position size")
    kelly.add_argument("--price", type=float, required=True)
    kelly.add_argument("--probability", type=float, required=True)
    kelly.add_argument("--bankroll", type=float, default=None)
    kelly.add_argument("--fraction", type=float, default=0.5)
    kelly.add_argument("--max-position", type=float, default=0.05)

    scan = sub.add_parser("scan", help="Scan markets for arbitrage and spikes")
    scan.add_argument("--markets", required=True, help="JSON file of market snapshots")

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    if args.log_level:
        settings = replace(settings, log_level=args.log_level)
    configure_logging(settings.log_level, settings.component_log_levels)

    if args.command == "backtest":
        if args.seed is not None:
            settings = replace(settings, backtest=replace(settings.backtest, seed=args.seed))
        engine = QuantEngine(settings)
        config = BacktestConfig(
            settings=strategy_settings_from_dict(args.strategy, _parse_setting(args.settings)),
            initial_capital=args.capital,
        )
        markets = load_markets(args.markets)
        result = engine.run_backtest(config, markets, args.days)
        engine.backtester.print_report(result)
        if args.csv:
            engine.backtester.export_trades_csv(result, args.csv)
            LOGGER.info("trades written to %s", args.csv)
        return 0

    engine = QuantEngine(settings)

    if args.command == "kelly":
        result = engine.kelly_sizer.calculate_kelly(
            KellyInput(
                current_price=args.price,
                estimated_probability=args.probability,
                bankroll=args.bankroll if args.bankroll is not None else settings.bankroll,
                kelly_fraction=args.fraction,
                max_position_percent=args.max_position,
            )
        )
        print(
            "edge={:.4f} fraction={:.4f} size=${:.2f} confidence={:.2f} recommendation={}".format(
                result.edge,
                result.fraction,
                result.position_size,
                result.confidence,
                result.recommendation.value,
            )
        )
        return 0

    if args.command == "scan":
        report = engine.scan(load_markets(args.markets))
        for opp in report.binary + report.multi_market:
            legs = " + ".join(
                f"{leg.market_id}@{leg.price:.3f}"
                for leg in (opp.market1, opp.market2)
                if leg is not None
            )
            print(
                f"{opp.kind.value:<13s} {legs}  cost={opp.total_cost:.3f} "
                f"profit={opp.profit:.3f} ({opp.profit_percent:.2f}%)"
            )
        print(f"opportunities={report.total_opportunities} spikes={len(report.spikes)}")
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())

"""Synthetic-history backtester.

Replays a day-indexed sequence of market snapshots through simplified
versions of the live strategies and reports return, drawdown, Sharpe,
win rate and profit factor. Nothing here touches live engine state.

Strategy settings are a tagged variant: each strategy has its own frozen
settings class and the simulator dispatches on the settings type.

The ``kelly`` strategy is a Monte Carlo approximation, not a prediction:
it draws a synthetic "true probability" per market and resolves trades
against it. Pass ``seed`` for reproducible runs.

Usage::

    engine = BacktestEngine(seed=7)
    history = engine.generate_synthetic_history(markets, days=30)
    result = engine.run_backtest(
        BacktestConfig(settings=SpikeStrategySettings(spike_threshold=0.05)),
        history,
    )
    engine.print_report(result)
"""

from __future__ import annotations

import csv
import dataclasses
import itertools
import logging
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from pm_quant.framework.bounded_history import BoundedHistory
from pm_quant.models import MarketSnapshot, Side

LOGGER = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
# Fraction of the observed move the spike simulator assumes reverts.
SPIKE_REVERSION = 0.5


# ---------------------------------------------------------------------------
# Strategy settings (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpikeStrategySettings:
    strategy: ClassVar[str] = "spike"

    spike_threshold: float = 0.02
    position_percent: float = 0.02


@dataclass(frozen=True)
class ArbitrageStrategySettings:
    strategy: ClassVar[str] = "arbitrage"

    min_profit: float = 0.02
    position_percent: float = 0.02


@dataclass(frozen=True)
class KellyStrategySettings:
    strategy: ClassVar[str] = "kelly"

    kelly_fraction: float = 0.5
    max_fraction: float = 0.05
    min_edge: float = 0.05
    # Half-width of the synthetic probability draw around 0.5.
    estimate_spread: float = 0.15
    position_percent: float = 0.02


@dataclass(frozen=True)
class StatisticalStrategySettings:
    """Placeholder: the statistical strategy is not simulated yet."""

    strategy: ClassVar[str] = "statistical"

    position_percent: float = 0.02


StrategySettings = Union[
    SpikeStrategySettings,
    ArbitrageStrategySettings,
    KellyStrategySettings,
    StatisticalStrategySettings,
]

_SETTINGS_BY_STRATEGY: Dict[str, type] = {
    cls.strategy: cls
    for cls in (
        SpikeStrategySettings,
        ArbitrageStrategySettings,
        KellyStrategySettings,
        StatisticalStrategySettings,
    )
}

STRATEGIES = tuple(_SETTINGS_BY_STRATEGY)


def strategy_settings_from_dict(strategy: str, values: Mapping[str, Any] | None = None) -> StrategySettings:
    """Build typed settings for ``strategy`` from a loose mapping.

    Unknown strategies and unknown keys raise ``ValueError`` instead of
    being silently defaulted.
    """
    cls = _SETTINGS_BY_STRATEGY.get(strategy)
    if cls is None:
        raise ValueError(f"unknown strategy {strategy!r}; expected one of {', '.join(STRATEGIES)}")
    values = dict(values or {})
    valid = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(values) - valid)
    if unknown:
        raise ValueError(f"unknown {strategy} setting(s): {', '.join(unknown)}")
    return cls(**{k: float(v) for k, v in values.items()})


# ---------------------------------------------------------------------------
# Config / result records
# ---------------------------------------------------------------------------


class BacktestStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass(frozen=True)
class BacktestConfig:
    settings: StrategySettings
    initial_capital: float = 10_000.0
    start_date: str = ""
    end_date: str = ""

    @property
    def strategy(self) -> str:
        return self.settings.strategy


@dataclass(frozen=True)
class BacktestTrade:
    entry_date: str
    exit_date: str
    market_id: str
    side: Side
    entry_price: float
    exit_price: float
    quantity: float
    profit_loss: float
    profit_loss_percent: float


@dataclass(frozen=True)
class EquityPoint:
    date: str
    equity: float


@dataclass(frozen=True)
class BacktestResult:
    """Run summary. win_rate, max_drawdown and total_return_percent are
    on a 0-100 scale."""

    id: str
    config: BacktestConfig
    total_return: float
    total_return_percent: float
    max_drawdown: float
    sharpe_ratio: float
    win_rate: float
    total_trades: int
    profit_factor: float
    equity_curve: List[EquityPoint] = field(default_factory=list)
    trades: List[BacktestTrade] = field(default_factory=list)
    run_at: str = ""


# ---------------------------------------------------------------------------
# Statistics helpers
# ---------------------------------------------------------------------------


def profit_factor(profit_losses: Sequence[float]) -> float:
    """Gross profit / gross loss; inf with profit and no loss, 0 with neither."""
    gross_profit = sum(p for p in profit_losses if p > 0)
    gross_loss = abs(sum(p for p in profit_losses if p <= 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return math.inf if gross_profit > 0 else 0.0


def annualized_sharpe(returns: Sequence[float]) -> float:
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = float(np.std(arr, ddof=1))
    if not np.isfinite(std) or std <= 0.0:
        return 0.0
    return float(np.mean(arr)) / std * math.sqrt(TRADING_DAYS_PER_YEAR)


def _fmt_pnl(value: float) -> str:
    if value >= 0:
        return "+${:.2f}".format(value)
    return "-${:.2f}".format(abs(value))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class BacktestEngine:
    """Runs backtests synchronously and keeps the most recent results."""

    def __init__(self, max_results: int = 20, seed: int | None = None) -> None:
        self._results: BoundedHistory[BacktestResult] = BoundedHistory(max_results)
        self._rng = random.Random(seed)
        self._seq = itertools.count(1)
        self._status = BacktestStatus.IDLE

    @property
    def status(self) -> BacktestStatus:
        return self._status

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_backtest(
        self,
        config: BacktestConfig,
        history: Sequence[Sequence[MarketSnapshot]],
    ) -> BacktestResult:
        """Simulate ``history`` day by day; day 0 is only the reference.

        A failed run leaves the engine IDLE and stores no result.
        """
        self._status = BacktestStatus.RUNNING
        started = time.monotonic()
        try:
            result = self._simulate(config, history)
        except Exception:
            self._status = BacktestStatus.IDLE
            raise
        self._results.append(result)
        self._status = BacktestStatus.COMPLETE

        LOGGER.info(
            "backtest %s strategy=%s days=%d trades=%d return=%.2f%% max_dd=%.2f%% sharpe=%.2f elapsed=%.3fs",
            result.id,
            config.strategy,
            len(history),
            result.total_trades,
            result.total_return_percent,
            result.max_drawdown,
            result.sharpe_ratio,
            time.monotonic() - started,
        )
        return result

    def _simulate(
        self,
        config: BacktestConfig,
        history: Sequence[Sequence[MarketSnapshot]],
    ) -> BacktestResult:
        equity = config.initial_capital
        peak_equity = equity
        max_drawdown = 0.0
        trades: List[BacktestTrade] = []
        equity_curve: List[EquityPoint] = []
        days = len(history)
        today = datetime.now(timezone.utc).date()

        for i in range(1, days):
            date = (today - timedelta(days=days - i)).isoformat()
            day_trades = self._simulate_day(config.settings, history[i - 1], history[i], equity, date)
            for trade in day_trades:
                equity += trade.profit_loss
                trades.append(trade)

            equity_curve.append(EquityPoint(date=date, equity=equity))

            if equity > peak_equity:
                peak_equity = equity
            if peak_equity > 0:
                drawdown = (peak_equity - equity) / peak_equity
                if drawdown > max_drawdown:
                    max_drawdown = drawdown

        pnls = [t.profit_loss for t in trades]
        wins = sum(1 for p in pnls if p > 0)
        initial = config.initial_capital
        total_return = equity - initial

        return BacktestResult(
            id=f"backtest-{int(time.time() * 1000)}-{next(self._seq)}",
            config=config,
            total_return=total_return,
            total_return_percent=total_return / initial * 100.0 if initial > 0 else 0.0,
            max_drawdown=max_drawdown * 100.0,
            sharpe_ratio=annualized_sharpe([t.profit_loss_percent for t in trades]),
            win_rate=wins / len(trades) * 100.0 if trades else 0.0,
            total_trades=len(trades),
            profit_factor=profit_factor(pnls),
            equity_curve=equity_curve,
            trades=trades,
            run_at=datetime.now(timezone.utc).isoformat(),
        )

    def generate_synthetic_history(
        self,
        markets: Sequence[MarketSnapshot],
        days: int,
        max_move: float = 0.05,
    ) -> List[List[MarketSnapshot]]:
        """Per-day snapshots with each price moved by U(-max_move, max_move)
        from its base value and clamped to [0.01, 0.99]."""
        history: List[List[MarketSnapshot]] = []
        for _ in range(max(0, days)):
            day: List[MarketSnapshot] = []
            for market in markets:
                prices = tuple(
                    max(0.01, min(0.99, p + (self._rng.random() - 0.5) * 2 * max_move))
                    for p in market.outcome_prices
                )
                day.append(
                    dataclasses.replace(
                        market,
                        outcome_prices=prices,
                        volume=market.volume * (0.5 + self._rng.random()),
                    )
                )
            history.append(day)
        return history

    def get_results(self) -> List[BacktestResult]:
        """Retained results, oldest first."""
        return self._results.items()

    def get_result(self, result_id: str) -> Optional[BacktestResult]:
        return self._results.find(lambda r: r.id == result_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def format_report(self, result: BacktestResult) -> str:
        cfg = result.config
        pf = "inf" if math.isinf(result.profit_factor) else "{:.2f}".format(result.profit_factor)
        if result.equity_curve:
            period = "{} - {}".format(result.equity_curve[0].date, result.equity_curve[-1].date)
        else:
            period = "N/A"
        lines = [
            "=== Backtest Report: {} ({}) ===".format(cfg.strategy, result.id),
            "Period: {}".format(period),
            "Capital: ${:.2f} -> ${:.2f} ({} / {:.2f}%)".format(
                cfg.initial_capital,
                cfg.initial_capital + result.total_return,
                _fmt_pnl(result.total_return),
                result.total_return_percent,
            ),
            "Trades: {} | Win rate: {:.1f}% | Profit factor: {}".format(
                result.total_trades, result.win_rate, pf,
            ),
            "Max drawdown: {:.2f}% | Sharpe: {:.2f}".format(result.max_drawdown, result.sharpe_ratio),
        ]
        return "\n".join(lines)

    def print_report(self, result: BacktestResult) -> None:
        print(self.format_report(result))
        print("")

    def export_trades_csv(self, result: BacktestResult, path: str) -> None:
        fieldnames = [f.name for f in dataclasses.fields(BacktestTrade)]
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            for t in result.trades:
                row = dataclasses.asdict(t)
                row["side"] = t.side.value
                writer.writerow(row)

    # ------------------------------------------------------------------
    # Simulators
    # ------------------------------------------------------------------

    def _simulate_day(
        self,
        settings: StrategySettings,
        prev_markets: Sequence[MarketSnapshot],
        curr_markets: Sequence[MarketSnapshot],
        equity: float,
        date: str,
    ) -> List[BacktestTrade]:
        if isinstance(settings, SpikeStrategySettings):
            position_size = equity * settings.position_percent
            return self._simulate_spike(settings, prev_markets, curr_markets, position_size, date)
        if isinstance(settings, ArbitrageStrategySettings):
            position_size = equity * settings.position_percent
            return self._simulate_arbitrage(settings, curr_markets, position_size, date)
        if isinstance(settings, KellyStrategySettings):
            return self._simulate_kelly(settings, curr_markets, equity, date)
        if isinstance(settings, StatisticalStrategySettings):
            return []
        raise TypeError(f"unsupported strategy settings: {type(settings).__name__}")

    @staticmethod
    def _simulate_spike(
        settings: SpikeStrategySettings,
        prev_markets: Sequence[MarketSnapshot],
        curr_markets: Sequence[MarketSnapshot],
        position_size: float,
        date: str,
    ) -> List[BacktestTrade]:
        trades: List[BacktestTrade] = []
        if position_size <= 0:
            return trades
        prev_by_id = {m.market_id: m for m in prev_markets}

        for curr in curr_markets:
            prev = prev_by_id.get(curr.market_id)
            if prev is None:
                continue
            prev_price = prev.yes_price
            entry = curr.yes_price
            if prev_price <= 0 or entry <= 0:
                continue

            move = abs(entry - prev_price)
            if move / prev_price <= settings.spike_threshold:
                continue

            went_up = entry > prev_price
            reversion = move * SPIKE_REVERSION
            exit_price = entry - reversion if went_up else entry + reversion
            quantity = position_size / entry
            pnl = quantity * (exit_price - entry) * (-1 if went_up else 1)

            trades.append(
                BacktestTrade(
                    entry_date=date,
                    exit_date=date,
                    market_id=curr.market_id,
                    side=Side.NO if went_up else Side.YES,
                    entry_price=entry,
                    exit_price=exit_price,
                    quantity=quantity,
                    profit_loss=pnl,
                    profit_loss_percent=pnl / position_size * 100.0,
                )
            )
        return trades

    @staticmethod
    def _simulate_arbitrage(
        settings: ArbitrageStrategySettings,
        markets: Sequence[MarketSnapshot],
        position_size: float,
        date: str,
    ) -> List[BacktestTrade]:
        trades: List[BacktestTrade] = []
        for market in markets:
            if len(market.outcome_prices) < 2:
                continue
            total_cost = market.yes_price + market.no_price
            if total_cost <= 0 or total_cost >= 1.0 - settings.min_profit:
                continue
            trades.append(
                BacktestTrade(
                    entry_date=date,
                    exit_date=date,
                    market_id=market.market_id,
                    side=Side.YES,
                    entry_price=total_cost,
                    exit_price=1.0,
                    quantity=position_size / total_cost,
                    profit_loss=(1.0 - total_cost) * position_size,
                    profit_loss_percent=(1.0 - total_cost) / total_cost * 100.0,
                )
            )
        return trades

    def _simulate_kelly(
        self,
        settings: KellyStrategySettings,
        markets: Sequence[MarketSnapshot],
        equity: float,
        date: str,
    ) -> List[BacktestTrade]:
        trades: List[BacktestTrade] = []
        for market in markets:
            # Draw before filtering so the random stream does not depend on prices.
            estimate = 0.5 + (self._rng.random() - 0.5) * 2 * settings.estimate_spread
            price = market.yes_price
            if price <= 0 or price >= 1.0:
                continue
            edge = estimate - price
            if edge <= settings.min_edge:
                continue

            fraction = min(edge / price * settings.kelly_fraction, settings.max_fraction)
            size = equity * fraction
            if size <= 0:
                continue
            won = self._rng.random() < estimate
            pnl = size * (1.0 / price - 1.0) if won else -size

            trades.append(
                BacktestTrade(
                    entry_date=date,
                    exit_date=date,
                    market_id=market.market_id,
                    side=Side.YES,
                    entry_price=price,
                    exit_price=1.0 if won else 0.0,
                    quantity=size / price,
                    profit_loss=pnl,
                    profit_loss_percent=pnl / size * 100.0,
                )
            )
        return trades

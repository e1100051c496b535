from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Tuple

from dotenv import load_dotenv


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def _as_csv(value: str | None) -> Tuple[str, ...]:
    if value is None or not value.strip():
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _as_level_map(value: str | None) -> Dict[str, str]:
    """Parse ``name=LEVEL,name=LEVEL`` pairs; entries without ``=`` are skipped."""
    levels: Dict[str, str] = {}
    for part in _as_csv(value):
        if "=" not in part:
            continue
        name, level = part.split("=", 1)
        levels[name.strip()] = level.strip().upper()
    return levels


@dataclass(frozen=True)
class SpikeSettings:
    # Expected range 0.01-0.2.
    spike_threshold: float = 0.02
    # Price points retained per market.
    price_history_window: int = 30
    # Market ids analysed by analyze_markets; empty means all.
    target_markets: Tuple[str, ...] = ()
    # Expected range 1000-300000.
    cooldown_ms: int = 30_000


@dataclass(frozen=True)
class ArbitrageSettings:
    transaction_fee: float = 0.02
    retention_seconds: float = 300.0
    max_opportunities: int = 50
    multi_market_threshold: float = 0.98
    cross_platform_spread: float = 0.08
    cross_platform_min_difference: float = 0.03
    seed: int | None = None


@dataclass(frozen=True)
class KellyConfig:
    lookback_period: int = 40
    scaling_factor: float = 0.5
    min_trades: int = 10
    default_fraction: float = 0.02
    max_optimal_fraction: float = 0.25


@dataclass(frozen=True)
class RiskLimits:
    max_total_exposure: float = 0.25
    max_position_size: float = 0.05
    max_daily_loss: float = 0.10
    max_correlation: float = 0.7
    stop_loss_default: float = 0.15
    take_profit_default: float = 0.20


@dataclass(frozen=True)
class BacktestSettings:
    max_results: int = 20
    default_days: int = 30
    seed: int | None = None


@dataclass(frozen=True)
class AppSettings:
    log_level: str = "INFO"
    component_log_levels: Dict[str, str] = field(default_factory=dict)
    bankroll: float = 10_000.0
    spike_max_events: int = 100
    spike: SpikeSettings = field(default_factory=SpikeSettings)
    arbitrage: ArbitrageSettings = field(default_factory=ArbitrageSettings)
    kelly: KellyConfig = field(default_factory=KellyConfig)
    risk: RiskLimits = field(default_factory=RiskLimits)
    backtest: BacktestSettings = field(default_factory=BacktestSettings)


def load_settings() -> AppSettings:
    load_dotenv(override=False)

    spike = SpikeSettings(
        spike_threshold=_as_float(os.getenv("PMQ_SPIKE_THRESHOLD"), 0.02),
        price_history_window=_as_int(os.getenv("PMQ_SPIKE_PRICE_HISTORY_WINDOW"), 30),
        target_markets=_as_csv(os.getenv("PMQ_SPIKE_TARGET_MARKETS")),
        cooldown_ms=_as_int(os.getenv("PMQ_SPIKE_COOLDOWN_MS"), 30_000),
    )

    arbitrage = ArbitrageSettings(
        transaction_fee=_as_float(os.getenv("PMQ_ARB_TRANSACTION_FEE"), 0.02),
        retention_seconds=_as_float(os.getenv("PMQ_ARB_RETENTION_SECONDS"), 300.0),
        max_opportunities=_as_int(os.getenv("PMQ_ARB_MAX_OPPORTUNITIES"), 50),
        multi_market_threshold=_as_float(os.getenv("PMQ_ARB_MULTI_MARKET_THRESHOLD"), 0.98),
        cross_platform_spread=_as_float(os.getenv("PMQ_ARB_CROSS_PLATFORM_SPREAD"), 0.08),
        cross_platform_min_difference=_as_float(
            os.getenv("PMQ_ARB_CROSS_PLATFORM_MIN_DIFFERENCE"), 0.03
        ),
        seed=_as_optional_int(os.getenv("PMQ_ARB_SEED")),
    )

    kelly = KellyConfig(
        lookback_period=_as_int(os.getenv("PMQ_KELLY_LOOKBACK_PERIOD"), 40),
        scaling_factor=_as_float(os.getenv("PMQ_KELLY_SCALING_FACTOR"), 0.5),
        min_trades=_as_int(os.getenv("PMQ_KELLY_MIN_TRADES"), 10),
        default_fraction=_as_float(os.getenv("PMQ_KELLY_DEFAULT_FRACTION"), 0.02),
        max_optimal_fraction=_as_float(os.getenv("PMQ_KELLY_MAX_OPTIMAL_FRACTION"), 0.25),
    )

    risk = RiskLimits(
        max_total_exposure=_as_float(os.getenv("PMQ_RISK_MAX_TOTAL_EXPOSURE"), 0.25),
        max_position_size=_as_float(os.getenv("PMQ_RISK_MAX_POSITION_SIZE"), 0.05),
        max_daily_loss=_as_float(os.getenv("PMQ_RISK_MAX_DAILY_LOSS"), 0.10),
        max_correlation=_as_float(os.getenv("PMQ_RISK_MAX_CORRELATION"), 0.7),
        stop_loss_default=_as_float(os.getenv("PMQ_RISK_STOP_LOSS_DEFAULT"), 0.15),
        take_profit_default=_as_float(os.getenv("PMQ_RISK_TAKE_PROFIT_DEFAULT"), 0.20),
    )

    backtest = BacktestSettings(
        max_results=_as_int(os.getenv("PMQ_BACKTEST_MAX_RESULTS"), 20),
        default_days=_as_int(os.getenv("PMQ_BACKTEST_DEFAULT_DAYS"), 30),
        seed=_as_optional_int(os.getenv("PMQ_BACKTEST_SEED")),
    )

    return AppSettings(
        log_level=os.getenv("PMQ_LOG_LEVEL", "INFO"),
        component_log_levels=_as_level_map(os.getenv("PMQ_LOG_LEVELS")),
        bankroll=_as_float(os.getenv("PMQ_BANKROLL"), 10_000.0),
        spike_max_events=_as_int(os.getenv("PMQ_SPIKE_MAX_EVENTS"), 100),
        spike=spike,
        arbitrage=arbitrage,
        kelly=kelly,
        risk=risk,
        backtest=backtest,
    )

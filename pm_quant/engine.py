"""Owner of one instance of each strategy / risk component.

The execution layer holds a ``QuantEngine`` for the life of the process
and calls into it; components are never module-level singletons, so a
fresh engine gives fully isolated state (e.g. per test).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from pm_quant.arbitrage_scanner import ArbitrageScanner
from pm_quant.backtester import BacktestConfig, BacktestEngine, BacktestResult
from pm_quant.config import AppSettings
from pm_quant.framework.market_classifier import KeywordMarketClassifier, MarketClassifier
from pm_quant.kelly_sizing import KellySizer
from pm_quant.models import (
    ArbitrageOpportunity,
    KellyInput,
    KellyResult,
    MarketSnapshot,
    Position,
    PositionCheck,
    SpikeEvent,
)
from pm_quant.risk import RiskManager
from pm_quant.spike_detector import SpikeDetector

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanReport:
    spikes: List[SpikeEvent] = field(default_factory=list)
    binary: List[ArbitrageOpportunity] = field(default_factory=list)
    multi_market: List[ArbitrageOpportunity] = field(default_factory=list)

    @property
    def total_opportunities(self) -> int:
        return len(self.binary) + len(self.multi_market)


@dataclass(frozen=True)
class SizingDecision:
    kelly: KellyResult
    check: Optional[PositionCheck]
    final_size: float


class QuantEngine:
    def __init__(
        self,
        settings: AppSettings | None = None,
        classifier: MarketClassifier | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        classifier = classifier or KeywordMarketClassifier()
        self.spike_detector = SpikeDetector(
            window_size=self._settings.spike.price_history_window,
            max_events=self._settings.spike_max_events,
        )
        self.arbitrage_scanner = ArbitrageScanner(self._settings.arbitrage, classifier=classifier)
        self.kelly_sizer = KellySizer(self._settings.kelly)
        self.risk_manager = RiskManager(self._settings.risk, classifier=classifier)
        self.backtester = BacktestEngine(
            max_results=self._settings.backtest.max_results,
            seed=self._settings.backtest.seed,
        )

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def scan(self, markets: Sequence[MarketSnapshot]) -> ScanReport:
        """Feed one batch of snapshots to the spike detector and scanner."""
        active = [m for m in markets if m.active]
        report = ScanReport(
            spikes=self.spike_detector.analyze_markets(active, self._settings.spike),
            binary=self.arbitrage_scanner.scan_binary_arbitrage(active),
            multi_market=self.arbitrage_scanner.scan_multi_market_arbitrage(active),
        )
        LOGGER.debug(
            "scan markets=%d spikes=%d binary=%d multi=%d",
            len(active),
            len(report.spikes),
            len(report.binary),
            len(report.multi_market),
        )
        return report

    def size_position(self, request: KellyInput, positions: Sequence[Position]) -> SizingDecision:
        """Kelly size a trade, then clear it with the risk manager."""
        kelly = self.kelly_sizer.calculate_kelly(request)
        if kelly.position_size <= 0:
            return SizingDecision(kelly=kelly, check=None, final_size=0.0)

        check = self.risk_manager.validate_position(kelly.position_size, request.bankroll, positions)
        if not check.allowed:
            final = 0.0
        elif check.adjusted_size is not None:
            final = min(kelly.position_size, check.adjusted_size)
        else:
            final = kelly.position_size
        return SizingDecision(kelly=kelly, check=check, final_size=round(final, 2))

    def run_backtest(
        self,
        config: BacktestConfig,
        markets: Sequence[MarketSnapshot],
        days: int | None = None,
    ) -> BacktestResult:
        days = days if days is not None else self._settings.backtest.default_days
        history = self.backtester.generate_synthetic_history(markets, days)
        return self.backtester.run_backtest(config, history)

"""Portfolio risk metrics, position validation and the daily-loss halt.

Trading permission is a one-way switch within a trading day::

    ALLOWED --(|daily P&L| / equity >= max_daily_loss)--> HALTED
    HALTED  --(reset_daily_pnl(), external daily rollover)--> ALLOWED

The manager never persists positions; callers pass the current open
positions and bankroll on every call.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

import numpy as np

from pm_quant.config import RiskLimits
from pm_quant.framework.market_classifier import KeywordMarketClassifier, MarketClassifier
from pm_quant.models import Position, PositionCheck, RiskMetrics, RiskScore, Trade

LOGGER = logging.getLogger(__name__)

# One-tailed 95% z-score.
VAR_Z_SCORE = 1.65
DEFAULT_RETURN_STD = 0.1

# (score, exposure above, drawdown above); first match wins.
_RISK_BANDS = (
    (RiskScore.CRITICAL, 0.40, 0.20),
    (RiskScore.HIGH, 0.25, 0.10),
    (RiskScore.MEDIUM, 0.15, 0.05),
)


class TradingState(str, Enum):
    ALLOWED = "allowed"
    HALTED = "halted"


@dataclass(frozen=True)
class RiskStateSnapshot:
    """Read-only view of the manager's mutable state."""

    state: TradingState
    daily_pnl: float
    current_equity: float
    peak_equity: float
    max_drawdown: float
    limits: RiskLimits


class RiskManager:
    """Final gate before a position is opened.

    Equity, daily P&L and the halt flag are process-global and guarded by
    a single lock.
    """

    def __init__(
        self,
        limits: RiskLimits | None = None,
        classifier: MarketClassifier | None = None,
    ) -> None:
        self._limits = limits or RiskLimits()
        self._classifier = classifier or KeywordMarketClassifier()
        self._daily_pnl = 0.0
        self._peak_equity = 0.0
        self._current_equity = 0.0
        self._max_drawdown = 0.0
        self._state = TradingState.ALLOWED
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def set_limits(self, **overrides: Any) -> RiskLimits:
        valid = {f.name for f in dataclasses.fields(RiskLimits)}
        unknown = sorted(set(overrides) - valid)
        if unknown:
            raise ValueError(f"unknown risk limit(s): {', '.join(unknown)}")
        with self._lock:
            self._limits = dataclasses.replace(self._limits, **overrides)
            return self._limits

    def get_limits(self) -> RiskLimits:
        return self._limits

    # ------------------------------------------------------------------
    # Equity / daily P&L state
    # ------------------------------------------------------------------

    @property
    def trading_state(self) -> TradingState:
        return self._state

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    @property
    def peak_equity(self) -> float:
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        return self._current_equity

    def update_equity(self, equity: float) -> None:
        with self._lock:
            self._current_equity = equity
            if equity > self._peak_equity:
                self._peak_equity = equity
            self._max_drawdown = max(self._max_drawdown, self._drawdown_locked())

    def record_trade(self, trade: Trade) -> None:
        """Accumulate realised P&L. Call exactly once per realised trade."""
        with self._lock:
            self._daily_pnl += trade.profit_loss
            if self._state is TradingState.HALTED or self._current_equity <= 0:
                return
            loss_ratio = abs(self._daily_pnl) / self._current_equity
            if loss_ratio >= self._limits.max_daily_loss:
                self._state = TradingState.HALTED
                LOGGER.warning(
                    "trading HALTED daily_pnl=%.2f equity=%.2f ratio=%.4f limit=%.4f",
                    self._daily_pnl,
                    self._current_equity,
                    loss_ratio,
                    self._limits.max_daily_loss,
                )

    def reset_daily_pnl(self) -> None:
        with self._lock:
            was_halted = self._state is TradingState.HALTED
            self._daily_pnl = 0.0
            self._state = TradingState.ALLOWED
        LOGGER.info("daily P&L reset (was_halted=%s)", was_halted)

    def is_trading_allowed(self) -> bool:
        return self._state is TradingState.ALLOWED

    def snapshot(self) -> RiskStateSnapshot:
        with self._lock:
            return RiskStateSnapshot(
                state=self._state,
                daily_pnl=self._daily_pnl,
                current_equity=self._current_equity,
                peak_equity=self._peak_equity,
                max_drawdown=self._max_drawdown,
                limits=self._limits,
            )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def calculate_metrics(self, positions: Sequence[Position], bankroll: float) -> RiskMetrics:
        """Aggregate exposure metrics. Percent fields are on a 0-100 scale."""
        with self._lock:
            current_drawdown = self._drawdown_locked()
            max_drawdown = max(self._max_drawdown, current_drawdown)

        exposures = [p.cost_basis for p in positions]
        total_exposure = float(sum(exposures))
        exposure_fraction = total_exposure / bankroll if bankroll > 0 else 0.0
        largest = max(exposures) if exposures else 0.0

        std = self._estimate_return_std(positions)

        return RiskMetrics(
            total_exposure=total_exposure,
            exposure_percent=exposure_fraction * 100.0,
            largest_position=largest,
            portfolio_heat=self._portfolio_heat(positions, bankroll),
            correlation_risk=self._correlation_risk(positions),
            value_at_risk=total_exposure * std * VAR_Z_SCORE,
            max_drawdown=max_drawdown * 100.0,
            current_drawdown=current_drawdown * 100.0,
            risk_score=_score(exposure_fraction, current_drawdown),
        )

    def _portfolio_heat(self, positions: Sequence[Position], bankroll: float) -> float:
        if not positions or bankroll <= 0:
            return 0.0
        heat = 0.0
        for position in positions:
            if position.stop_loss is not None and position.entry_price > 0:
                distance = (position.entry_price - position.stop_loss) / position.entry_price
            else:
                distance = self._limits.stop_loss_default
            heat += position.cost_basis * distance / bankroll
        return heat * 100.0

    def _correlation_risk(self, positions: Sequence[Position]) -> float:
        if len(positions) < 2:
            return 0.0
        counts: dict[str, int] = {}
        for position in positions:
            category = self._classifier.classify(position.market_question)
            counts[category] = counts.get(category, 0) + 1
        return max(counts.values()) / len(positions) * 100.0

    @staticmethod
    def _estimate_return_std(positions: Sequence[Position]) -> float:
        returns = [
            (p.current_price - p.entry_price) / p.entry_price
            for p in positions
            if p.entry_price > 0
        ]
        if len(returns) < 2:
            return DEFAULT_RETURN_STD
        # Sample std (n-1), not the population std; VaR on 2+ positions is
        # slightly wider than a divide-by-n estimate.
        std = float(np.std(np.asarray(returns, dtype=float), ddof=1))
        if not np.isfinite(std) or std <= 0.0:
            return DEFAULT_RETURN_STD
        return std

    def _drawdown_locked(self) -> float:
        if self._peak_equity <= 0:
            return 0.0
        return max(0.0, (self._peak_equity - self._current_equity) / self._peak_equity)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_position(
        self,
        position_size: float,
        bankroll: float,
        existing_positions: Sequence[Position],
    ) -> PositionCheck:
        """Check a proposed position against the halt flag and limits.

        Checks run in a fixed order (halt, total exposure, single-position
        cap) and only the first adjustment is returned.
        """
        if not self.is_trading_allowed():
            return PositionCheck(allowed=False, reason="Trading halted due to daily loss limit")
        if bankroll <= 0:
            return PositionCheck(allowed=False, reason="Bankroll must be positive")

        limits = self._limits
        current_exposure = sum(p.cost_basis for p in existing_positions)
        new_exposure = current_exposure + position_size

        if new_exposure / bankroll > limits.max_total_exposure:
            max_allowed = limits.max_total_exposure * bankroll - current_exposure
            if max_allowed <= 0:
                return PositionCheck(allowed=False, reason="Maximum exposure limit reached")
            return PositionCheck(
                allowed=True,
                reason="Position size reduced to stay within exposure limits",
                adjusted_size=max_allowed,
            )

        if position_size / bankroll > limits.max_position_size:
            return PositionCheck(
                allowed=True,
                reason="Position size reduced to maximum allowed",
                adjusted_size=bankroll * limits.max_position_size,
            )

        return PositionCheck(allowed=True)

    # ------------------------------------------------------------------
    # Stop-loss / take-profit
    # ------------------------------------------------------------------

    def calculate_stop_loss(self, entry_price: float, percent: float | None = None) -> float:
        if percent is None:
            percent = self._limits.stop_loss_default
        return entry_price * (1.0 - percent)

    def calculate_take_profit(self, entry_price: float, percent: float | None = None) -> float:
        if percent is None:
            percent = self._limits.take_profit_default
        return entry_price * (1.0 + percent)

    @staticmethod
    def should_trigger_stop_loss(position: Position) -> bool:
        if position.stop_loss is None:
            return False
        return position.current_price <= position.stop_loss

    @staticmethod
    def should_trigger_take_profit(position: Position) -> bool:
        if position.take_profit is None:
            return False
        return position.current_price >= position.take_profit


def _score(exposure_fraction: float, drawdown: float) -> RiskScore:
    for score, exposure_band, drawdown_band in _RISK_BANDS:
        if exposure_fraction > exposure_band or drawdown > drawdown_band:
            return score
    return RiskScore.LOW

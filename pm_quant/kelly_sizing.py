"""Fractional Kelly position sizing.

Two independent pieces:

* ``KellySizer.calculate_kelly`` turns a probability edge on a binary
  contract into a capped bankroll fraction and dollar size.
* ``calculate_optimal_fraction`` estimates a risk fraction from the
  rolling win/loss history recorded with ``add_trade``.

Usage::

    sizer = KellySizer()
    result = sizer.calculate_kelly(KellyInput(
        current_price=0.40, estimated_probability=0.60,
        bankroll=10_000, kelly_fraction=0.5, max_position_percent=0.05,
    ))
    result.position_size  # 500.0
"""

from __future__ import annotations

import threading
from typing import Optional

from pm_quant.config import KellyConfig
from pm_quant.framework.bounded_history import BoundedHistory
from pm_quant.models import (
    HistoricalMetrics,
    KellyInput,
    KellyResult,
    Recommendation,
    TradeOutcome,
)

# Edge at which confidence saturates at 1.0.
FULL_CONFIDENCE_EDGE = 0.15

STRONG_BUY_FRACTION = 0.04
BUY_FRACTION = 0.02

_PRICE_FLOOR = 1e-6


class KellySizer:
    """Edge-aware sizing plus rolling trade statistics."""

    def __init__(self, config: KellyConfig | None = None) -> None:
        self._config = config or KellyConfig()
        self._trades: BoundedHistory[TradeOutcome] = BoundedHistory(self._config.lookback_period)
        self._lock = threading.Lock()

    @property
    def config(self) -> KellyConfig:
        return self._config

    @property
    def trade_count(self) -> int:
        return len(self._trades)

    def calculate_kelly(self, request: KellyInput) -> KellyResult:
        edge = request.estimated_probability - request.current_price
        if edge <= 0.0:
            return KellyResult(
                fraction=0.0,
                position_size=0.0,
                edge=edge,
                confidence=0.0,
                recommendation=Recommendation.AVOID,
            )

        price = min(max(request.current_price, _PRICE_FLOOR), 1.0 - _PRICE_FLOOR)
        raw = edge / price
        adjusted = raw * request.kelly_fraction
        capped = max(0.0, min(adjusted, request.max_position_percent))

        return KellyResult(
            fraction=capped,
            position_size=round(request.bankroll * capped, 2),
            edge=edge,
            confidence=min(edge / FULL_CONFIDENCE_EDGE, 1.0),
            recommendation=_recommend(capped),
        )

    def add_trade(self, profit_loss: float, capital: float) -> None:
        with self._lock:
            self._trades.append(TradeOutcome(profit_loss=profit_loss, capital=capital))

    def calculate_historical_metrics(self) -> Optional[HistoricalMetrics]:
        """Win rate / average win / average loss / expectancy, or None
        while fewer than ``min_trades`` outcomes are recorded."""
        with self._lock:
            trades = self._trades.items()
        if len(trades) < self._config.min_trades:
            return None

        wins = [t.profit_loss for t in trades if t.profit_loss > 0]
        losses = [t.profit_loss for t in trades if t.profit_loss <= 0]

        win_rate = len(wins) / len(trades)
        avg_win = sum(wins) / len(wins) if wins else 0.0
        avg_loss = abs(sum(losses) / len(losses)) if losses else 0.0
        expectancy = win_rate * avg_win - (1.0 - win_rate) * avg_loss

        return HistoricalMetrics(
            win_rate=win_rate,
            avg_win=avg_win,
            avg_loss=avg_loss,
            expectancy=expectancy,
        )

    def calculate_optimal_fraction(self) -> float:
        cfg = self._config
        metrics = self.calculate_historical_metrics()
        if metrics is None or metrics.avg_loss == 0.0:
            return cfg.default_fraction

        reward_risk = metrics.avg_win / metrics.avg_loss
        if reward_risk <= 0.0:
            # No winning trades: classical Kelly is -inf, clamp to zero.
            return 0.0
        kelly = (metrics.win_rate * reward_risk - (1.0 - metrics.win_rate)) / reward_risk
        return max(0.0, min(kelly * cfg.scaling_factor, cfg.max_optimal_fraction))

    def clear(self) -> None:
        with self._lock:
            self._trades.clear()


def _recommend(fraction: float) -> Recommendation:
    if fraction >= STRONG_BUY_FRACTION:
        return Recommendation.STRONG_BUY
    if fraction >= BUY_FRACTION:
        return Recommendation.BUY
    if fraction > 0.0:
        return Recommendation.HOLD
    return Recommendation.AVOID

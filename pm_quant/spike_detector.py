"""Short-term price spike detection with per-market cooldown.

Each market keeps a bounded window of recent prices. A spike fires when
the newest price deviates from the mean of the (up to four) preceding
points by at least ``spike_threshold``. Once a spike fires, the market is
muted until its cooldown elapses.

Usage::

    detector = SpikeDetector(window_size=30)
    events = detector.analyze_markets(markets, SpikeSettings(spike_threshold=0.05))
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from pm_quant.config import SpikeSettings
from pm_quant.framework.bounded_history import BoundedHistory
from pm_quant.models import (
    MarketSnapshot,
    PricePoint,
    SpikeDirection,
    SpikeEvent,
    SuggestedAction,
)

LOGGER = logging.getLogger(__name__)

MIN_HISTORY_POINTS = 3
REFERENCE_WINDOW = 5
ACTION_CONFIDENCE_THRESHOLD = 0.6


class SpikeDetector:
    """Sliding-window spike detector.

    State is sharded per market: ``record_price`` and ``detect_spike`` for
    the same market id are serialized, different markets never contend.
    """

    def __init__(
        self,
        window_size: int = 30,
        max_events: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self._window_size = window_size
        self._clock = clock
        self._histories: Dict[str, BoundedHistory[PricePoint]] = {}
        self._cooldowns: Dict[str, float] = {}
        self._events: BoundedHistory[SpikeEvent] = BoundedHistory(max_events)
        self._market_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._events_lock = threading.Lock()

    @property
    def window_size(self) -> int:
        return self._window_size

    def record_price(self, market_id: str, price: float, volume: float | None = None) -> None:
        with self._lock_for(market_id):
            history = self._histories.get(market_id)
            if history is None:
                history = BoundedHistory(self._window_size)
                self._histories[market_id] = history
            history.append(
                PricePoint(
                    market_id=market_id,
                    price=price,
                    timestamp=self._clock(),
                    volume=volume,
                )
            )

    def detect_spike(
        self,
        market_id: str,
        settings: SpikeSettings,
        market_question: str = "",
    ) -> Optional[SpikeEvent]:
        """Return a spike event for ``market_id`` or None.

        None means either not enough history, an active cooldown, a
        degenerate (zero) price, or a move below the threshold.
        """
        with self._lock_for(market_id):
            history = self._histories.get(market_id)
            if history is None or len(history) < MIN_HISTORY_POINTS:
                return None

            now = self._clock()
            if now < self._cooldowns.get(market_id, 0.0):
                return None

            recent = history.latest(REFERENCE_WINDOW)
            newest = recent[-1]
            preceding = recent[:-1]
            reference = sum(p.price for p in preceding) / len(preceding)
            current = newest.price
            if reference <= 0.0 or current <= 0.0:
                return None

            change = current - reference
            change_percent = abs(change / reference)
            if change_percent < settings.spike_threshold:
                return None

            direction = SpikeDirection.UP if change > 0 else SpikeDirection.DOWN
            confidence = min(change_percent / (settings.spike_threshold * 2), 1.0)
            action = _suggest_action(direction, confidence)

            event = SpikeEvent(
                id=f"spike-{market_id}-{int(now * 1000)}",
                market_id=market_id,
                market_question=market_question,
                price_change=change,
                price_change_percent=change_percent,
                direction=direction,
                previous_price=reference,
                current_price=current,
                volume=newest.volume or 0.0,
                detected_at=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                confidence=confidence,
                suggested_action=action,
            )
            self._cooldowns[market_id] = now + settings.cooldown_ms / 1000.0

        with self._events_lock:
            self._events.append(event)

        LOGGER.info(
            "spike market=%s direction=%s change=%.2f%% confidence=%.2f action=%s",
            market_id,
            direction.value,
            change_percent * 100,
            confidence,
            action.value,
        )
        return event

    def analyze_markets(
        self,
        markets: Iterable[MarketSnapshot],
        settings: SpikeSettings,
    ) -> List[SpikeEvent]:
        targets = set(settings.target_markets)
        spikes: List[SpikeEvent] = []
        for market in markets:
            if not market.outcome_prices:
                continue
            if targets and market.market_id not in targets:
                continue
            self.record_price(market.market_id, market.yes_price, market.volume)
            spike = self.detect_spike(market.market_id, settings, market.question)
            if spike is not None:
                spikes.append(spike)
        return spikes

    def get_recent_spikes(self, limit: int = 20) -> List[SpikeEvent]:
        """Most recent spikes, newest first."""
        with self._events_lock:
            recent = self._events.latest(limit)
        return list(reversed(recent))

    def get_price_history(self, market_id: str) -> List[PricePoint]:
        with self._lock_for(market_id):
            history = self._histories.get(market_id)
            return history.items() if history is not None else []

    def is_in_cooldown(self, market_id: str) -> bool:
        with self._lock_for(market_id):
            return self._clock() < self._cooldowns.get(market_id, 0.0)

    def clear_history(self) -> None:
        with self._registry_lock:
            self._histories.clear()
            self._cooldowns.clear()
            self._market_locks.clear()
        with self._events_lock:
            self._events.clear()

    def _lock_for(self, market_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._market_locks.get(market_id)
            if lock is None:
                lock = threading.Lock()
                self._market_locks[market_id] = lock
            return lock


def _suggest_action(direction: SpikeDirection, confidence: float) -> SuggestedAction:
    # Fade the move: sell into strength (buy NO), buy into weakness (buy YES).
    if confidence <= ACTION_CONFIDENCE_THRESHOLD:
        return SuggestedAction.WAIT
    if direction is SpikeDirection.UP:
        return SuggestedAction.BUY_NO
    return SuggestedAction.BUY_YES

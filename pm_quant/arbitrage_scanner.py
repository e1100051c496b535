"""Binary and multi-market arbitrage detection.

Binary: buying YES and NO of the same market costs ``yes + no + fee``;
anything under the 1.0 payout is locked-in profit.

Multi-market: markets whose questions share a keyword grouping key are
paired, and YES on one plus NO on the other is flagged when it costs
less than ``multi_market_threshold``. The grouping is a keyword heuristic
and does not guarantee the paired markets are actually complementary.
"""

from __future__ import annotations

import itertools
import logging
import random
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pm_quant.config import ArbitrageSettings
from pm_quant.framework.market_classifier import KeywordMarketClassifier, MarketClassifier
from pm_quant.models import (
    ArbitrageOpportunity,
    CrossPlatformPrice,
    MarketSnapshot,
    OpportunityKind,
    OpportunityLeg,
    OpportunityStatus,
)

LOGGER = logging.getLogger(__name__)


class ArbitrageScanner:
    """Scans market snapshots and keeps a registry of recent opportunities."""

    def __init__(
        self,
        settings: ArbitrageSettings | None = None,
        classifier: MarketClassifier | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or ArbitrageSettings()
        self._classifier = classifier or KeywordMarketClassifier()
        self._rng = rng or random.Random(self._settings.seed)
        self._clock = clock
        self._opportunities: List[ArbitrageOpportunity] = []
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def settings(self) -> ArbitrageSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def scan_binary_arbitrage(self, markets: Iterable[MarketSnapshot]) -> List[ArbitrageOpportunity]:
        fee = self._settings.transaction_fee
        now = self._clock()
        found: List[ArbitrageOpportunity] = []

        for market in markets:
            if not market.is_binary:
                continue
            yes_price = market.yes_price
            no_price = market.no_price
            net_cost = yes_price + no_price + fee
            if net_cost >= 1.0 or net_cost <= 0.0:
                continue

            profit = 1.0 - net_cost
            found.append(
                ArbitrageOpportunity(
                    id=self._next_id("arb", market.market_id, now),
                    kind=OpportunityKind.BINARY,
                    market1=OpportunityLeg(market.market_id, market.question, yes_price),
                    market2=OpportunityLeg(market.market_id, f"{market.question} (NO)", no_price),
                    total_cost=net_cost,
                    profit=profit,
                    profit_percent=profit / net_cost * 100.0,
                    detected_at=now,
                )
            )

        self._merge_into_registry(found, now)
        if found:
            LOGGER.info("binary scan found %d opportunities", len(found))
        return found

    def scan_multi_market_arbitrage(self, markets: Iterable[MarketSnapshot]) -> List[ArbitrageOpportunity]:
        fee = self._settings.transaction_fee
        threshold = self._settings.multi_market_threshold
        now = self._clock()
        found: List[ArbitrageOpportunity] = []

        for group in self._group_similar_markets(markets):
            for first, second in itertools.combinations(group, 2):
                yes_price = first.yes_price
                no_price = second.no_price
                total = yes_price + no_price
                if total >= threshold or total <= 0.0:
                    continue
                found.append(
                    ArbitrageOpportunity(
                        id=self._next_id("multi", f"{first.market_id}-{second.market_id}", now),
                        kind=OpportunityKind.MULTI_MARKET,
                        market1=OpportunityLeg(first.market_id, first.question, yes_price),
                        market2=OpportunityLeg(second.market_id, second.question, no_price),
                        total_cost=total,
                        profit=1.0 - total - fee,
                        profit_percent=(1.0 - total) / total * 100.0,
                        detected_at=now,
                    )
                )

        if found:
            LOGGER.info("multi-market scan found %d candidate pairs", len(found))
        return found

    def simulate_cross_platform_prices(
        self,
        markets: Sequence[MarketSnapshot],
        limit: int = 10,
    ) -> List[CrossPlatformPrice]:
        """Pair each market's price with a synthetic second-venue quote.

        Stand-in until a real second venue feed is wired up; the quote is
        the first outcome price plus uniform noise of ``cross_platform_spread``
        width, clamped to [0.01, 0.99].
        """
        spread = self._settings.cross_platform_spread
        min_diff = self._settings.cross_platform_min_difference
        stamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        rows: List[CrossPlatformPrice] = []
        for market in list(markets)[:limit]:
            poly_price = market.yes_price
            other = poly_price + (self._rng.random() - 0.5) * spread
            other = max(0.01, min(0.99, other))
            diff = abs(poly_price - other)
            rows.append(
                CrossPlatformPrice(
                    market_description=market.question,
                    polymarket_price=poly_price,
                    kalshi_price=other,
                    price_difference=diff,
                    arbitrage_available=diff > min_diff,
                    last_updated=stamp,
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_active_opportunities(self) -> List[ArbitrageOpportunity]:
        with self._lock:
            return [o for o in self._opportunities if o.status is OpportunityStatus.ACTIVE]

    def get_opportunity(self, opportunity_id: str) -> Optional[ArbitrageOpportunity]:
        with self._lock:
            for opportunity in self._opportunities:
                if opportunity.id == opportunity_id:
                    return opportunity
        return None

    def mark_executed(self, opportunity_id: str) -> bool:
        """Mark an opportunity executed. Unknown ids are ignored."""
        with self._lock:
            for opportunity in self._opportunities:
                if opportunity.id == opportunity_id:
                    opportunity.status = OpportunityStatus.EXECUTED
                    return True
        return False

    def _merge_into_registry(self, found: List[ArbitrageOpportunity], now: float) -> None:
        retention = self._settings.retention_seconds
        with self._lock:
            retained = [o for o in self._opportunities if now - o.detected_at < retention]
            merged = found + retained
            kept = merged[: self._settings.max_opportunities]
            kept_ids = {o.id for o in kept}
            for opportunity in self._opportunities:
                if opportunity.id not in kept_ids and opportunity.status is OpportunityStatus.ACTIVE:
                    opportunity.status = OpportunityStatus.EXPIRED
            self._opportunities = kept

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _group_similar_markets(self, markets: Iterable[MarketSnapshot]) -> List[List[MarketSnapshot]]:
        groups: Dict[str, List[MarketSnapshot]] = defaultdict(list)
        for market in markets:
            if len(market.outcome_prices) < 2:
                continue
            groups[self._classifier.grouping_key(market.question)].append(market)
        return [group for group in groups.values() if len(group) >= 2]

    def _next_id(self, prefix: str, key: str, now: float) -> str:
        return f"{prefix}-{key}-{int(now * 1000)}-{next(self._seq)}"

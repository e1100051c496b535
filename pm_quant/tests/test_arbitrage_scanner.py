"""Tests for binary / multi-market arbitrage scanning."""

from __future__ import annotations

import random

import pytest

from pm_quant.arbitrage_scanner import ArbitrageScanner
from pm_quant.config import ArbitrageSettings
from pm_quant.models import MarketSnapshot, OpportunityKind, OpportunityStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start: float = 10_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _scanner(clock: FakeClock | None = None, **kw) -> ArbitrageScanner:
    return ArbitrageScanner(ArbitrageSettings(**kw), clock=clock or FakeClock())


def _market(market_id: str, yes: float, no: float, question: str | None = None) -> MarketSnapshot:
    return MarketSnapshot(
        market_id=market_id,
        question=question or f"Market {market_id}",
        outcome_prices=(yes, no),
    )


# ---------------------------------------------------------------------------
# Binary
# ---------------------------------------------------------------------------


class TestBinaryArbitrage:
    def test_flags_underpriced_market(self) -> None:
        scanner = _scanner()
        found = scanner.scan_binary_arbitrage([_market("m1", 0.45, 0.50)])
        assert len(found) == 1
        opp = found[0]
        assert opp.kind is OpportunityKind.BINARY
        assert opp.total_cost == pytest.approx(0.97)
        assert opp.profit == pytest.approx(0.03)
        assert opp.profit_percent == pytest.approx(0.03 / 0.97 * 100)
        assert opp.guaranteed_payout == 1.0
        assert opp.status is OpportunityStatus.ACTIVE
        assert opp.market1.price == 0.45
        assert opp.market2 is not None and opp.market2.price == 0.50

    def test_ignores_overpriced_market(self) -> None:
        scanner = _scanner()
        assert scanner.scan_binary_arbitrage([_market("m1", 0.50, 0.52)]) == []

    def test_fee_pushes_market_out(self) -> None:
        scanner = _scanner()
        # 0.49 + 0.50 = 0.99 is under 1.0, but not after the 0.02 fee.
        assert scanner.scan_binary_arbitrage([_market("m1", 0.49, 0.50)]) == []

    def test_skips_non_binary(self) -> None:
        scanner = _scanner()
        market = MarketSnapshot(
            market_id="m3",
            question="Three-way",
            outcome_prices=(0.2, 0.2, 0.2),
            outcomes=("A", "B", "C"),
        )
        assert scanner.scan_binary_arbitrage([market]) == []

    def test_registry_merges_and_retains(self) -> None:
        clock = FakeClock()
        scanner = _scanner(clock)
        first = scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40)])
        clock.now += 60
        second = scanner.scan_binary_arbitrage([_market("m2", 0.40, 0.40)])
        active = scanner.get_active_opportunities()
        assert [o.id for o in active] == [second[0].id, first[0].id]

    def test_registry_drops_old_entries(self) -> None:
        clock = FakeClock()
        scanner = _scanner(clock)
        first = scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40)])
        clock.now += 301
        scanner.scan_binary_arbitrage([])
        assert scanner.get_active_opportunities() == []
        assert first[0].status is OpportunityStatus.EXPIRED

    def test_registry_capped(self) -> None:
        scanner = _scanner(max_opportunities=50)
        markets = [_market(f"m{i}", 0.40, 0.40) for i in range(60)]
        scanner.scan_binary_arbitrage(markets)
        assert len(scanner.get_active_opportunities()) == 50

    def test_active_opportunities_idempotent(self) -> None:
        scanner = _scanner()
        scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40), _market("m2", 0.30, 0.50)])
        assert scanner.get_active_opportunities() == scanner.get_active_opportunities()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestMarkExecuted:
    def test_marks_executed(self) -> None:
        scanner = _scanner()
        opp = scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40)])[0]
        assert scanner.mark_executed(opp.id) is True
        assert scanner.get_opportunity(opp.id).status is OpportunityStatus.EXECUTED
        assert scanner.get_active_opportunities() == []

    def test_unknown_id_is_noop(self) -> None:
        scanner = _scanner()
        scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40)])
        assert scanner.mark_executed("does-not-exist") is False
        assert len(scanner.get_active_opportunities()) == 1

    def test_ids_are_unique_within_a_scan(self) -> None:
        scanner = _scanner()
        found = scanner.scan_binary_arbitrage([_market("m1", 0.40, 0.40), _market("m1", 0.41, 0.40)])
        assert len({o.id for o in found}) == 2


# ---------------------------------------------------------------------------
# Multi-market
# ---------------------------------------------------------------------------


class TestMultiMarketArbitrage:
    def test_pairs_similar_questions(self) -> None:
        scanner = _scanner()
        m1 = _market("a", 0.40, 0.60, "Will Bitcoin reach $100k by June?")
        m2 = _market("b", 0.60, 0.50, "Will Bitcoin reach $100k by December?")
        found = scanner.scan_multi_market_arbitrage([m1, m2])
        assert len(found) == 1
        opp = found[0]
        assert opp.kind is OpportunityKind.MULTI_MARKET
        assert opp.market_ids == ("a", "b")
        assert opp.total_cost == pytest.approx(0.90)
        assert opp.profit == pytest.approx(1 - 0.90 - 0.02)
        assert opp.profit_percent == pytest.approx(0.10 / 0.90 * 100)

    def test_threshold(self) -> None:
        scanner = _scanner()
        m1 = _market("a", 0.50, 0.50, "Will Bitcoin reach $100k by June?")
        m2 = _market("b", 0.50, 0.49, "Will Bitcoin reach $100k by December?")
        # 0.50 + 0.49 = 0.99, above the 0.98 slack threshold.
        assert scanner.scan_multi_market_arbitrage([m1, m2]) == []

    def test_unrelated_markets_not_paired(self) -> None:
        scanner = _scanner()
        m1 = _market("a", 0.10, 0.10, "Will Bitcoin reach $100k?")
        m2 = _market("b", 0.10, 0.10, "Will Trump win Ohio?")
        assert scanner.scan_multi_market_arbitrage([m1, m2]) == []

    def test_does_not_touch_registry(self) -> None:
        scanner = _scanner()
        m1 = _market("a", 0.40, 0.60, "Will Bitcoin reach $100k by June?")
        m2 = _market("b", 0.60, 0.50, "Will Bitcoin reach $100k by December?")
        scanner.scan_multi_market_arbitrage([m1, m2])
        assert scanner.get_active_opportunities() == []


# ---------------------------------------------------------------------------
# Cross-platform simulation
# ---------------------------------------------------------------------------


class TestCrossPlatform:
    def test_seeded_and_clamped(self) -> None:
        markets = [_market(f"m{i}", 0.005 + 0.1 * i, 0.5) for i in range(12)]
        rows_a = ArbitrageScanner(rng=random.Random(3)).simulate_cross_platform_prices(markets)
        rows_b = ArbitrageScanner(rng=random.Random(3)).simulate_cross_platform_prices(markets)
        assert len(rows_a) == 10
        assert [r.kalshi_price for r in rows_a] == [r.kalshi_price for r in rows_b]
        for row in rows_a:
            assert 0.01 <= row.kalshi_price <= 0.99
            assert row.price_difference == pytest.approx(abs(row.polymarket_price - row.kalshi_price))
            assert row.arbitrage_available == (row.price_difference > 0.03)

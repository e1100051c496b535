"""Tests for fractional Kelly sizing and rolling trade statistics."""

from __future__ import annotations

import pytest

from pm_quant.config import KellyConfig
from pm_quant.kelly_sizing import KellySizer
from pm_quant.models import KellyInput, Recommendation


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sizer(**kw) -> KellySizer:
    return KellySizer(KellyConfig(**kw))


def _input(**kw) -> KellyInput:
    base = dict(
        current_price=0.40,
        estimated_probability=0.60,
        bankroll=10_000.0,
        kelly_fraction=0.5,
        max_position_percent=0.05,
    )
    base.update(kw)
    return KellyInput(**base)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    def test_defaults(self) -> None:
        cfg = KellyConfig()
        assert cfg.lookback_period == 40
        assert cfg.scaling_factor == 0.5
        assert cfg.min_trades == 10
        assert cfg.default_fraction == 0.02
        assert cfg.max_optimal_fraction == 0.25

    def test_frozen(self) -> None:
        cfg = KellyConfig()
        with pytest.raises(AttributeError):
            cfg.scaling_factor = 1.0  # type: ignore[misc]


# ---------------------------------------------------------------------------
# calculate_kelly
# ---------------------------------------------------------------------------


class TestCalculateKelly:
    def test_capped_strong_buy(self) -> None:
        r = _sizer().calculate_kelly(_input())
        assert r.edge == pytest.approx(0.20)
        assert r.fraction == pytest.approx(0.05)
        assert r.position_size == 500.0
        assert r.confidence == 1.0
        assert r.recommendation is Recommendation.STRONG_BUY

    def test_zero_edge_avoids(self) -> None:
        r = _sizer().calculate_kelly(_input(current_price=0.50, estimated_probability=0.50))
        assert r.fraction == 0.0
        assert r.position_size == 0.0
        assert r.confidence == 0.0
        assert r.recommendation is Recommendation.AVOID

    def test_negative_edge_avoids(self) -> None:
        r = _sizer().calculate_kelly(_input(current_price=0.70, estimated_probability=0.55))
        assert r.fraction == 0.0
        assert r.edge == pytest.approx(-0.15)
        assert r.recommendation is Recommendation.AVOID

    def test_uncapped_fraction(self) -> None:
        # edge 0.03, raw 0.06, half Kelly 0.03 -> buy.
        r = _sizer().calculate_kelly(_input(current_price=0.50, estimated_probability=0.53))
        assert r.fraction == pytest.approx(0.03)
        assert r.position_size == pytest.approx(300.0)
        assert r.confidence == pytest.approx(0.2)
        assert r.recommendation is Recommendation.BUY

    def test_small_fraction_holds(self) -> None:
        # edge 0.01, raw 0.02, half Kelly 0.01 -> hold.
        r = _sizer().calculate_kelly(_input(current_price=0.50, estimated_probability=0.51))
        assert r.fraction == pytest.approx(0.01)
        assert r.recommendation is Recommendation.HOLD

    def test_position_size_rounded_to_cents(self) -> None:
        r = _sizer().calculate_kelly(
            _input(current_price=0.30, estimated_probability=0.31, bankroll=1234.567)
        )
        assert r.position_size == round(r.position_size, 2)

    def test_fraction_never_exceeds_cap(self) -> None:
        sizer = _sizer()
        for prob in (0.2, 0.5, 0.8, 0.99):
            r = sizer.calculate_kelly(
                _input(current_price=0.01, estimated_probability=prob, kelly_fraction=1.0)
            )
            assert 0.0 <= r.fraction <= 0.05


# ---------------------------------------------------------------------------
# Trade history
# ---------------------------------------------------------------------------


class TestHistoricalMetrics:
    def test_requires_ten_trades(self) -> None:
        sizer = _sizer()
        for _ in range(9):
            sizer.add_trade(10.0, 1000.0)
        assert sizer.calculate_historical_metrics() is None
        sizer.add_trade(10.0, 1000.0)
        assert sizer.calculate_historical_metrics() is not None

    def test_metrics(self) -> None:
        sizer = _sizer()
        for _ in range(6):
            sizer.add_trade(20.0, 1000.0)
        for _ in range(4):
            sizer.add_trade(-10.0, 1000.0)
        m = sizer.calculate_historical_metrics()
        assert m is not None
        assert m.win_rate == pytest.approx(0.6)
        assert m.avg_win == pytest.approx(20.0)
        assert m.avg_loss == pytest.approx(10.0)
        assert m.expectancy == pytest.approx(0.6 * 20 - 0.4 * 10)

    def test_zero_pnl_counts_as_loss(self) -> None:
        sizer = _sizer()
        for _ in range(10):
            sizer.add_trade(0.0, 1000.0)
        m = sizer.calculate_historical_metrics()
        assert m is not None
        assert m.win_rate == 0.0
        assert m.avg_loss == 0.0

    def test_lookback_evicts_oldest(self) -> None:
        sizer = _sizer(lookback_period=10)
        for _ in range(10):
            sizer.add_trade(-5.0, 1000.0)
        for _ in range(10):
            sizer.add_trade(5.0, 1000.0)
        assert sizer.trade_count == 10
        m = sizer.calculate_historical_metrics()
        assert m is not None
        assert m.win_rate == 1.0


class TestOptimalFraction:
    def test_default_without_history(self) -> None:
        assert _sizer().calculate_optimal_fraction() == 0.02

    def test_default_without_losses(self) -> None:
        sizer = _sizer()
        for _ in range(10):
            sizer.add_trade(5.0, 1000.0)
        assert sizer.calculate_optimal_fraction() == 0.02

    def test_scaled_kelly(self) -> None:
        sizer = _sizer()
        for _ in range(6):
            sizer.add_trade(20.0, 1000.0)
        for _ in range(4):
            sizer.add_trade(-10.0, 1000.0)
        # R = 2, kelly = (0.6*2 - 0.4) / 2 = 0.4, half -> 0.2.
        assert sizer.calculate_optimal_fraction() == pytest.approx(0.2)

    def test_clamped_to_max(self) -> None:
        sizer = _sizer(scaling_factor=1.0)
        for _ in range(9):
            sizer.add_trade(50.0, 1000.0)
        sizer.add_trade(-10.0, 1000.0)
        assert sizer.calculate_optimal_fraction() == 0.25

    def test_losing_history_clamped_to_zero(self) -> None:
        sizer = _sizer()
        for _ in range(2):
            sizer.add_trade(5.0, 1000.0)
        for _ in range(8):
            sizer.add_trade(-10.0, 1000.0)
        assert sizer.calculate_optimal_fraction() == 0.0

    def test_only_losses(self) -> None:
        sizer = _sizer()
        for _ in range(10):
            sizer.add_trade(-10.0, 1000.0)
        assert sizer.calculate_optimal_fraction() == 0.0

    def test_clear(self) -> None:
        sizer = _sizer()
        for _ in range(10):
            sizer.add_trade(-10.0, 1000.0)
        sizer.clear()
        assert sizer.trade_count == 0
        assert sizer.calculate_optimal_fraction() == 0.02

"""Tests for the fixed-capacity FIFO history."""

from __future__ import annotations

import pytest

from pm_quant.framework.bounded_history import BoundedHistory


class TestBoundedHistory:
    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            BoundedHistory(0)

    def test_keeps_newest_in_order(self) -> None:
        h: BoundedHistory[int] = BoundedHistory(3)
        for i in range(7):
            h.append(i)
        assert h.items() == [4, 5, 6]
        assert len(h) == 3
        assert h.capacity == 3

    def test_append_returns_evicted(self) -> None:
        h: BoundedHistory[str] = BoundedHistory(2)
        assert h.append("a") is None
        assert h.append("b") is None
        assert h.append("c") == "a"

    def test_latest(self) -> None:
        h: BoundedHistory[int] = BoundedHistory(10)
        for i in range(5):
            h.append(i)
        assert h.latest(2) == [3, 4]
        assert h.latest(50) == [0, 1, 2, 3, 4]
        assert h.latest(0) == []

    def test_newest_and_find(self) -> None:
        h: BoundedHistory[int] = BoundedHistory(4)
        assert h.newest() is None
        h.append(10)
        h.append(21)
        assert h.newest() == 21
        assert h.find(lambda x: x > 15) == 21
        assert h.find(lambda x: x > 100) is None

    def test_clear(self) -> None:
        h: BoundedHistory[int] = BoundedHistory(4)
        h.append(1)
        h.clear()
        assert not h
        assert h.items() == []

"""
============================================================================
Unit Tests - Bounded Collections
============================================================================

Reliability Level: L6 Critical
Test Coverage: BoundedHistory, RecencyMap
============================================================================
"""

import pytest

from asset_classification.bounded import BoundedHistory, RecencyMap


class TestBoundedHistory:
    """Tests for the fixed-capacity history buffer."""

    def test_keeps_most_recent(self):
        history = BoundedHistory(5)

        for i in range(6):
            history.append(i)

        assert history.items() == [1, 2, 3, 4, 5]
        assert len(history) == 5

    def test_append_returns_evicted(self):
        history = BoundedHistory(2)

        assert history.append("a") is None
        assert history.append("b") is None
        assert history.append("c") == "a"

    def test_latest(self):
        history = BoundedHistory(5)
        for i in range(4):
            history.append(i)

        assert history.latest(2) == [2, 3]
        assert history.latest(0) == []
        assert history.latest(10) == [0, 1, 2, 3]

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            BoundedHistory(0)


class TestRecencyMap:
    """Tests for the recency-ordered bounded map."""

    def test_evicts_least_recently_touched(self):
        recency = RecencyMap(2)
        recency.set("a", 1)
        recency.set("b", 2)
        recency.touch("a")

        evicted = recency.set("c", 3)

        assert evicted == ("b", 2)
        assert recency.keys() == ["a", "c"]

    def test_get_or_create(self):
        recency = RecencyMap(3)

        first = recency.get_or_create("k", list)
        first.append(1)

        assert recency.get_or_create("k", list) == [1]
        assert len(recency) == 1

    def test_trim_keeps_most_recent(self):
        recency = RecencyMap(100)
        for i in range(20):
            recency.set(i, i)

        removed = recency.trim(10)

        assert removed == 10
        assert recency.keys() == list(range(10, 20))

    def test_touch_missing_key(self):
        assert RecencyMap(1).touch("missing") is False

    def test_pop_and_contains(self):
        recency = RecencyMap(2)
        recency.set("a", 1)

        assert "a" in recency
        assert recency.pop("a") == 1
        assert "a" not in recency

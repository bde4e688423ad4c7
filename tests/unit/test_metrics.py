"""
============================================================================
Unit Tests - Metrics & Health Aggregator
============================================================================

Reliability Level: L6 Critical
Test Coverage: ClassificationMetrics, Prometheus recording functions

Tests verify:
1. Counters per outcome, error kind, source and category
2. Rolling average over the last 100 durations
3. Alert thresholds
4. Health score deductions and status bands
============================================================================
"""

import pytest
from prometheus_client import REGISTRY

from asset_classification.metrics import (
    DURATION_WINDOW,
    OTHER_SOURCE_LABEL,
    ClassificationMetrics,
    record_classification,
    record_schema_violations,
    source_label,
    unknown_tag_fingerprint,
)
from asset_classification.schemas import (
    AlertLevel,
    AssetCategory,
    ClassificationResult,
    ErrorKind,
    HealthStatus,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def metrics():
    """Create a fresh aggregator."""
    return ClassificationMetrics()


USD = ClassificationResult(AssetCategory.STABLECOIN, "USD")


def alerts_by_metric(alerts):
    return {alert.metric: alert for alert in alerts}


# =============================================================================
# Counter Tests
# =============================================================================

class TestCounters:
    """Tests for in-process counters."""

    def test_success_and_failure(self, metrics):
        metrics.record_success("cmc", USD, 1.0)
        metrics.record_failure("cmc", ErrorKind.VALIDATION, 1.0)

        snapshot = metrics.get_metrics()
        assert snapshot["total_classifications"] == 2
        assert snapshot["successful_classifications"] == 1
        assert snapshot["failed_classifications"] == 1
        assert snapshot["errors_by_kind"] == {"validation": 1, "pattern": 0, "unknown": 0}
        assert snapshot["by_source"] == {"cmc": 2}
        assert snapshot["by_category"]["Stablecoin"] == 1
        assert snapshot["by_pegged_asset"] == {"USD": 1}

    def test_empty_success_rate(self, metrics):
        assert metrics.success_rate == 1.0
        assert metrics.average_duration_ms == 0.0

    def test_rolling_average_window(self, metrics):
        for _ in range(DURATION_WINDOW):
            metrics.record_success("cmc", USD, 1000.0)
        for _ in range(DURATION_WINDOW):
            metrics.record_success("cmc", USD, 2.0)

        assert metrics.average_duration_ms == pytest.approx(2.0)

    def test_unknown_tag_fingerprint(self, metrics):
        assert unknown_tag_fingerprint(["meme", "dog", "a", "b", "c", "d"]) == "a|b|c|d|dog"
        assert metrics.record_unknown_tags([]) is None
        assert metrics.record_unknown_tags(["meme", "dog"]) == "dog|meme"
        assert metrics.unknown_pattern_count == 1

    def test_trim(self, metrics):
        for i in range(30):
            metrics.record_unknown_tags([f"tag{i}"])
            metrics.record_success(f"source{i}", USD, 1.0)

        removed = metrics.trim(10, unknown_keep=20)

        assert removed["by_source"] == 20
        assert removed["unknown_patterns"] == 10

    def test_reset(self, metrics):
        metrics.record_failure("cmc", ErrorKind.VALIDATION, 1.0)

        metrics.reset()

        assert metrics.get_metrics()["total_classifications"] == 0

    def test_prometheus_counter(self):
        labels = {"source": "cmc", "category": "Stablecoin"}
        before = REGISTRY.get_sample_value("asset_classifications_total", labels) or 0.0

        record_classification("cmc", "Stablecoin", 0.001)

        assert REGISTRY.get_sample_value("asset_classifications_total", labels) == before + 1

    def test_unlisted_source_shares_other_label(self):
        labels = {"source": OTHER_SOURCE_LABEL, "category": "Stablecoin"}
        before = REGISTRY.get_sample_value("asset_classifications_total", labels) or 0.0

        for i in range(5):
            record_classification(f"feed-{i}", "Stablecoin", 0.001)

        assert REGISTRY.get_sample_value("asset_classifications_total", labels) == before + 5
        assert REGISTRY.get_sample_value(
            "asset_classifications_total", {"source": "feed-0", "category": "Stablecoin"}
        ) is None

    @pytest.mark.parametrize("source,expected", [
        ("cmc", "cmc"),
        ("coingecko", "coingecko"),
        ("aggregated", "aggregated"),
        ("unknown", "unknown"),
        ("my-private-feed", "other"),
    ])
    def test_source_label(self, source, expected):
        assert source_label(source) == expected

    def test_recording_never_raises(self):
        record_schema_violations("cmc", [object()])


# =============================================================================
# Alert Tests
# =============================================================================

class TestAlerts:
    """Tests for threshold alerts."""

    def test_no_alerts_when_healthy(self, metrics):
        metrics.record_success("cmc", USD, 1.0)

        assert metrics.compute_alerts(0.0) == []

    def test_success_rate_warning(self, metrics):
        for _ in range(7):
            metrics.record_success("cmc", USD, 1.0)
        for _ in range(3):
            metrics.record_failure("cmc", ErrorKind.UNKNOWN, 1.0)

        alert = alerts_by_metric(metrics.compute_alerts())["success_rate"]
        assert alert.level is AlertLevel.WARNING

    def test_success_rate_critical(self, metrics):
        metrics.record_success("cmc", USD, 1.0)
        for _ in range(3):
            metrics.record_failure("cmc", ErrorKind.UNKNOWN, 1.0)

        alert = alerts_by_metric(metrics.compute_alerts())["success_rate"]
        assert alert.level is AlertLevel.CRITICAL

    def test_duration_alerts(self, metrics):
        metrics.record_success("cmc", USD, 200.0)
        assert alerts_by_metric(metrics.compute_alerts())["average_duration_ms"].level is AlertLevel.WARNING

        metrics.record_success("cmc", USD, 2000.0)
        assert alerts_by_metric(metrics.compute_alerts())["average_duration_ms"].level is AlertLevel.CRITICAL

    def test_unknown_pattern_alert(self, metrics):
        for i in range(21):
            metrics.record_unknown_tags([f"tag{i}"])

        assert "unknown_tag_patterns" in alerts_by_metric(metrics.compute_alerts())

    @pytest.mark.parametrize("rate,level", [
        (0.15, AlertLevel.WARNING),
        (0.35, AlertLevel.CRITICAL),
    ])
    def test_conflict_rate_alert(self, metrics, rate, level):
        assert alerts_by_metric(metrics.compute_alerts(rate))["conflict_rate"].level is level

    def test_conflict_rate_at_threshold(self, metrics):
        assert metrics.compute_alerts(0.10) == []


# =============================================================================
# Health Score Tests
# =============================================================================

class TestOverallHealth:
    """Tests for the health score."""

    def test_perfect_score(self, metrics):
        health = metrics.overall_health()

        assert health["score"] == 100.0
        assert health["status"] == "healthy"

    def test_success_rate_deduction(self, metrics):
        for _ in range(9):
            metrics.record_success("cmc", USD, 1.0)
        metrics.record_failure("cmc", ErrorKind.UNKNOWN, 1.0)

        health = metrics.overall_health()

        assert health["deductions"]["success_rate"] == pytest.approx(8.0)
        assert health["score"] == pytest.approx(92.0)

    def test_success_rate_deduction_is_capped(self, metrics):
        metrics.record_failure("cmc", ErrorKind.UNKNOWN, 1.0)

        assert metrics.overall_health()["deductions"]["success_rate"] == 40.0

    def test_conflict_deduction_is_capped(self, metrics):
        health = metrics.overall_health(conflict_rate=0.5)

        assert health["deductions"]["conflict_rate"] == 30.0
        assert health["status"] == "degraded"

    @pytest.mark.parametrize("status,deduction", [
        (HealthStatus.HEALTHY, 0.0),
        (HealthStatus.DEGRADED, 10.0),
        (HealthStatus.CRITICAL, 25.0),
    ])
    def test_schema_deduction(self, metrics, status, deduction):
        assert metrics.overall_health(schema_status=status)["deductions"]["schema"] == deduction

    def test_duration_deduction(self, metrics):
        metrics.record_success("cmc", USD, 300.0)

        health = metrics.overall_health()

        assert health["deductions"]["duration"] == pytest.approx(10.0)

    def test_critical_status(self, metrics):
        metrics.record_failure("cmc", ErrorKind.UNKNOWN, 1000.0)

        health = metrics.overall_health(conflict_rate=0.5, schema_status=HealthStatus.CRITICAL)

        assert health["score"] == 0.0
        assert health["status"] == "critical"

"""
============================================================================
Unit Tests - Schema Monitor
============================================================================

Reliability Level: L6 Critical
Test Coverage: SchemaMonitor, type_of, check_record

Tests verify:
1. Missing required fields and type mismatches are reported
2. Unknown attributes are tracked per source
3. Undeclared sources are discovered, and shapes inferred
4. Health status thresholds over the last 24 hours
============================================================================
"""

from datetime import datetime, timedelta, timezone

import pytest

from asset_classification.errors import ConfigurationError
from asset_classification.schema_monitor import (
    EVOLUTION_LOG_CAPACITY,
    MAX_TRACKED_SOURCES,
    SchemaMonitor,
    type_of,
)
from asset_classification.schemas import HealthStatus, SourceSchema, ViolationKind


# =============================================================================
# Fixtures
# =============================================================================

class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def monitor(clock):
    """Create a schema monitor with the built-in source shapes."""
    return SchemaMonitor(clock=clock)


def cmc_record(**overrides):
    record = {"id": 825, "name": "Tether", "symbol": "USDT", "slug": "tether", "tags": ["stablecoin"]}
    record.update(overrides)
    return record


# =============================================================================
# Type Model Tests
# =============================================================================

class TestTypeModel:
    """Tests for mapping values onto the schema type model."""

    @pytest.mark.parametrize("value,expected", [
        (None, "null"),
        ([1], "array"),
        ((1,), "array"),
        ("x", "string"),
        (1, "number"),
        (1.5, "number"),
        (True, "boolean"),
        ({"a": 1}, "object"),
    ])
    def test_type_of(self, value, expected):
        assert type_of(value) == expected


# =============================================================================
# Validation Tests
# =============================================================================

class TestValidation:
    """Tests for validate_and_track on declared sources."""

    def test_clean_record(self, monitor):
        report = monitor.validate_and_track(cmc_record(), "cmc")

        assert report.known_source
        assert report.is_clean

    def test_missing_required_field(self, monitor):
        record = cmc_record()
        del record["symbol"]

        report = monitor.validate_and_track(record, "cmc")

        missing = [v for v in report.violations if v.kind is ViolationKind.MISSING_REQUIRED]
        assert len(missing) == 1
        assert missing[0].field == "symbol"

    def test_type_mismatch(self, monitor):
        report = monitor.validate_and_track(cmc_record(tags="stablecoin"), "cmc")

        assert len(report.violations) == 1
        violation = report.violations[0]
        assert violation.kind is ViolationKind.TYPE_MISMATCH
        assert violation.field == "tags"
        assert violation.actual == "string"

    def test_unknown_attributes(self, monitor):
        report = monitor.validate_and_track(cmc_record(brand_new_field=1), "CMC")

        assert report.unknown_attributes == ["brand_new_field"]
        summary = monitor.get_schema_monitoring_summary()
        assert summary["unknown_attributes"]["cmc"] == ["brand_new_field"]

    def test_evolution_log_only_on_drift(self, monitor):
        monitor.validate_and_track(cmc_record(), "cmc")
        assert monitor.get_evolution_log("cmc") == []

        monitor.validate_and_track(cmc_record(extra=True), "cmc")
        log = monitor.get_evolution_log("cmc")
        assert len(log) == 1
        assert log[0]["unknown_attributes"] == ["extra"]

    def test_evolution_log_is_bounded(self, monitor):
        for i in range(EVOLUTION_LOG_CAPACITY + 5):
            monitor.validate_and_track(cmc_record(**{f"field_{i}": i}), "cmc")

        assert len(monitor.get_evolution_log("cmc")) == EVOLUTION_LOG_CAPACITY

    def test_per_source_locks_are_bounded(self, monitor):
        for i in range(MAX_TRACKED_SOURCES * 2):
            assert monitor.get_evolution_log(f"source-{i}") == []

        assert len(monitor._source_locks) <= MAX_TRACKED_SOURCES

    def test_non_mapping_record(self, monitor):
        report = monitor.validate_and_track(["not", "a", "record"], "cmc")

        assert report.violations[0].kind is ViolationKind.TYPE_MISMATCH


# =============================================================================
# Discovery Tests
# =============================================================================

class TestDiscovery:
    """Tests for schema discovery on undeclared sources."""

    def test_unknown_source_is_discovered(self, monitor):
        report = monitor.validate_and_track({"ticker": "USDT", "price": 1.0}, "newsource")

        assert not report.known_source
        assert report.is_clean
        stats = monitor.get_discovery_stats("newsource")
        assert stats["sample_count"] == 1
        assert stats["fields"]["price"]["types"] == ["number"]

    def test_infer_schema(self, monitor):
        monitor.validate_and_track({"ticker": "USDT", "price": 1.0}, "newsource")
        monitor.validate_and_track({"ticker": "USDC", "price": None, "chain": "eth"}, "newsource")

        schema = monitor.infer_schema("newsource")

        assert schema.required_fields == ("ticker", "price")
        assert schema.optional_fields == ("chain",)
        assert schema.field_types["price"] == ("null", "number")

    def test_infer_schema_without_samples(self, monitor):
        assert monitor.infer_schema("silent") is None

    def test_register_schema(self, monitor):
        monitor.register_schema("newsource", SourceSchema(required_fields=("ticker",)))

        report = monitor.validate_and_track({"price": 1.0}, "newsource")

        assert report.known_source
        assert [v.field for v in report.violations] == ["ticker"]
        assert "newsource" in monitor.known_sources()
        assert monitor.get_discovery_stats("newsource") is None

    def test_register_schema_rejects_unknown_type(self, monitor):
        with pytest.raises(ConfigurationError):
            monitor.register_schema(
                "newsource",
                SourceSchema(required_fields=("a",), field_types={"a": ("decimal",)}),
            )


# =============================================================================
# Health Tests
# =============================================================================

class TestHealth:
    """Tests for the derived schema health status."""

    def test_healthy_by_default(self, monitor):
        assert monitor.get_schema_monitoring_summary()["status"] == "healthy"

    def test_degraded_on_unknown_attributes(self, monitor):
        monitor.validate_and_track(cmc_record(a=1, b=2, c=3, d=4, e=5, f=6), "cmc")

        assert monitor.current_status() is HealthStatus.DEGRADED

    def test_critical_on_violations(self, monitor):
        for _ in range(EVOLUTION_LOG_CAPACITY):
            monitor.validate_and_track({"tags": "x", "cmc_rank": "1", "quote": []}, "cmc")

        summary = monitor.get_schema_monitoring_summary()
        assert summary["violations_24h"] > 50
        assert summary["status"] == "critical"

    def test_old_events_leave_the_window(self, monitor, clock):
        monitor.validate_and_track(cmc_record(a=1, b=2, c=3, d=4, e=5, f=6), "cmc")

        clock.now = clock.now + timedelta(hours=25)

        assert monitor.current_status() is HealthStatus.HEALTHY

    def test_trim(self, monitor):
        for i in range(20):
            monitor.validate_and_track({"x": i}, f"source{i}")

        removed = monitor.trim(10)

        assert removed["discovery"] == 10

"""
============================================================================
Metrics & Health Aggregator - Classification Observability
============================================================================

Reliability Level: L6 Critical
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- asset_classifications_total: Counter of successful classifications
- asset_classification_errors_total: Counter of failed classifications
- asset_classification_duration_seconds: Distribution of classify() latency
- asset_classification_conflicts_total: Counter of detected conflicts
- asset_schema_violations_total: Counter of record shape violations
- asset_classification_health_score: Last computed health score (0-100)

The source label is limited to the built-in sources plus "aggregated" and
"unknown". Any other source is recorded as "other".

IN-PROCESS STATE
----------------
ClassificationMetrics keeps the counters the engine reports from
get_metrics(): totals, per error kind, per source, per category, a rolling
average over the last 100 durations and a bounded set of unknown tag
fingerprints. Alerts and the health score are derived from it.

HEALTH SCORE
------------
Starts at 100 and deducts:
- up to 40 for success rate (0.8 per missing percent)
- up to 30 for conflict rate (1 per percent)
- 10 / 25 for schema degraded / critical
- up to 20 for average duration (1 per 20ms over 100ms)
Status: critical < 50, degraded < 75, else healthy.
============================================================================
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from prometheus_client import Counter, Gauge, Histogram

from asset_classification.bounded import BoundedHistory, RecencyMap
from asset_classification.config import DEFAULT_SOURCE_PRIORITIES
from asset_classification.schemas import (
    AlertLevel,
    AssetCategory,
    ClassificationResult,
    ErrorKind,
    HealthAlert,
    HealthStatus,
    utc_now,
)

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

CLASSIFICATIONS = Counter(
    "asset_classifications_total",
    "Total number of successful asset classifications",
    ["source", "category"]
)

CLASSIFICATION_ERRORS = Counter(
    "asset_classification_errors_total",
    "Total number of failed asset classifications",
    ["source", "kind"]
)

# Buckets: 0.1ms .. 1s
CLASSIFICATION_DURATION = Histogram(
    "asset_classification_duration_seconds",
    "Distribution of asset classification latency",
    buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)

CONFLICTS = Counter(
    "asset_classification_conflicts_total",
    "Total number of cross-source classification conflicts detected",
    ["conflict_type"]
)

SCHEMA_VIOLATIONS = Counter(
    "asset_schema_violations_total",
    "Total number of upstream record shape violations",
    ["source", "kind"]
)

HEALTH_SCORE = Gauge(
    "asset_classification_health_score",
    "Last computed classification health score (0-100)"
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

# Sources outside this set share the "other" label
LABELED_SOURCES = frozenset(DEFAULT_SOURCE_PRIORITIES) | {"aggregated", "unknown"}
OTHER_SOURCE_LABEL = "other"


def source_label(source: str) -> str:
    return source if source in LABELED_SOURCES else OTHER_SOURCE_LABEL


def record_classification(source: str, category: str, duration_seconds: float) -> None:
    """
    Record a successful classification.

    Side Effects: Increments Prometheus counter, observes histogram
    """
    try:
        CLASSIFICATIONS.labels(source=source_label(source), category=category).inc()
        CLASSIFICATION_DURATION.observe(duration_seconds)
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record classification metric | error=%s",
            str(e)
        )


def record_classification_error(source: str, kind: str, duration_seconds: float) -> None:
    """Record a failed classification."""
    try:
        CLASSIFICATION_ERRORS.labels(source=source_label(source), kind=kind).inc()
        CLASSIFICATION_DURATION.observe(duration_seconds)
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record classification_error metric | error=%s",
            str(e)
        )


def record_conflict(conflict_type: str) -> None:
    try:
        CONFLICTS.labels(conflict_type=conflict_type).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record conflict metric | error=%s",
            str(e)
        )


def record_schema_violations(source: str, violations: Iterable[Any]) -> None:
    """
    Record schema violations for a source.

    Args:
        source: Source identifier
        violations: SchemaViolation instances
    """
    try:
        for violation in violations:
            SCHEMA_VIOLATIONS.labels(source=source_label(source), kind=violation.kind.value).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record schema_violation metric | error=%s",
            str(e)
        )


def update_health_score(score: float) -> None:
    try:
        HEALTH_SCORE.set(score)
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to update health_score gauge | error=%s",
            str(e)
        )


# ============================================================================
# THRESHOLDS
# ============================================================================

DURATION_WINDOW = 100
MAX_UNKNOWN_PATTERNS = 100
MAX_TRACKED_SOURCES = 100
UNKNOWN_PATTERN_TAG_LIMIT = 5

SUCCESS_RATE_WARNING = 0.80
SUCCESS_RATE_CRITICAL = 0.50
DURATION_WARNING_MS = 100.0
DURATION_CRITICAL_MS = 500.0
UNKNOWN_PATTERNS_WARNING = 20
CONFLICT_RATE_WARNING = 0.10
CONFLICT_RATE_CRITICAL = 0.30

MAX_SUCCESS_DEDUCTION = 40.0
MAX_CONFLICT_DEDUCTION = 30.0
MAX_DURATION_DEDUCTION = 20.0
SCHEMA_DEDUCTIONS = {
    HealthStatus.HEALTHY: 0.0,
    HealthStatus.DEGRADED: 10.0,
    HealthStatus.CRITICAL: 25.0,
}

HEALTH_CRITICAL_BELOW = 50.0
HEALTH_DEGRADED_BELOW = 75.0


def unknown_tag_fingerprint(tags: Iterable[str]) -> str:
    """Stable fingerprint for a tag set that matched no rule."""
    return "|".join(sorted(tags)[:UNKNOWN_PATTERN_TAG_LIMIT])


# ============================================================================
# IN-PROCESS AGGREGATOR
# ============================================================================

class ClassificationMetrics:
    """
    Counters, rolling latency and derived health for one engine instance.

    Reliability Level: L6 Critical
    Side Effects: Mirrors counters into Prometheus
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._started_at = clock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._errors_by_kind = {kind.value: 0 for kind in ErrorKind}  # type: Dict[str, int]
        self._by_category = {category.value: 0 for category in AssetCategory}  # type: Dict[str, int]
        self._by_source = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, int]
        self._by_pegged_asset = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, int]
        self._durations = BoundedHistory(DURATION_WINDOW)  # type: BoundedHistory[float]
        self._unknown_patterns = RecencyMap(MAX_UNKNOWN_PATTERNS)  # type: RecencyMap[str, int]
        self._last_classification_at = None  # type: Optional[datetime]

    # ------------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------------

    def record_success(self, source: str, result: ClassificationResult, duration_ms: float) -> None:
        with self._lock:
            self._total += 1
            self._successful += 1
            self._by_category[result.asset_category.value] = (
                self._by_category.get(result.asset_category.value, 0) + 1
            )
            self._by_source.set(source, (self._by_source.get(source) or 0) + 1)
            if result.pegged_asset:
                self._by_pegged_asset.set(
                    result.pegged_asset,
                    (self._by_pegged_asset.get(result.pegged_asset) or 0) + 1,
                )
            self._durations.append(duration_ms)
            self._last_classification_at = self._clock()

        record_classification(source, result.asset_category.value, duration_ms / 1000.0)

    def record_failure(self, source: str, kind: ErrorKind, duration_ms: float) -> None:
        with self._lock:
            self._total += 1
            self._failed += 1
            self._errors_by_kind[kind.value] = self._errors_by_kind.get(kind.value, 0) + 1
            self._by_source.set(source, (self._by_source.get(source) or 0) + 1)
            self._durations.append(duration_ms)
            self._last_classification_at = self._clock()

        record_classification_error(source, kind.value, duration_ms / 1000.0)

    def record_unknown_tags(self, tags: Iterable[str]) -> Optional[str]:
        """
        Remember the fingerprint of a tag set that fell through to Other.

        Returns:
            The fingerprint, or None for an empty tag set
        """
        tags = [t for t in tags if t]
        if not tags:
            return None
        fingerprint = unknown_tag_fingerprint(tags)
        with self._lock:
            self._unknown_patterns.set(
                fingerprint, (self._unknown_patterns.get(fingerprint) or 0) + 1
            )
        return fingerprint

    # ------------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------------

    @property
    def success_rate(self) -> float:
        with self._lock:
            return self._successful / self._total if self._total else 1.0

    @property
    def average_duration_ms(self) -> float:
        with self._lock:
            window = self._durations.items()
        return sum(window) / len(window) if window else 0.0

    @property
    def unknown_pattern_count(self) -> int:
        with self._lock:
            return len(self._unknown_patterns)

    def compute_alerts(self, conflict_rate: float = 0.0) -> List[HealthAlert]:
        """
        Derive threshold alerts.

        Args:
            conflict_rate: Conflicted asset keys / tracked asset keys (0-1)

        Returns:
            List of HealthAlert, empty when all metrics are within bounds
        """
        alerts = []  # type: List[HealthAlert]

        with self._lock:
            has_traffic = self._total > 0
        success_rate = self.success_rate
        avg_ms = self.average_duration_ms
        unknown = self.unknown_pattern_count

        if has_traffic and success_rate < SUCCESS_RATE_WARNING:
            critical = success_rate < SUCCESS_RATE_CRITICAL
            alerts.append(HealthAlert(
                level=AlertLevel.CRITICAL if critical else AlertLevel.WARNING,
                metric="success_rate",
                message=f"Classification success rate is {success_rate:.1%}",
                value=success_rate,
                threshold=SUCCESS_RATE_CRITICAL if critical else SUCCESS_RATE_WARNING,
            ))

        if avg_ms > DURATION_WARNING_MS:
            critical = avg_ms > DURATION_CRITICAL_MS
            alerts.append(HealthAlert(
                level=AlertLevel.CRITICAL if critical else AlertLevel.WARNING,
                metric="average_duration_ms",
                message=f"Average classification time is {avg_ms:.1f}ms",
                value=avg_ms,
                threshold=DURATION_CRITICAL_MS if critical else DURATION_WARNING_MS,
            ))

        if unknown > UNKNOWN_PATTERNS_WARNING:
            alerts.append(HealthAlert(
                level=AlertLevel.WARNING,
                metric="unknown_tag_patterns",
                message=f"{unknown} unrecognized tag patterns observed",
                value=float(unknown),
                threshold=float(UNKNOWN_PATTERNS_WARNING),
            ))

        if conflict_rate > CONFLICT_RATE_WARNING:
            critical = conflict_rate > CONFLICT_RATE_CRITICAL
            alerts.append(HealthAlert(
                level=AlertLevel.CRITICAL if critical else AlertLevel.WARNING,
                metric="conflict_rate",
                message=f"Cross-source conflict rate is {conflict_rate:.1%}",
                value=conflict_rate,
                threshold=CONFLICT_RATE_CRITICAL if critical else CONFLICT_RATE_WARNING,
            ))

        return alerts

    def overall_health(
        self,
        conflict_rate: float = 0.0,
        schema_status: HealthStatus = HealthStatus.HEALTHY
    ) -> Dict[str, Any]:
        """
        Compute the single health score.

        Returns:
            Dict with score, status and per-component deductions
        """
        success_pct = self.success_rate * 100.0
        deductions = {
            "success_rate": min(MAX_SUCCESS_DEDUCTION, (100.0 - success_pct) * 0.8),
            "conflict_rate": min(MAX_CONFLICT_DEDUCTION, max(conflict_rate, 0.0) * 100.0),
            "schema": SCHEMA_DEDUCTIONS.get(schema_status, 0.0),
            "duration": min(
                MAX_DURATION_DEDUCTION,
                max(self.average_duration_ms - DURATION_WARNING_MS, 0.0) / 20.0,
            ),
        }
        score = max(0.0, 100.0 - sum(deductions.values()))

        if score < HEALTH_CRITICAL_BELOW:
            status = HealthStatus.CRITICAL
        elif score < HEALTH_DEGRADED_BELOW:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        update_health_score(score)

        return {
            "score": round(score, 2),
            "status": status.value,
            "deductions": {name: round(value, 2) for name, value in deductions.items()},
        }

    def get_metrics(self) -> Dict[str, Any]:
        avg_ms = self.average_duration_ms
        with self._lock:
            return {
                "total_classifications": self._total,
                "successful_classifications": self._successful,
                "failed_classifications": self._failed,
                "success_rate": self._successful / self._total if self._total else 1.0,
                "errors_by_kind": dict(self._errors_by_kind),
                "by_category": dict(self._by_category),
                "by_source": dict(self._by_source.items()),
                "by_pegged_asset": dict(self._by_pegged_asset.items()),
                "average_duration_ms": avg_ms,
                "unknown_tag_patterns": self._unknown_patterns.keys(),
                "started_at": self._started_at.isoformat(),
                "last_classification_at": (
                    self._last_classification_at.isoformat()
                    if self._last_classification_at else None
                ),
            }

    def trim(self, keep: int, unknown_keep: int = 50) -> Dict[str, int]:
        with self._lock:
            return {
                "by_source": self._by_source.trim(keep),
                "by_pegged_asset": self._by_pegged_asset.trim(keep),
                "unknown_patterns": self._unknown_patterns.trim(unknown_keep),
            }

    def reset(self) -> None:
        with self._lock:
            self._reset_state()

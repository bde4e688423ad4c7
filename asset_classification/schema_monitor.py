"""
============================================================================
Schema Monitor - Upstream Record Shape Drift Detection
============================================================================

Reliability Level: L6 Critical
Traceability: Every drift event is kept in a bounded per-source log

SCHEMA VALIDATION:
    Each known source declares an expected record shape:
    - required_fields: must be present
    - optional_fields: may be present
    - field_types:     allowed type kinds per field

    Type model: null, array, string, number, boolean, object

    validate_and_track() reports:
    - missing_required: a required field is absent
    - type_mismatch:    a present field has a kind outside its allowed set
    - unknown attributes: fields not declared as required or optional

SCHEMA DISCOVERY:
    Records from sources without a declared shape are not validated.
    Instead the monitor accumulates field frequency and observed types,
    which infer_schema() can turn into a declared shape.

EVOLUTION LOG:
    Capacity 25 per source. An event is written only when a record has
    violations or unknown attributes. Writes for a source are serialized
    by that source's lock.

HEALTH:
    critical: >50 violations or >20 unknown attributes in the last 24h
    degraded: >10 violations or >5 unknown attributes in the last 24h
    healthy:  otherwise
============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Set
import logging
import threading

from asset_classification.bounded import BoundedHistory, RecencyMap
from asset_classification.errors import ConfigurationError
from asset_classification.metrics import record_schema_violations
from asset_classification.schemas import (
    HealthStatus,
    SchemaValidationReport,
    SchemaViolation,
    SourceSchema,
    ViolationKind,
    utc_now,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TYPE_NULL = "null"
TYPE_ARRAY = "array"
TYPE_STRING = "string"
TYPE_NUMBER = "number"
TYPE_BOOLEAN = "boolean"
TYPE_OBJECT = "object"

TYPE_KINDS = frozenset({
    TYPE_NULL, TYPE_ARRAY, TYPE_STRING, TYPE_NUMBER, TYPE_BOOLEAN, TYPE_OBJECT,
})

EVOLUTION_LOG_CAPACITY = 25
MAX_TRACKED_SOURCES = 100
MAX_UNKNOWN_ATTRIBUTES_PER_SOURCE = 100
MAX_DISCOVERY_FIELDS = 200

HEALTH_WINDOW = timedelta(hours=24)

CRITICAL_VIOLATIONS = 50
CRITICAL_UNKNOWN_ATTRIBUTES = 20
DEGRADED_VIOLATIONS = 10
DEGRADED_UNKNOWN_ATTRIBUTES = 5

_ID = (TYPE_STRING, TYPE_NUMBER)
_TEXT = (TYPE_STRING,)
_OPT_TEXT = (TYPE_STRING, TYPE_NULL)
_TAGS = (TYPE_ARRAY, TYPE_NULL)
_NUM = (TYPE_NUMBER, TYPE_NULL)
_OBJ = (TYPE_OBJECT, TYPE_NULL)

DEFAULT_SOURCE_SCHEMAS = {
    "cmc": SourceSchema(
        required_fields=("id", "name", "symbol"),
        optional_fields=(
            "slug", "tags", "platform", "quote", "cmc_rank", "num_market_pairs",
            "circulating_supply", "total_supply", "max_supply", "infinite_supply",
            "date_added", "last_updated", "self_reported_circulating_supply",
            "self_reported_market_cap", "tvl_ratio", "is_active", "is_fiat",
        ),
        field_types={
            "id": _ID, "name": _TEXT, "symbol": _TEXT, "slug": _OPT_TEXT,
            "tags": _TAGS, "platform": _OBJ, "quote": _OBJ, "cmc_rank": _NUM,
            "circulating_supply": _NUM, "total_supply": _NUM, "max_supply": _NUM,
        },
    ),
    "messari": SourceSchema(
        required_fields=("id", "symbol", "name"),
        optional_fields=("slug", "tags", "metrics", "profile", "serial_id", "contract_addresses"),
        field_types={
            "id": _ID, "symbol": _TEXT, "name": _TEXT, "slug": _OPT_TEXT,
            "tags": _TAGS, "metrics": _OBJ, "profile": _OBJ,
        },
    ),
    "coingecko": SourceSchema(
        required_fields=("id", "symbol", "name"),
        optional_fields=(
            "categories", "tags", "image", "current_price", "market_cap",
            "market_cap_rank", "total_volume", "platforms", "last_updated",
        ),
        field_types={
            "id": _ID, "symbol": _TEXT, "name": _TEXT, "categories": _TAGS,
            "tags": _TAGS, "current_price": _NUM, "market_cap": _NUM,
            "platforms": _OBJ,
        },
    ),
    "defillama": SourceSchema(
        required_fields=("id", "name", "symbol"),
        optional_fields=(
            "gecko_id", "pegType", "pegMechanism", "circulating", "price",
            "chains", "chainCirculating", "tags", "priceSource",
        ),
        field_types={
            "id": _ID, "name": _TEXT, "symbol": _TEXT, "gecko_id": _OPT_TEXT,
            "pegType": _OPT_TEXT, "pegMechanism": _OPT_TEXT, "chains": _TAGS,
            "tags": _TAGS, "circulating": _OBJ, "price": _NUM,
        },
    ),
}


def type_of(value: Any) -> str:
    """Map a Python value onto the schema type model."""
    if value is None:
        return TYPE_NULL
    if isinstance(value, bool):
        return TYPE_BOOLEAN
    if isinstance(value, (int, float)):
        return TYPE_NUMBER
    if isinstance(value, str):
        return TYPE_STRING
    if isinstance(value, (list, tuple)):
        return TYPE_ARRAY
    if isinstance(value, Mapping):
        return TYPE_OBJECT
    return type(value).__name__


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class DiscoveryStats:
    """Field statistics accumulated for a source with no declared shape."""
    sample_count: int = 0
    field_counts: Dict[str, int] = field(default_factory=dict)
    field_types: Dict[str, Set[str]] = field(default_factory=dict)
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "fields": {
                name: {
                    "count": count,
                    "frequency": count / self.sample_count if self.sample_count else 0.0,
                    "types": sorted(self.field_types.get(name, ())),
                }
                for name, count in self.field_counts.items()
            },
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


# =============================================================================
# Schema Monitor Class
# =============================================================================

class SchemaMonitor:
    """
    Per-source record shape validation, drift log and schema discovery.

    Reliability Level: L6 Critical
    Side Effects: Mutates in-memory logs and statistics (lock-guarded)
    """

    def __init__(
        self,
        schemas: Optional[Mapping[str, SourceSchema]] = None,
        evolution_capacity: int = EVOLUTION_LOG_CAPACITY,
        clock: Callable[[], datetime] = utc_now
    ):
        self._schemas = dict(DEFAULT_SOURCE_SCHEMAS if schemas is None else schemas)
        self._evolution_capacity = evolution_capacity
        self._clock = clock

        self._lock = threading.Lock()
        self._source_locks = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, threading.Lock]

        self._evolution = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, BoundedHistory]
        self._unknown_attributes = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, RecencyMap]
        self._discovery = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, DiscoveryStats]

        self._records_validated = 0
        self._total_violations = 0

    # -------------------------------------------------------------------------
    # Declared shapes
    # -------------------------------------------------------------------------

    def get_schema(self, source: str) -> Optional[SourceSchema]:
        with self._lock:
            return self._schemas.get(_source_id(source))

    def known_sources(self) -> List[str]:
        with self._lock:
            return sorted(self._schemas)

    def register_schema(self, source: str, schema: SourceSchema) -> None:
        """
        Declare (or replace) the expected shape for a source.

        Raises:
            ConfigurationError: If the schema uses an unknown type kind
        """
        if not isinstance(schema, SourceSchema):
            raise ConfigurationError(
                f"Schema for '{source}' must be a SourceSchema, got: {type(schema).__name__}"
            )
        for name, kinds in schema.field_types.items():
            unknown = set(kinds) - TYPE_KINDS
            if unknown:
                raise ConfigurationError(
                    f"Schema for '{source}' field '{name}' uses unknown type kinds: {sorted(unknown)}"
                )

        source_id = _source_id(source)
        with self._lock:
            self._schemas[source_id] = schema
            self._discovery.pop(source_id)

        logger.info(
            f"[SCHEMA] Registered source schema | source={source_id} | "
            f"required={len(schema.required_fields)} | optional={len(schema.optional_fields)}"
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_and_track(self, record: Any, source: str) -> SchemaValidationReport:
        """
        Validate one record against its source shape and track drift.

        Args:
            record: Raw upstream record
            source: Source identifier

        Returns:
            SchemaValidationReport (unvalidated, with known_source=False,
            for sources that have no declared shape)
        """
        source_id = _source_id(source)

        if not isinstance(record, Mapping):
            return SchemaValidationReport(
                source=source_id,
                known_source=False,
                violations=[SchemaViolation(
                    field="<record>",
                    kind=ViolationKind.TYPE_MISMATCH,
                    expected=TYPE_OBJECT,
                    actual=type_of(record),
                )],
            )

        schema = self.get_schema(source_id)
        if schema is None:
            self._discover(source_id, record)
            return SchemaValidationReport(source=source_id, known_source=False)

        report = SchemaValidationReport(
            source=source_id,
            known_source=True,
            violations=check_record(record, schema),
            unknown_attributes=[str(k) for k in record if k not in schema.known_fields],
        )

        with self._lock:
            self._records_validated += 1
            self._total_violations += len(report.violations)

        if not report.is_clean:
            self._track_drift(source_id, report)

        return report

    def _source_lock(self, source_id: str) -> threading.Lock:
        # Evicted alongside the per-source state it guards
        with self._lock:
            return self._source_locks.get_or_create(source_id, threading.Lock)

    def _track_drift(self, source_id: str, report: SchemaValidationReport) -> None:
        now = self._clock()
        event = {
            "timestamp": now,
            "violations": [v.to_dict() for v in report.violations],
            "unknown_attributes": list(report.unknown_attributes),
        }

        with self._source_lock(source_id):
            with self._lock:
                log = self._evolution.get_or_create(
                    source_id, lambda: BoundedHistory(self._evolution_capacity)
                )
                seen = self._unknown_attributes.get_or_create(
                    source_id, lambda: RecencyMap(MAX_UNKNOWN_ATTRIBUTES_PER_SOURCE)
                )
                for name in report.unknown_attributes:
                    seen.set(name, now)
            log.append(event)

        if report.violations:
            record_schema_violations(source_id, report.violations)

        logger.warning(
            f"[SCHEMA-DRIFT] Record shape drift detected | source={source_id} | "
            f"violations={len(report.violations)} | "
            f"unknown_attributes={','.join(report.unknown_attributes[:10])}"
        )

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def _discover(self, source_id: str, record: Mapping[str, Any]) -> None:
        now = self._clock()
        with self._lock:
            stats = self._discovery.get_or_create(source_id, DiscoveryStats)
            stats.sample_count += 1
            if stats.first_seen is None:
                stats.first_seen = now
            stats.last_seen = now
            for key, value in record.items():
                name = str(key)
                if name not in stats.field_counts and len(stats.field_counts) >= MAX_DISCOVERY_FIELDS:
                    continue
                stats.field_counts[name] = stats.field_counts.get(name, 0) + 1
                stats.field_types.setdefault(name, set()).add(type_of(value))

        if stats.sample_count == 1:
            logger.info(f"[SCHEMA] Discovering schema for undeclared source | source={source_id}")

    def get_discovery_stats(self, source: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            stats = self._discovery.get(_source_id(source))
            return stats.to_dict() if stats is not None else None

    def infer_schema(self, source: str) -> Optional[SourceSchema]:
        """
        Turn discovery statistics into a declared shape.

        Fields seen in every sample are required; the rest are optional.

        Returns:
            SourceSchema, or None if no samples were observed
        """
        with self._lock:
            stats = self._discovery.get(_source_id(source))
            if stats is None or stats.sample_count == 0:
                return None
            counts = dict(stats.field_counts)
            types = {name: tuple(sorted(kinds)) for name, kinds in stats.field_types.items()}
            samples = stats.sample_count

        required = tuple(name for name, count in counts.items() if count == samples)
        optional = tuple(name for name, count in counts.items() if count < samples)
        return SourceSchema(
            required_fields=required,
            optional_fields=optional,
            field_types={name: kinds for name, kinds in types.items() if all(k in TYPE_KINDS for k in kinds)},
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_evolution_log(self, source: str) -> List[Dict[str, Any]]:
        source_id = _source_id(source)
        with self._source_lock(source_id):
            with self._lock:
                log = self._evolution.get(source_id)
            events = log.items() if log is not None else []
        return [
            {**event, "timestamp": event["timestamp"].isoformat()}
            for event in events
        ]

    def _window_counts(self) -> Dict[str, int]:
        cutoff = self._clock() - HEALTH_WINDOW
        with self._lock:
            logs = self._evolution.values()
            unknown_maps = self._unknown_attributes.values()
        violations = sum(
            len(event["violations"])
            for log in logs
            for event in log.items()
            if event["timestamp"] >= cutoff
        )
        unknown = sum(
            1
            for seen in unknown_maps
            for _, last_seen in seen.items()
            if last_seen >= cutoff
        )
        return {"violations": violations, "unknown_attributes": unknown}

    def current_status(self) -> HealthStatus:
        counts = self._window_counts()
        return _status_for(counts["violations"], counts["unknown_attributes"])

    def get_schema_monitoring_summary(self) -> Dict[str, Any]:
        counts = self._window_counts()
        status = _status_for(counts["violations"], counts["unknown_attributes"])

        with self._lock:
            unknown_by_source = {
                source: seen.keys() for source, seen in self._unknown_attributes.items()
            }
            summary = {
                "status": status.value,
                "violations_24h": counts["violations"],
                "unknown_attributes_24h": counts["unknown_attributes"],
                "records_validated": self._records_validated,
                "total_violations": self._total_violations,
                "known_sources": sorted(self._schemas),
                "discovering_sources": self._discovery.keys(),
                "unknown_attributes": unknown_by_source,
                "evolution_log_sizes": {
                    source: len(log) for source, log in self._evolution.items()
                },
            }
        return summary

    def trim(self, keep: int) -> Dict[str, int]:
        """Keep only the `keep` most recently touched sources in every collection."""
        with self._lock:
            removed = {
                "evolution": self._evolution.trim(keep),
                "unknown_attributes": self._unknown_attributes.trim(keep),
                "discovery": self._discovery.trim(keep),
            }
            for seen in self._unknown_attributes.values():
                seen.trim(keep)
        return removed


# =============================================================================
# Helpers
# =============================================================================

def _source_id(source: Optional[str]) -> str:
    text = str(source).strip().lower() if source is not None else ""
    return text or "unknown"


def _status_for(violations: int, unknown_attributes: int) -> HealthStatus:
    if violations > CRITICAL_VIOLATIONS or unknown_attributes > CRITICAL_UNKNOWN_ATTRIBUTES:
        return HealthStatus.CRITICAL
    if violations > DEGRADED_VIOLATIONS or unknown_attributes > DEGRADED_UNKNOWN_ATTRIBUTES:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def check_record(record: Mapping[str, Any], schema: SourceSchema) -> List[SchemaViolation]:
    """Missing-required and type-mismatch violations for one record."""
    violations = []  # type: List[SchemaViolation]

    for name in schema.required_fields:
        if name not in record:
            violations.append(SchemaViolation(
                field=name,
                kind=ViolationKind.MISSING_REQUIRED,
                expected="present",
                actual="missing",
            ))

    for name, allowed in schema.field_types.items():
        if name not in record:
            continue
        actual = type_of(record[name])
        if actual not in allowed:
            violations.append(SchemaViolation(
                field=name,
                kind=ViolationKind.TYPE_MISMATCH,
                expected="|".join(allowed),
                actual=actual,
            ))

    return violations

"""
============================================================================
Asset Classification Schemas - Results, Records and Supporting Types
============================================================================

Reliability Level: L6 Critical
Traceability: Every record carries its source and UTC timestamp

CLASSIFICATION RESULT:
    The ClassificationResult is the value returned by the engine for one
    asset record. It contains:
    - asset_category (Stablecoin, Tokenized Asset, Other)
    - pegged_asset (USD, EUR, Gold, ETF, ... or None)

    pegged_asset is only meaningful when asset_category is not Other.

Key Constraints:
- Results are immutable after creation
- All timestamps in UTC
- Asset keys are derived deterministically from symbol/name/slug
============================================================================
"""

from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone


# =============================================================================
# Constants
# =============================================================================

# Generic labels produced by the pegged-asset cascade
LABEL_TOKENIZED_ASSET = "Tokenized Asset"
LABEL_COMMODITIES = "Commodities"
LABEL_GOLD = "Gold"
LABEL_SILVER = "Silver"

# Fields that make up an asset identity, in key priority order
ASSET_KEY_FIELDS = ("symbol", "name", "slug")


# =============================================================================
# Enums
# =============================================================================

class AssetCategory(Enum):
    """
    Primary asset category. Values are mutually exclusive.

    Reliability Level: L6 Critical
    """
    STABLECOIN = "Stablecoin"
    TOKENIZED_ASSET = "Tokenized Asset"
    OTHER = "Other"


class ErrorKind(Enum):
    """Per-call failure categories counted by the metrics aggregator."""
    VALIDATION = "validation"
    PATTERN = "pattern"
    UNKNOWN = "unknown"


class ConflictType(Enum):
    """Which fields disagree between sources."""
    CATEGORY = "category"
    PEGGED_ASSET = "pegged_asset"
    MIXED = "mixed"


class ResolutionStrategy(Enum):
    """
    Conflict resolution strategies.

    Reliability Level: L6 Critical
    """
    PRIORITY = "priority"
    CONSENSUS = "consensus"
    MOST_SPECIFIC = "most_specific"
    NEWEST = "newest"


class HealthStatus(Enum):
    """Derived health status for the schema monitor and overall engine."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class AlertLevel(Enum):
    """Alert severity."""
    WARNING = "warning"
    CRITICAL = "critical"


class ViolationKind(Enum):
    """Schema violation kinds."""
    MISSING_REQUIRED = "missing_required"
    TYPE_MISMATCH = "type_mismatch"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of classifying one asset record.

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    asset_category: AssetCategory
    pegged_asset: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the field names fetchers merge into their records."""
        return {
            "assetCategory": self.asset_category.value,
            "peggedAsset": self.pegged_asset,
        }


@dataclass(frozen=True)
class ClassificationRecord:
    """One source's classification of an asset, as kept in history."""
    source: str
    classification: ClassificationResult
    timestamp: datetime
    asset_info: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "classification": self.classification.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "asset_info": dict(self.asset_info),
        }


@dataclass
class ConflictResolution:
    """How a conflict was settled."""
    strategy: ResolutionStrategy
    result: ClassificationResult
    resolved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "result": self.result.to_dict(),
            "resolved_at": self.resolved_at.isoformat(),
        }


@dataclass
class Conflict:
    """
    Disagreement between sources for one asset key.

    Reliability Level: L6 Critical
    """
    asset_key: str
    detected_at: datetime
    triggering_source: str
    disagreements: Dict[str, List[Dict[str, Any]]]
    conflict_type: ConflictType
    resolved: bool = False
    resolution: Optional[ConflictResolution] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_key": self.asset_key,
            "detected_at": self.detected_at.isoformat(),
            "triggering_source": self.triggering_source,
            "disagreements": {
                name: [dict(entry) for entry in entries]
                for name, entries in self.disagreements.items()
            },
            "conflict_type": self.conflict_type.value,
            "resolved": self.resolved,
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


@dataclass(frozen=True)
class ConflictDetection:
    """Result of comparing one classification against stored history."""
    has_conflict: bool
    disagreements: Dict[str, List[Dict[str, Any]]]
    conflict_type: Optional[ConflictType] = None


@dataclass(frozen=True)
class SchemaViolation:
    """A single record-shape violation."""
    field: str
    kind: ViolationKind
    expected: str
    actual: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "kind": self.kind.value,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass(frozen=True)
class SourceSchema:
    """Expected record shape for one upstream source."""
    required_fields: Tuple[str, ...]
    optional_fields: Tuple[str, ...] = ()
    field_types: Dict[str, Tuple[str, ...]] = field(default_factory=dict, hash=False)

    @property
    def known_fields(self) -> frozenset:
        return frozenset(self.required_fields) | frozenset(self.optional_fields)


@dataclass
class SchemaValidationReport:
    """Outcome of validating one record against its source schema."""
    source: str
    known_source: bool
    violations: List[SchemaViolation] = field(default_factory=list)
    unknown_attributes: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.violations and not self.unknown_attributes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "known_source": self.known_source,
            "violations": [v.to_dict() for v in self.violations],
            "unknown_attributes": list(self.unknown_attributes),
        }


@dataclass(frozen=True)
class HealthAlert:
    """A threshold breach raised by the metrics aggregator."""
    level: AlertLevel
    metric: str
    message: str
    value: float
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "metric": self.metric,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
        }


# =============================================================================
# Factory Functions
# =============================================================================

def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def derive_asset_key(symbol: str, name: str, slug: str) -> Optional[str]:
    """
    Derive the identity used to correlate one asset across sources.

    primary = symbol if present, else name, else slug
    secondary = next available field after the primary

    Args:
        symbol: Normalized (lowercase, trimmed) symbol
        name: Normalized name
        slug: Normalized slug

    Returns:
        "primary" or "primary:secondary", or None if all fields are empty
    """
    values = [v for v in (symbol, name, slug) if v]
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return f"{values[0]}:{values[1]}"

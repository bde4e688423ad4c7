"""
============================================================================
Conflict Tracker & Resolver - Cross-Source Classification Disagreements
============================================================================

Reliability Level: L6 Critical
Traceability: Every conflict records its triggering source and timestamp

CONFLICT TRACKING:
    Each source's classification of an asset is appended to a bounded
    per-asset history (capacity 5, oldest evicted first). When a new
    classification arrives it is compared with the latest classification
    from every OTHER source for the same asset key. Any difference in
    asset_category or pegged_asset opens a conflict.

RESOLUTION STRATEGIES:
    - priority:      highest-priority source wins (unknown sources = 0)
    - consensus:     independent majority vote on category and on pegged
                     asset. The combination may not match any single
                     source's report; this is kept as-is.
    - most_specific: category weight (Stablecoin/Tokenized = 2, Other = 1)
                     + 1 when a pegged asset is present
    - newest:        latest timestamp wins

    Ties always go to the first source encountered in history order.

Key Constraints:
- All collections are capacity-bounded
- Resolution never mutates a conflict when it returns None
============================================================================
"""

from collections import Counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from datetime import datetime
import logging
import threading

from asset_classification.bounded import BoundedHistory, RecencyMap
from asset_classification.schemas import (
    AssetCategory,
    ClassificationRecord,
    ClassificationResult,
    Conflict,
    ConflictDetection,
    ConflictResolution,
    ConflictType,
    ResolutionStrategy,
    utc_now,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

HISTORY_CAPACITY = 5
MAX_TRACKED_ASSETS = 10000
MAX_CONFLICTS = 1000
MAX_TRACKED_SOURCES = 100

CATEGORY_SPECIFICITY = {
    AssetCategory.STABLECOIN: 2,
    AssetCategory.TOKENIZED_ASSET: 2,
    AssetCategory.OTHER: 1,
}


# =============================================================================
# Conflict Tracker Class
# =============================================================================

class ConflictTracker:
    """
    Bounded per-asset classification history with conflict detection.

    Reliability Level: L6 Critical
    Input Constraints: asset_key must be a non-empty normalized key
    Side Effects: Mutates in-memory history (guarded by a lock)
    """

    def __init__(
        self,
        history_capacity: int = HISTORY_CAPACITY,
        max_tracked_assets: int = MAX_TRACKED_ASSETS,
        max_conflicts: int = MAX_CONFLICTS,
        default_priorities: Optional[Mapping[str, int]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._history_capacity = history_capacity
        self._histories = RecencyMap(max_tracked_assets)  # type: RecencyMap[str, BoundedHistory]
        self._conflicts = RecencyMap(max_conflicts)  # type: RecencyMap[str, Conflict]
        self._source_disagreements = RecencyMap(MAX_TRACKED_SOURCES)  # type: RecencyMap[str, int]
        self._default_priorities = dict(default_priorities or {})
        self._clock = clock
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record(
        self,
        asset_key: str,
        source: str,
        result: ClassificationResult,
        asset_info: Optional[Dict[str, Any]] = None
    ) -> ClassificationRecord:
        """
        Append a classification to the asset's history.

        Returns:
            The stored record
        """
        entry = ClassificationRecord(
            source=source,
            classification=result,
            timestamp=self._clock(),
            asset_info=dict(asset_info or {}),
        )
        with self._lock:
            history = self._histories.get_or_create(
                asset_key, lambda: BoundedHistory(self._history_capacity)
            )
            history.append(entry)
        return entry

    def get_history(self, asset_key: str) -> List[ClassificationRecord]:
        with self._lock:
            history = self._histories.get(asset_key)
            return history.items() if history is not None else []

    def _latest_by_source(self, asset_key: str) -> List[ClassificationRecord]:
        """Latest record per source, in order of each source's first appearance."""
        latest = {}  # type: Dict[str, ClassificationRecord]
        history = self._histories.get(asset_key)
        if history is None:
            return []
        for entry in history.items():
            latest[entry.source] = entry
        return list(latest.values())

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect_conflicts(
        self,
        asset_key: str,
        current_source: str,
        current_result: ClassificationResult
    ) -> ConflictDetection:
        """
        Compare a classification with the latest one from every other source.

        Returns:
            ConflictDetection with per-field disagreement lists
        """
        with self._lock:
            others = [e for e in self._latest_by_source(asset_key) if e.source != current_source]

        category = []  # type: List[Dict[str, Any]]
        pegged = []  # type: List[Dict[str, Any]]

        for entry in others:
            stored = entry.classification
            if stored.asset_category != current_result.asset_category:
                category.append({
                    "source": entry.source,
                    "value": stored.asset_category.value,
                    "current_source": current_source,
                    "current_value": current_result.asset_category.value,
                })
            if stored.pegged_asset != current_result.pegged_asset:
                pegged.append({
                    "source": entry.source,
                    "value": stored.pegged_asset,
                    "current_source": current_source,
                    "current_value": current_result.pegged_asset,
                })

        disagreements = {"category": category, "pegged_asset": pegged}

        if category and pegged:
            conflict_type = ConflictType.MIXED
        elif category:
            conflict_type = ConflictType.CATEGORY
        elif pegged:
            conflict_type = ConflictType.PEGGED_ASSET
        else:
            return ConflictDetection(has_conflict=False, disagreements=disagreements)

        return ConflictDetection(
            has_conflict=True,
            disagreements=disagreements,
            conflict_type=conflict_type,
        )

    def track(
        self,
        asset_key: str,
        source: str,
        result: ClassificationResult,
        asset_info: Optional[Dict[str, Any]] = None
    ) -> ConflictDetection:
        """
        Detect conflicts for a new classification, then record it.

        A detected disagreement opens (or replaces) the asset's conflict.
        """
        detection = self.detect_conflicts(asset_key, source, result)
        self.record(asset_key, source, result, asset_info)

        if detection.has_conflict:
            conflict = Conflict(
                asset_key=asset_key,
                detected_at=self._clock(),
                triggering_source=source,
                disagreements=detection.disagreements,
                conflict_type=detection.conflict_type,
            )
            involved = {source}
            for entries in detection.disagreements.values():
                involved.update(entry["source"] for entry in entries)

            with self._lock:
                self._conflicts.set(asset_key, conflict)
                for name in sorted(involved):
                    self._source_disagreements.set(
                        name, (self._source_disagreements.get(name) or 0) + 1
                    )

            logger.info(
                f"[CONFLICT] Classification conflict detected | "
                f"asset_key={asset_key} | source={source} | "
                f"type={detection.conflict_type.value} | "
                f"category_disagreements={len(detection.disagreements['category'])} | "
                f"pegged_disagreements={len(detection.disagreements['pegged_asset'])}"
            )

        return detection

    def get_conflict(self, asset_key: str) -> Optional[Conflict]:
        with self._lock:
            return self._conflicts.get(asset_key)

    def get_unresolved_conflicts(self) -> List[Conflict]:
        with self._lock:
            return [c for c in self._conflicts.values() if not c.resolved]

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(
        self,
        asset_key: str,
        strategy: Union[str, ResolutionStrategy] = ResolutionStrategy.PRIORITY,
        source_priorities: Optional[Mapping[str, int]] = None
    ) -> Optional[ClassificationResult]:
        """
        Resolve an asset's classifications with the given strategy.

        Args:
            asset_key: Asset identity
            strategy: priority | consensus | most_specific | newest
            source_priorities: Priority overrides (higher wins)

        Returns:
            The chosen classification, or None on missing data / unknown strategy
        """
        try:
            strategy = ResolutionStrategy(strategy)
        except ValueError:
            logger.warning(
                f"[CONFLICT] Unknown resolution strategy | "
                f"asset_key={asset_key} | strategy={strategy}"
            )
            return None

        with self._lock:
            entries = self._latest_by_source(asset_key)

        if not entries:
            logger.debug(f"[CONFLICT] No classifications to resolve | asset_key={asset_key}")
            return None

        if strategy is ResolutionStrategy.PRIORITY:
            priorities = dict(self._default_priorities)
            priorities.update(source_priorities or {})
            result = _resolve_by_priority(entries, priorities)
        elif strategy is ResolutionStrategy.CONSENSUS:
            result = _resolve_by_consensus(entries)
        elif strategy is ResolutionStrategy.MOST_SPECIFIC:
            result = _resolve_by_specificity(entries)
        else:
            result = _resolve_by_newest(entries)

        with self._lock:
            conflict = self._conflicts.get(asset_key)
            if conflict is not None:
                conflict.resolved = True
                conflict.resolution = ConflictResolution(
                    strategy=strategy,
                    result=result,
                    resolved_at=self._clock(),
                )

        logger.info(
            f"[CONFLICT] Conflict resolved | asset_key={asset_key} | "
            f"strategy={strategy.value} | category={result.asset_category.value} | "
            f"pegged_asset={result.pegged_asset}"
        )
        return result

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def conflict_rate(self) -> float:
        """Conflicted asset keys / tracked asset keys."""
        with self._lock:
            tracked = len(self._histories)
            conflicted = len(self._conflicts)
        if tracked == 0:
            return 0.0
        return min(conflicted / tracked, 1.0)

    def get_conflict_summary(self) -> Dict[str, Any]:
        with self._lock:
            tracked = len(self._histories)
            conflicts = self._conflicts.values()
            sources = self._source_disagreements.items()

        by_type = Counter(c.conflict_type.value for c in conflicts)
        resolved = sum(1 for c in conflicts if c.resolved)
        rate = min(len(conflicts) / tracked, 1.0) if tracked else 0.0

        return {
            "total_tracked_assets": tracked,
            "conflicted_assets": len(conflicts),
            "conflict_rate": rate,
            "resolved": resolved,
            "unresolved": len(conflicts) - resolved,
            "by_type": {t.value: by_type.get(t.value, 0) for t in ConflictType},
            "top_disagreeing_sources": [
                {"source": name, "count": count}
                for name, count in sorted(sources, key=lambda item: (-item[1], item[0]))[:5]
            ],
        }

    def trim(self, keep: int) -> Dict[str, int]:
        """Keep only the `keep` most recently touched entries of every collection."""
        with self._lock:
            return {
                "histories": self._histories.trim(keep),
                "conflicts": self._conflicts.trim(keep),
                "sources": self._source_disagreements.trim(keep),
            }

    def clear(self) -> None:
        with self._lock:
            self._histories.clear()
            self._conflicts.clear()
            self._source_disagreements.clear()


# =============================================================================
# Resolution Strategies
# =============================================================================

def _resolve_by_priority(
    entries: List[ClassificationRecord],
    priorities: Mapping[str, int]
) -> ClassificationResult:
    best = entries[0]
    best_priority = priorities.get(best.source, 0)
    for entry in entries[1:]:
        priority = priorities.get(entry.source, 0)
        if priority > best_priority:
            best, best_priority = entry, priority
    return best.classification


def _majority(values: List[Any]) -> Any:
    """Most common value; ties go to the value seen first."""
    counts = Counter(values)
    top = max(counts.values())
    for value in values:
        if counts[value] == top:
            return value
    return None


def _resolve_by_consensus(entries: List[ClassificationRecord]) -> ClassificationResult:
    # Category and pegged asset are voted independently.
    category = _majority([e.classification.asset_category for e in entries])
    pegged = _majority([e.classification.pegged_asset for e in entries])
    return ClassificationResult(asset_category=category, pegged_asset=pegged)


def _specificity(result: ClassificationResult) -> int:
    score = CATEGORY_SPECIFICITY.get(result.asset_category, 0)
    if result.pegged_asset:
        score += 1
    return score


def _resolve_by_specificity(entries: List[ClassificationRecord]) -> ClassificationResult:
    best = entries[0]
    for entry in entries[1:]:
        if _specificity(entry.classification) > _specificity(best.classification):
            best = entry
    return best.classification


def _resolve_by_newest(entries: List[ClassificationRecord]) -> ClassificationResult:
    best = entries[0]
    for entry in entries[1:]:
        if entry.timestamp > best.timestamp:
            best = entry
    return best.classification

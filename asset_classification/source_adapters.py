"""
============================================================================
Source Tag Adapters - Upstream Records to Classifier Input
============================================================================

Reliability Level: L6 Critical

Upstream providers label assets differently. These adapters map each
provider's fields onto taxonomy tags so one rule set serves every source:

    coingecko:  categories -> tags ("stablecoins" -> "stablecoin")
    defillama:  pegType ("peggedUSD") -> tag
    messari /
    aggregated: records without tags come from stablecoin listings,
                so they default to ["stablecoin"]

prepare_asset() never raises. A non-mapping record is returned unchanged,
and a record whose tags are present but not a list keeps those tags, so
the classifier can count either as a validation failure.
============================================================================
"""

from typing import Any, Callable, Dict, List, Mapping
import logging

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

COINGECKO_CATEGORY_TAGS = {
    "stablecoins": "stablecoin",
    "stablecoin": "stablecoin",
    "tokenized-assets": "tokenized-assets",
    "tokenized-gold": "tokenized-gold",
    "tokenized-silver": "tokenized-silver",
    "tokenized-commodities": "tokenized-commodities",
    "tokenized-real-estate": "tokenized-real-estate",
    "tokenized-treasury-bills": "tokenized-treasury-bills",
    "asset-backed-stablecoin": "asset-backed-stablecoin",
}

STABLECOIN_LISTING_SOURCES = ("messari", "aggregated")

DEFAULT_LISTING_TAGS = ["stablecoin"]

CLASSIFIER_FIELDS = ("name", "symbol", "slug")


# =============================================================================
# Adapters
# =============================================================================

def _existing_tags(record: Mapping[str, Any]) -> List[Any]:
    tags = record.get("tags")
    return list(tags) if isinstance(tags, (list, tuple)) else []


def _coingecko_tags(record: Mapping[str, Any]) -> List[Any]:
    tags = _existing_tags(record)
    categories = record.get("categories")
    if isinstance(categories, (list, tuple)):
        for category in categories:
            key = str(category).strip().lower().replace(" ", "-")
            mapped = COINGECKO_CATEGORY_TAGS.get(key)
            if mapped and mapped not in tags:
                tags.append(mapped)
    return tags


def _defillama_tags(record: Mapping[str, Any]) -> List[Any]:
    tags = _existing_tags(record)
    peg_type = record.get("pegType")
    if isinstance(peg_type, str) and peg_type.strip() and peg_type not in tags:
        tags.append(peg_type.strip())
    return tags


def _listing_tags(record: Mapping[str, Any]) -> List[Any]:
    tags = _existing_tags(record)
    return tags if tags else list(DEFAULT_LISTING_TAGS)


TAG_ADAPTERS = {
    "coingecko": _coingecko_tags,
    "defillama": _defillama_tags,
}  # type: Dict[str, Callable[[Mapping[str, Any]], List[Any]]]
TAG_ADAPTERS.update({source: _listing_tags for source in STABLECOIN_LISTING_SOURCES})


def prepare_asset(record: Any, source: Any = None) -> Any:
    """
    Build classifier input (tags, name, symbol, slug) from an upstream record.

    Args:
        record: Raw upstream record
        source: Source identifier (selects the tag adapter)

    Returns:
        New mapping for the classifier, or the record unchanged if it is not a mapping
    """
    if not isinstance(record, Mapping):
        return record

    source_id = str(source).strip().lower() if source is not None else ""
    adapter = TAG_ADAPTERS.get(source_id)

    raw_tags = record.get("tags")
    malformed = raw_tags is not None and not isinstance(raw_tags, (list, tuple))

    # Malformed tags pass through untouched so the classifier rejects the record
    if adapter is not None and not malformed:
        tags = adapter(record)
    else:
        tags = raw_tags

    prepared = {name: record.get(name) for name in CLASSIFIER_FIELDS}  # type: Dict[str, Any]
    prepared["tags"] = tags

    if adapter is not None and not malformed:
        logger.debug(
            f"[ADAPTER] Prepared asset | source={source_id} | "
            f"symbol={record.get('symbol')} | tags={len(tags)}"
        )
    return prepared

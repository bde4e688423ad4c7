"""
============================================================================
Asset Classification Package - Taxonomy-Driven Asset Classifier
============================================================================

Reliability Level: L6 Critical (Hot Path)
Traceability: Every classification emits one structured decision log

ASSET CLASSIFICATION:
    Assigns every ingested asset record a primary category and, where
    applicable, the asset it is pegged to:

    1. Stablecoin       (USD, EUR, Gold, ...)
    2. Tokenized Asset  (Gold, Silver, ETF, Stocks, Treasury Bills, ...)
    3. Other

    Classifications from several upstream sources for the same asset are
    compared, and disagreements are tracked and resolved by strategy
    (priority, consensus, most_specific, newest).

MONITORING:
    - Schema Monitor: upstream record shape drift per source
    - Metrics: counters, latency, alerts and a single health score

LOGGING:
    The package attaches a NullHandler. Output appears only when the host
    application configures logging.

============================================================================
"""

import logging

from asset_classification.schemas import (
    AssetCategory,
    ClassificationResult,
    ConflictType,
    HealthStatus,
    ResolutionStrategy,
    SourceSchema,
)
from asset_classification.errors import ClassifierErrorCode, ConfigurationError
from asset_classification.config import (
    ClassificationConfig,
    get_classification_config,
    reset_classification_config,
)
from asset_classification.taxonomy import TaxonomyDefinition, build_taxonomy
from asset_classification.classifier import (
    AssetClassifier,
    get_asset_classifier,
    reset_asset_classifier,
)
from asset_classification.source_adapters import prepare_asset

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Schemas
    "AssetCategory",
    "ClassificationResult",
    "ConflictType",
    "HealthStatus",
    "ResolutionStrategy",
    "SourceSchema",
    # Errors
    "ClassifierErrorCode",
    "ConfigurationError",
    # Configuration
    "ClassificationConfig",
    "get_classification_config",
    "reset_classification_config",
    # Taxonomy
    "TaxonomyDefinition",
    "build_taxonomy",
    # Engine
    "AssetClassifier",
    "get_asset_classifier",
    "reset_asset_classifier",
    # Adapters
    "prepare_asset",
]

"""
============================================================================
Asset Classification - Configuration
============================================================================

Reliability Level: L6 Critical
Traceability: Configuration loading is logged

This module is the boundary between environment strings and the engine.
All parsing happens here; the engine receives typed, validated values.

ENVIRONMENT VARIABLES:
    - ASSET_CLASSIFICATION_ENABLED: Enable/disable classification (default: true)
    - CUSTOM_STABLECOIN_TAGS: Comma-separated extra stablecoin tags
    - CUSTOM_TOKENIZED_TAGS: Comma-separated extra tokenized-asset tags
    - CUSTOM_CURRENCIES: "CODE:Name,CODE:Name" extra currencies
    - ENABLED_SOURCES: Comma-separated source IDs (default: cmc,messari)
    - <SOURCE>_INCLUDE_TOKENIZED_ASSETS: "true" to include tokenized assets
    - CLASSIFIER_MEMORY_THRESHOLD_MB: Memory-pressure cleanup threshold (default: 512)
    - CLASSIFIER_PATTERN_SELF_TEST_MS: Pattern self-test budget (default: 50)

ERROR CODES:
    - CLS-CFG-001: Invalid configuration
============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
import logging
import os

from dotenv import load_dotenv

from asset_classification.errors import ConfigurationError
from asset_classification.patterns import DEFAULT_SELF_TEST_BUDGET_MS

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_ENABLED = True

DEFAULT_ENABLED_SOURCES = ["cmc", "messari"]

DEFAULT_MEMORY_THRESHOLD_MB = 512

# Higher wins during priority-based conflict resolution
DEFAULT_SOURCE_PRIORITIES = {
    "cmc": 10,
    "messari": 9,
    "defillama": 8,
    "coingecko": 6,
}

TRUE_VALUES = ("true", "1", "yes", "on")


# =============================================================================
# Parsing Helpers
# =============================================================================

def parse_custom_tags(value: Optional[str]) -> List[str]:
    """Split a comma-separated tag list, lowercased, empties dropped."""
    if not value or not isinstance(value, str):
        return []
    return [tag.strip().lower() for tag in value.split(",") if tag.strip()]


def parse_custom_currencies(value: Optional[str]) -> List[Tuple[str, str]]:
    """
    Parse "CODE:Name,CODE:Name" pairs.

    Malformed entries are skipped with a warning.

    Returns:
        List of (UPPERCASE_CODE, Name) tuples
    """
    if not value or not isinstance(value, str):
        return []

    currencies = []  # type: List[Tuple[str, str]]
    for mapping in value.split(","):
        if not mapping.strip():
            continue
        code, sep, name = mapping.partition(":")
        code = code.strip()
        name = name.strip()
        if not sep or not code or not name:
            logger.warning(
                f"[CLASSIFIER-CONFIG] Skipping malformed CUSTOM_CURRENCIES entry | "
                f"entry={mapping.strip()}"
            )
            continue
        currencies.append((code.upper(), name))
    return currencies


def parse_sources(value: Optional[str]) -> List[str]:
    if not value:
        return list(DEFAULT_ENABLED_SOURCES)
    sources = [s.strip().lower() for s in value.split(",") if s.strip()]
    return sources or list(DEFAULT_ENABLED_SOURCES)


def tokenized_assets_env_var(source_id: str) -> str:
    return f"{source_id.upper()}_INCLUDE_TOKENIZED_ASSETS"


# =============================================================================
# ClassificationConfig Class
# =============================================================================

@dataclass
class ClassificationConfig:
    """
    Asset classification configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - enabled: Whether classification is active (default: True)
    - custom_stablecoin_tags / custom_tokenized_tags: Taxonomy extensions
    - custom_currencies: Extra (CODE, Name) pairs
    - enabled_sources: Sources in scope (default: cmc, messari)
    - tokenized_sources: Sources that include tokenized assets
    - memory_threshold_mb: Memory-pressure cleanup threshold
    - pattern_self_test_ms: Pattern self-test budget
    - source_priorities: Priority-resolution weights
    ============================================================================

    Reliability Level: L6 Critical
    Side Effects: Logs configuration on load
    """
    enabled: bool = DEFAULT_ENABLED
    custom_stablecoin_tags: List[str] = field(default_factory=list)
    custom_tokenized_tags: List[str] = field(default_factory=list)
    custom_currencies: List[Tuple[str, str]] = field(default_factory=list)
    enabled_sources: List[str] = field(default_factory=lambda: list(DEFAULT_ENABLED_SOURCES))
    tokenized_sources: Set[str] = field(default_factory=set)
    memory_threshold_mb: int = DEFAULT_MEMORY_THRESHOLD_MB
    pattern_self_test_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
    source_priorities: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SOURCE_PRIORITIES))

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If any value is out of range
        """
        errors = []  # type: List[str]

        if self.memory_threshold_mb <= 0:
            errors.append(
                f"CLASSIFIER_MEMORY_THRESHOLD_MB must be positive, got: {self.memory_threshold_mb}"
            )
        if self.pattern_self_test_ms <= 0:
            errors.append(
                f"CLASSIFIER_PATTERN_SELF_TEST_MS must be positive, got: {self.pattern_self_test_ms}"
            )
        if not self.enabled_sources:
            errors.append("ENABLED_SOURCES must list at least one source")

        if errors:
            error_msg = "Classification configuration validation failed: " + "; ".join(errors)
            logger.error(f"[CLS-CFG-001] {error_msg}")
            raise ConfigurationError(error_msg)

    @classmethod
    def from_environment(cls, validate: bool = True) -> "ClassificationConfig":
        """
        Load configuration from environment variables (and a .env file if present).

        Args:
            validate: Whether to validate after loading

        Returns:
            ClassificationConfig instance

        Raises:
            ConfigurationError: If validation fails
        """
        load_dotenv()

        enabled_str = os.environ.get("ASSET_CLASSIFICATION_ENABLED", "true").lower().strip()
        enabled = enabled_str != "false"

        enabled_sources = parse_sources(os.environ.get("ENABLED_SOURCES"))

        candidates = set(enabled_sources) | set(DEFAULT_SOURCE_PRIORITIES)
        tokenized_sources = {
            source for source in candidates
            if os.environ.get(tokenized_assets_env_var(source), "").lower().strip() in TRUE_VALUES
        }

        memory_str = os.environ.get("CLASSIFIER_MEMORY_THRESHOLD_MB", str(DEFAULT_MEMORY_THRESHOLD_MB))
        try:
            memory_threshold_mb = int(memory_str.strip())
        except ValueError:
            logger.warning(
                f"[CLASSIFIER-CONFIG] Invalid CLASSIFIER_MEMORY_THRESHOLD_MB value: {memory_str}, "
                f"using default: {DEFAULT_MEMORY_THRESHOLD_MB}"
            )
            memory_threshold_mb = DEFAULT_MEMORY_THRESHOLD_MB

        budget_str = os.environ.get("CLASSIFIER_PATTERN_SELF_TEST_MS", str(DEFAULT_SELF_TEST_BUDGET_MS))
        try:
            pattern_self_test_ms = float(budget_str.strip())
        except ValueError:
            logger.warning(
                f"[CLASSIFIER-CONFIG] Invalid CLASSIFIER_PATTERN_SELF_TEST_MS value: {budget_str}, "
                f"using default: {DEFAULT_SELF_TEST_BUDGET_MS}"
            )
            pattern_self_test_ms = DEFAULT_SELF_TEST_BUDGET_MS

        config = cls(
            enabled=enabled,
            custom_stablecoin_tags=parse_custom_tags(os.environ.get("CUSTOM_STABLECOIN_TAGS")),
            custom_tokenized_tags=parse_custom_tags(os.environ.get("CUSTOM_TOKENIZED_TAGS")),
            custom_currencies=parse_custom_currencies(os.environ.get("CUSTOM_CURRENCIES")),
            enabled_sources=enabled_sources,
            tokenized_sources=tokenized_sources,
            memory_threshold_mb=memory_threshold_mb,
            pattern_self_test_ms=pattern_self_test_ms,
        )

        logger.info(
            f"[CLASSIFIER-CONFIG] Loading configuration from environment | "
            f"ASSET_CLASSIFICATION_ENABLED={config.enabled} | "
            f"ENABLED_SOURCES={','.join(config.enabled_sources)} | "
            f"CUSTOM_CURRENCIES_COUNT={len(config.custom_currencies)} | "
            f"MEMORY_THRESHOLD_MB={config.memory_threshold_mb}"
        )

        if validate:
            config.validate()

        return config

    def get_tokenized_assets_config(self, source_id: Optional[str]) -> Dict[str, Any]:
        """Per-source tokenized-asset inclusion flag, with the reason."""
        if not source_id:
            return {
                "enabled": False,
                "source": "unknown",
                "reason": "No source ID provided",
            }
        enabled = source_id.lower() in self.tokenized_sources
        return {
            "enabled": enabled,
            "source": source_id,
            "environment_variable": tokenized_assets_env_var(source_id),
            "reason": (
                "Explicitly enabled via configuration" if enabled
                else "Disabled by default (backward compatibility)"
            ),
        }

    def get_global_tokenized_assets_config(self) -> Dict[str, Any]:
        """Tokenized-asset inclusion summary across enabled sources."""
        enabled = [s for s in self.enabled_sources if s in self.tokenized_sources]
        disabled = [s for s in self.enabled_sources if s not in self.tokenized_sources]
        return {
            "enabled_sources": enabled,
            "disabled_sources": disabled,
            "total_sources": len(self.enabled_sources),
            "globally_enabled": bool(enabled),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "custom_stablecoin_tags": list(self.custom_stablecoin_tags),
            "custom_tokenized_tags": list(self.custom_tokenized_tags),
            "custom_currencies": [f"{code}:{name}" for code, name in self.custom_currencies],
            "enabled_sources": list(self.enabled_sources),
            "tokenized_sources": sorted(self.tokenized_sources),
            "memory_threshold_mb": self.memory_threshold_mb,
            "pattern_self_test_ms": self.pattern_self_test_ms,
            "source_priorities": dict(self.source_priorities),
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance = None  # type: Optional[ClassificationConfig]


def get_classification_config(validate: bool = True) -> ClassificationConfig:
    """Get the global configuration, loading it from the environment on first access."""
    global _config_instance

    if _config_instance is None:
        _config_instance = ClassificationConfig.from_environment(validate=validate)

    return _config_instance


def reset_classification_config() -> None:
    """Reset the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
    logger.debug("[CLASSIFIER-CONFIG] Configuration instance reset")

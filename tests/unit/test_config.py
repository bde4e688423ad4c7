"""
Unit Tests for Classification Configuration Parsing

Reliability Level: L6 Critical

Tests the configuration boundary:
- Default values when no environment variables are set
- Custom tags, currencies and sources from environment variables
- Per-source tokenized-asset inclusion flags
- Invalid values fail validation with CLS-CFG-001
"""

import os

import pytest

from asset_classification.config import (
    DEFAULT_ENABLED_SOURCES,
    DEFAULT_MEMORY_THRESHOLD_MB,
    ClassificationConfig,
    get_classification_config,
    parse_custom_currencies,
    parse_custom_tags,
    reset_classification_config,
)
from asset_classification.errors import ConfigurationError


# =============================================================================
# Test Fixtures
# =============================================================================

ENV_VARS = [
    "ASSET_CLASSIFICATION_ENABLED",
    "CUSTOM_STABLECOIN_TAGS",
    "CUSTOM_TOKENIZED_TAGS",
    "CUSTOM_CURRENCIES",
    "ENABLED_SOURCES",
    "CMC_INCLUDE_TOKENIZED_ASSETS",
    "MESSARI_INCLUDE_TOKENIZED_ASSETS",
    "COINGECKO_INCLUDE_TOKENIZED_ASSETS",
    "CLASSIFIER_MEMORY_THRESHOLD_MB",
    "CLASSIFIER_PATTERN_SELF_TEST_MS",
]


@pytest.fixture(autouse=True)
def clean_environment():
    """
    Clean environment variables before and after each test.

    This ensures tests are isolated and don't affect each other.
    """
    original_env = {}
    for var in ENV_VARS:
        original_env[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    reset_classification_config()

    yield

    for var, value in original_env.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]

    reset_classification_config()


# =============================================================================
# Parsing Helper Tests
# =============================================================================

class TestParsingHelpers:
    """Tests for the string parsing helpers."""

    def test_parse_custom_tags(self):
        assert parse_custom_tags(" Fiat-Backed , ,RWA ") == ["fiat-backed", "rwa"]
        assert parse_custom_tags(None) == []

    def test_parse_custom_currencies(self):
        assert parse_custom_currencies("zwd:Zimbabwe Dollar, VES:Bolivar") == [
            ("ZWD", "Zimbabwe Dollar"),
            ("VES", "Bolivar"),
        ]

    def test_malformed_currency_entries_are_skipped(self):
        assert parse_custom_currencies("ZWD,:Name,ABC:,XYZ:Xyz") == [("XYZ", "Xyz")]


# =============================================================================
# Environment Loading Tests
# =============================================================================

class TestFromEnvironment:
    """Tests for ClassificationConfig.from_environment."""

    def test_defaults(self):
        config = ClassificationConfig.from_environment()

        assert config.enabled is True
        assert config.enabled_sources == DEFAULT_ENABLED_SOURCES
        assert config.custom_currencies == []
        assert config.memory_threshold_mb == DEFAULT_MEMORY_THRESHOLD_MB
        assert config.tokenized_sources == set()

    def test_disabled_only_by_false(self):
        os.environ["ASSET_CLASSIFICATION_ENABLED"] = "FALSE"
        assert ClassificationConfig.from_environment().enabled is False

        os.environ["ASSET_CLASSIFICATION_ENABLED"] = "no"
        assert ClassificationConfig.from_environment().enabled is True

    def test_custom_values(self):
        os.environ["CUSTOM_STABLECOIN_TAGS"] = "Fiat-Backed"
        os.environ["CUSTOM_TOKENIZED_TAGS"] = "rwa,real-world-assets"
        os.environ["CUSTOM_CURRENCIES"] = "ZWD:Zimbabwe Dollar"
        os.environ["ENABLED_SOURCES"] = "CMC, coingecko"

        config = ClassificationConfig.from_environment()

        assert config.custom_stablecoin_tags == ["fiat-backed"]
        assert config.custom_tokenized_tags == ["rwa", "real-world-assets"]
        assert config.custom_currencies == [("ZWD", "Zimbabwe Dollar")]
        assert config.enabled_sources == ["cmc", "coingecko"]

    def test_invalid_number_uses_default(self):
        os.environ["CLASSIFIER_MEMORY_THRESHOLD_MB"] = "lots"

        assert ClassificationConfig.from_environment().memory_threshold_mb == DEFAULT_MEMORY_THRESHOLD_MB

    def test_non_positive_threshold_fails_validation(self):
        os.environ["CLASSIFIER_MEMORY_THRESHOLD_MB"] = "0"

        with pytest.raises(ConfigurationError) as exc_info:
            ClassificationConfig.from_environment()

        assert exc_info.value.error_code == "CLS-CFG-001"

    def test_validation_can_be_skipped(self):
        os.environ["CLASSIFIER_PATTERN_SELF_TEST_MS"] = "-1"

        config = ClassificationConfig.from_environment(validate=False)

        assert config.pattern_self_test_ms == -1.0


# =============================================================================
# Tokenized Assets Configuration Tests
# =============================================================================

class TestTokenizedAssetsConfig:
    """Tests for per-source tokenized-asset inclusion."""

    def test_disabled_by_default(self):
        config = ClassificationConfig.from_environment()

        result = config.get_tokenized_assets_config("cmc")

        assert result["enabled"] is False
        assert result["environment_variable"] == "CMC_INCLUDE_TOKENIZED_ASSETS"

    def test_enabled_per_source(self):
        os.environ["CMC_INCLUDE_TOKENIZED_ASSETS"] = "true"

        config = ClassificationConfig.from_environment()

        assert config.get_tokenized_assets_config("CMC")["enabled"] is True
        assert config.get_tokenized_assets_config("messari")["enabled"] is False
        summary = config.get_global_tokenized_assets_config()
        assert summary["enabled_sources"] == ["cmc"]
        assert summary["disabled_sources"] == ["messari"]
        assert summary["globally_enabled"] is True

    def test_missing_source(self):
        result = ClassificationConfig().get_tokenized_assets_config(None)

        assert result["enabled"] is False
        assert result["source"] == "unknown"


# =============================================================================
# Singleton Tests
# =============================================================================

class TestSingleton:
    """Tests for get_classification_config / reset_classification_config."""

    def test_singleton(self):
        first = get_classification_config()

        assert get_classification_config() is first

        reset_classification_config()
        assert get_classification_config() is not first

    def test_to_dict(self):
        os.environ["CUSTOM_CURRENCIES"] = "ZWD:Zimbabwe Dollar"

        data = get_classification_config().to_dict()

        assert data["custom_currencies"] == ["ZWD:Zimbabwe Dollar"]
        assert data["source_priorities"]["cmc"] == 10

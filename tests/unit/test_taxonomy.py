"""
============================================================================
Unit Tests - Taxonomy Store
============================================================================

Reliability Level: L6 Critical
Test Coverage: TaxonomyDefinition, build_taxonomy

Tests verify:
1. Provider input accepts camelCase keys and rejects unknown ones
2. Tags are lowercased, alias keys uppercased
3. Custom tags and currencies extend the rule set
4. Invalid input raises ConfigurationError
============================================================================
"""

import pytest

from asset_classification.errors import ConfigurationError
from asset_classification.taxonomy import (
    DEFAULT_PATTERNS,
    DEFAULT_TOKENIZED_SUBTYPES,
    TaxonomyDefinition,
    build_taxonomy,
)


# =============================================================================
# TaxonomyDefinition Tests
# =============================================================================

class TestTaxonomyDefinition:
    """Tests for provider input validation."""

    def test_defaults(self):
        definition = TaxonomyDefinition()

        assert definition.stablecoin_tags == ["stablecoin"]
        assert definition.tokenized_subtypes == DEFAULT_TOKENIZED_SUBTYPES
        assert definition.validate_definition() == []

    def test_accepts_camel_case(self):
        definition = TaxonomyDefinition.from_mapping({
            "stablecoinTags": ["stablecoin", "fiat-stablecoin"],
            "assetBackedTags": ["asset-backed-stablecoin"],
        })

        assert definition.stablecoin_tags == ["stablecoin", "fiat-stablecoin"]

    def test_accepts_snake_case(self):
        definition = TaxonomyDefinition.from_mapping({"stablecoin_tags": ["stable"]})

        assert definition.stablecoin_tags == ["stable"]

    def test_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError):
            TaxonomyDefinition.from_mapping({"stablecoinTagz": ["stablecoin"]})

    def test_rejects_non_mapping(self):
        with pytest.raises(ConfigurationError):
            TaxonomyDefinition.from_mapping(["stablecoin"])

    @pytest.mark.parametrize("aliases", [
        {"USDT": ""},
        {"USDT": None},
        {"USDT": 5},
        {"": "USD"},
    ])
    def test_rejects_bad_alias_map(self, aliases):
        with pytest.raises(ConfigurationError):
            TaxonomyDefinition.from_mapping({"currencyAliases": aliases})

    def test_rejects_alias_map_that_is_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            TaxonomyDefinition.from_mapping({"currencyAliases": ["USDT"]})

    def test_reports_every_problem(self):
        definition = TaxonomyDefinition(stablecoin_tags=[], patterns={})

        errors = definition.validate_definition()

        assert errors == ["stablecoin_tags must not be empty"]
        assert definition.patterns == DEFAULT_PATTERNS

    def test_provider_pattern_names(self):
        definition = TaxonomyDefinition.from_mapping({
            "patterns": {
                "goldSymbols": "xau|paxg|xaut|pmgt",
                "goldNames": "gold",
                "silverSymbols": "xag",
                "silverNames": "silver",
                "etf": "etf",
                "treasury": "treasury",
                "stock": "stock",
                "realEstate": "real estate|real-estate|estate",
            },
        })

        assert definition.patterns["gold_symbols"] == "xau|paxg|xaut|pmgt"
        assert definition.patterns["real_estate"] == "real estate|real-estate|estate"
        assert "goldSymbols" not in definition.patterns
        assert definition.validate_definition() == []


# =============================================================================
# build_taxonomy Tests
# =============================================================================

class TestBuildTaxonomy:
    """Tests for assembling the immutable rule set."""

    def test_default_taxonomy(self):
        taxonomy = build_taxonomy()

        assert "stablecoin" in taxonomy.stablecoin_tags
        assert taxonomy.tokenized_subtypes[0] == ("tokenized-gold", "Gold")
        assert taxonomy.currency_aliases["USDT"] == "USD"
        assert "gold_names" in taxonomy.patterns

    def test_tags_lowercased_and_aliases_uppercased(self):
        definition = TaxonomyDefinition.from_mapping({
            "stablecoinTags": ["StableCoin"],
            "tokenizedSubtypes": {"Tokenized-Gold": "Gold"},
            "currencyAliases": {"usdt": "USD"},
        })

        taxonomy = build_taxonomy(definition)

        assert taxonomy.stablecoin_tags == frozenset({"stablecoin"})
        assert taxonomy.subtype_keys == frozenset({"tokenized-gold"})
        assert taxonomy.currency_aliases == {"USDT": "USD"}

    def test_custom_extensions(self):
        taxonomy = build_taxonomy(
            custom_stablecoin_tags=["Fiat-Backed"],
            custom_tokenized_tags=["rwa"],
            custom_currencies=[("zwd", "Zimbabwe Dollar")],
        )

        assert "fiat-backed" in taxonomy.stablecoin_tags
        assert "rwa" in taxonomy.tokenized_asset_tags
        assert taxonomy.currency_aliases["ZWD"] == "Zimbabwe Dollar"
        assert taxonomy.custom_currencies == (("ZWD", "Zimbabwe Dollar"),)

    def test_aliases_are_read_only(self):
        taxonomy = build_taxonomy()

        with pytest.raises(TypeError):
            taxonomy.currency_aliases["NEW"] = "X"

    def test_invalid_pattern(self):
        patterns = dict(DEFAULT_PATTERNS)
        patterns["etf"] = "etf["

        with pytest.raises(ConfigurationError):
            build_taxonomy(TaxonomyDefinition(patterns=patterns))

    def test_partial_patterns_fall_back_to_defaults(self):
        taxonomy = build_taxonomy(
            TaxonomyDefinition.from_mapping({"patterns": {"gold_names": "gold|bullion"}})
        )

        assert len(taxonomy.patterns) == len(DEFAULT_PATTERNS)
        assert taxonomy.patterns.matches("gold_names", "royal bullion")
        assert taxonomy.patterns.matches("stock", "tokenized stock")

    def test_provider_taxonomy_builds(self):
        taxonomy = build_taxonomy(
            TaxonomyDefinition.from_mapping({"patterns": {"goldSymbols": "pmgt", "realEstate": "estate"}})
        )

        assert taxonomy.patterns.matches("gold_symbols", "pmgt")
        assert taxonomy.patterns.matches("real_estate", "real-estate-token")
        assert taxonomy.patterns.matches("silver_symbols", "xag")

    def test_present_but_invalid_pattern_is_rejected(self):
        with pytest.raises(ConfigurationError):
            build_taxonomy(TaxonomyDefinition.from_mapping({"patterns": {"realEstate": ""}}))

    def test_summary(self):
        summary = build_taxonomy().summary()

        assert summary["tokenized_subtype_count"] == 7
        assert summary["pattern_count"] == len(DEFAULT_PATTERNS)

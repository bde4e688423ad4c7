"""
============================================================================
Taxonomy Store - Immutable Classification Rule Set
============================================================================

Reliability Level: L6 Critical
Side Effects: None after construction

TAXONOMY:
    The declarative rule set that drives classification:
    - stablecoin_tags:       tags that mark a stablecoin
    - tokenized_asset_tags:  generic tokenized-asset tags
    - tokenized_subtypes:    ordered tag -> label map (declaration order
                             decides when several subtype tags are present)
    - asset_backed_tags:     asset-backed stablecoin tags
    - currency_aliases:      CODE -> canonical label
    - patterns:              named heuristic patterns (compiled); provider
                             names (goldSymbols, realEstate, ...) are
                             accepted and each missing name falls back
                             to its default

    The external Taxonomy Provider supplies a TaxonomyDefinition. It is
    validated with pydantic, extended with custom tags/currencies, and
    frozen into a Taxonomy value that the engine only reads.

Key Constraints:
- All tag keys are lowercased on load
- Alias keys are uppercased on load
- Any invalid input raises ConfigurationError (fail fast)
============================================================================
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from asset_classification.errors import ConfigurationError
from asset_classification.patterns import (
    DEFAULT_SELF_TEST_BUDGET_MS,
    CompiledPatternTable,
    compile_pattern_table,
)
from asset_classification.schemas import LABEL_COMMODITIES

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Rule Set
# =============================================================================

DEFAULT_STABLECOIN_TAGS = ["stablecoin"]

DEFAULT_TOKENIZED_ASSET_TAGS = ["tokenized-assets"]

DEFAULT_TOKENIZED_SUBTYPES = {
    "tokenized-gold": "Gold",
    "tokenized-silver": "Silver",
    "tokenized-etfs": "ETF",
    "tokenized-stock": "Stocks",
    "tokenized-real-estate": "Real Estate",
    "tokenized-treasury-bills": "Treasury Bills",
    "tokenized-commodities": LABEL_COMMODITIES,
}

DEFAULT_ASSET_BACKED_TAGS = ["asset-backed-stablecoin"]

DEFAULT_CURRENCY_ALIASES = {
    # Precious metals and commodities
    "XAU": "Gold",
    "XAG": "Silver",
    "XAUT": "Gold",
    "PAXG": "Gold",
    "GOLD": "Gold",
    "SILVER": "Silver",

    # Special drawing rights
    "XDR": "Special Drawing Rights",
    "SDR": "Special Drawing Rights",

    # Alternative representations
    "DOLLAR": "USD",
    "EURO": "EUR",
    "POUND": "GBP",
    "YEN": "JPY",
    "YUAN": "CNY",
    "RENMINBI": "CNY",
    "FRANC": "CHF",
    "RUPEE": "INR",
    "WON": "KRW",
    "REAL": "BRL",
    "PESO": "MXN",
    "RAND": "ZAR",
    "RUBLE": "RUB",
    "ROUBLE": "RUB",
    "LIRA": "TRY",

    # Stablecoin symbol variations
    "USDT": "USD",
    "USDC": "USD",
    "BUSD": "USD",
    "USDP": "USD",
    "TUSD": "USD",
    "FDUSD": "USD",
    "PYUSD": "USD",
    "EURC": "EUR",
    "EURS": "EUR",
    "EURT": "EUR",
    "CEUR": "EUR",
    "STASIS": "EUR",
    "GBPT": "GBP",
    "QCAD": "CAD",
    "CADC": "CAD",
    "AUDX": "AUD",
    "NZDS": "NZD",
    "JPYC": "JPY",
    "CNHT": "CNY",
    "IDRT": "IDR",
    "BIDR": "IDR",
    "THBX": "THB",
    "BRLT": "BRL",
    "INRT": "INR",
    "KRWT": "KRW",
    "ZZAR": "ZAR",
    "XSGD": "SGD",
}

# Name/symbol heuristics for tokenized and asset-backed assets
DEFAULT_PATTERNS = {
    "gold_symbols": "xau|paxg|xaut",
    "gold_names": "gold",
    "silver_symbols": "xag",
    "silver_names": "silver",
    "etf": "etf",
    "treasury": "treasury",
    "stock": "stock",
    "real_estate": "real estate|real-estate|estate",
}

# Provider (camelCase) pattern names -> internal names
PATTERN_NAME_ALIASES = {
    "goldSymbols": "gold_symbols",
    "goldNames": "gold_names",
    "silverSymbols": "silver_symbols",
    "silverNames": "silver_names",
    "realEstate": "real_estate",
}


# =============================================================================
# Provider Input Model
# =============================================================================

class TaxonomyDefinition(BaseModel):
    """
    Taxonomy as supplied by the external Taxonomy Provider.

    Accepts both snake_case and the provider's camelCase keys
    (stablecoinTags, tokenizedSubtypes, currencyAliases, ...).

    Reliability Level: L6 Critical
    Side Effects: None (pure validation)
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        frozen=True,
    )

    stablecoin_tags: List[str] = Field(
        default_factory=lambda: list(DEFAULT_STABLECOIN_TAGS),
        alias="stablecoinTags",
    )
    tokenized_asset_tags: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TOKENIZED_ASSET_TAGS),
        alias="tokenizedAssetTags",
    )
    tokenized_subtypes: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_TOKENIZED_SUBTYPES),
        alias="tokenizedSubtypes",
    )
    asset_backed_tags: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ASSET_BACKED_TAGS),
        alias="assetBackedTags",
    )
    # Values are checked here; keys and labels must be non-empty strings
    currency_aliases: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_CURRENCY_ALIASES),
        alias="currencyAliases",
    )
    # Sources stay untyped so the pattern compiler reports bad entries
    patterns: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_PATTERNS),
    )

    @field_validator("currency_aliases")
    @classmethod
    def check_currency_aliases(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        for code, label in value.items():
            if not str(code).strip():
                raise ValueError("currency alias code must be non-empty")
            if not isinstance(label, str) or not label.strip():
                raise ValueError(
                    f"currency alias '{code}' must map to a non-empty string, got: {label!r}"
                )
        return value

    @field_validator("patterns")
    @classmethod
    def merge_default_patterns(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        # Each missing name falls back to its default on its own
        merged = dict(DEFAULT_PATTERNS)
        for name, source in value.items():
            key = str(name)
            merged[PATTERN_NAME_ALIASES.get(key, key)] = source
        return merged

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaxonomyDefinition":
        """
        Validate provider input.

        Raises:
            ConfigurationError: If the input does not match the expected shape
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Taxonomy definition must be a mapping, got: {type(data).__name__}"
            )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid taxonomy definition: {e}") from e

    def validate_definition(self) -> List[str]:
        """
        Report every semantic problem with the definition.

        Returns:
            List of error messages (empty when valid)
        """
        errors = []  # type: List[str]
        if not self.stablecoin_tags:
            errors.append("stablecoin_tags must not be empty")
        if not self.tokenized_asset_tags and not self.tokenized_subtypes:
            errors.append("tokenized_asset_tags or tokenized_subtypes must be set")
        for tag, label in self.tokenized_subtypes.items():
            if not tag.strip() or not label.strip():
                errors.append(f"tokenized subtype '{tag}' has an empty tag or label")
        return errors


# =============================================================================
# Taxonomy Value
# =============================================================================

@dataclass(frozen=True)
class Taxonomy:
    """
    Immutable, compiled rule set read by the classification engine.

    Reliability Level: L6 Critical
    Side Effects: None (immutable, safe for concurrent reads)
    """
    stablecoin_tags: FrozenSet[str]
    tokenized_asset_tags: FrozenSet[str]
    tokenized_subtypes: Tuple[Tuple[str, str], ...]
    asset_backed_tags: FrozenSet[str]
    currency_aliases: Mapping[str, str]
    patterns: CompiledPatternTable
    custom_currencies: Tuple[Tuple[str, str], ...] = ()

    @property
    def subtype_keys(self) -> FrozenSet[str]:
        return frozenset(tag for tag, _ in self.tokenized_subtypes)

    def summary(self) -> Dict[str, int]:
        return {
            "stablecoin_tag_count": len(self.stablecoin_tags),
            "tokenized_asset_tag_count": len(self.tokenized_asset_tags),
            "tokenized_subtype_count": len(self.tokenized_subtypes),
            "asset_backed_tag_count": len(self.asset_backed_tags),
            "pattern_count": len(self.patterns),
        }


def _lower_unique(tags: Iterable[str]) -> List[str]:
    seen = {}  # type: Dict[str, None]
    for tag in tags:
        cleaned = str(tag).strip().lower()
        if cleaned:
            seen[cleaned] = None
    return list(seen)


def build_taxonomy(
    definition: Optional[TaxonomyDefinition] = None,
    custom_stablecoin_tags: Iterable[str] = (),
    custom_tokenized_tags: Iterable[str] = (),
    custom_currencies: Iterable[Tuple[str, str]] = (),
    budget_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
) -> Taxonomy:
    """
    Assemble the immutable taxonomy.

    Args:
        definition: Provider input (defaults to the built-in rule set)
        custom_stablecoin_tags: Extra stablecoin tags
        custom_tokenized_tags: Extra tokenized-asset tags
        custom_currencies: Extra (CODE, Name) pairs merged into the alias table
        budget_ms: Pattern self-test budget

    Returns:
        Taxonomy value

    Raises:
        ConfigurationError: If the definition or any pattern is invalid
    """
    if definition is None:
        definition = TaxonomyDefinition()

    errors = definition.validate_definition()
    if errors:
        raise ConfigurationError("Taxonomy validation failed: " + "; ".join(errors))

    aliases = {str(code).strip().upper(): label for code, label in definition.currency_aliases.items()}

    currencies = []  # type: List[Tuple[str, str]]
    for code, name in custom_currencies:
        upper = str(code).strip().upper()
        label = str(name).strip()
        if not upper or not label:
            raise ConfigurationError(f"Invalid custom currency: {code!r}:{name!r}")
        aliases[upper] = label
        currencies.append((upper, label))

    subtypes = []  # type: List[Tuple[str, str]]
    seen_subtypes = set()
    for tag, label in definition.tokenized_subtypes.items():
        key = tag.strip().lower()
        if key not in seen_subtypes:
            seen_subtypes.add(key)
            subtypes.append((key, label))

    taxonomy = Taxonomy(
        stablecoin_tags=frozenset(_lower_unique(list(definition.stablecoin_tags) + list(custom_stablecoin_tags))),
        tokenized_asset_tags=frozenset(_lower_unique(list(definition.tokenized_asset_tags) + list(custom_tokenized_tags))),
        tokenized_subtypes=tuple(subtypes),
        asset_backed_tags=frozenset(_lower_unique(definition.asset_backed_tags)),
        currency_aliases=MappingProxyType(aliases),
        patterns=compile_pattern_table(definition.patterns, budget_ms),
        custom_currencies=tuple(currencies),
    )

    logger.info(
        f"[TAXONOMY] Taxonomy loaded | "
        f"stablecoin_tags={len(taxonomy.stablecoin_tags)} | "
        f"tokenized_tags={len(taxonomy.tokenized_asset_tags)} | "
        f"subtypes={len(taxonomy.tokenized_subtypes)} | "
        f"aliases={len(taxonomy.currency_aliases)} | "
        f"custom_currencies={len(taxonomy.custom_currencies)}"
    )
    return taxonomy

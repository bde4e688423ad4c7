"""
============================================================================
Currency Registry - ISO Codes, Aliases and Detection Patterns
============================================================================

Reliability Level: L6 Critical (Hot Path)

CURRENCY DETECTION ORDER (first match wins):
    1. Exact symbol match against the alias table (USDT -> USD)
    2. Per-currency symbol patterns (USDt, EURC, XUSD, USD-TOKEN, ...)
    3. Per-currency name/slug keyword patterns (dollar, euro, rupee, ...)
    4. Bare 3-letter code at the start of the symbol, checked against ISO set
    5. First 3-letter word in name/slug, checked against ISO set

    Symbol-based detection always precedes name/slug-based detection.
    Within a step, currencies are tried in registration order.

Key Constraints:
- All patterns are compiled when the registry is built or extended
- Lookup tables are replaced atomically on extension, so readers never
  observe a half-updated table
============================================================================
"""

from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Pattern, Tuple, Union
import logging
import re
import threading

from asset_classification.errors import ConfigurationError
from asset_classification.patterns import (
    DEFAULT_SELF_TEST_BUDGET_MS,
    compile_pattern,
    currency_name_pattern_source,
    currency_symbol_pattern_source,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# ISO 4217 codes recognised for bare-code extraction, in detection order
ISO_CURRENCY_CODES = (
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD", "SEK", "NOK",
    "DKK", "PLN", "CZK", "HUF", "RON", "BGN", "HRK", "RUB", "TRY", "CNY",
    "HKD", "SGD", "KRW", "THB", "MYR", "IDR", "PHP", "VND", "INR", "PKR",
    "LKR", "BDT", "NPR", "MMK", "LAK", "KHR", "AED", "SAR", "QAR", "KWD",
    "BHD", "OMR", "JOD", "ILS", "EGP", "LBP", "SYP", "IQD", "IRR", "AFN",
    "BRL", "ARS", "CLP", "COP", "PEN", "UYU", "PYG", "BOB", "VES", "GYD",
    "ZAR", "NGN", "GHS", "KES", "UGX", "TZS", "RWF", "ETB", "XOF", "XAF",
    "MAD", "TND", "DZD", "LYD", "SDG", "SSP", "DJF", "SOS", "ERN",
    "MXN", "GTQ", "HNL", "NIO", "CRC", "PAB", "JMD", "HTG", "DOP", "CUP",
    "XCD", "BBD", "BZD", "TTD", "SRD", "FKP", "AWG", "ANG", "BMD",
    "KYD", "BSD", "ZWD", "ZWL", "BWP", "SZL", "LSL", "MZN", "MWK", "ZMW",
    "AOA", "STN", "CVE", "GMD", "GNF", "LRD", "SLE", "MRU", "CDF", "XDR",
)

# Name keywords per currency for name/slug detection
CURRENCY_NAME_KEYWORDS = (
    ("USD", ("dollar", "usd")),
    ("EUR", ("euro", "eur")),
    ("GBP", ("pound", "sterling", "gbp")),
    ("JPY", ("yen", "jpy")),
    ("CNY", ("yuan", "renminbi", "cny")),
    ("CHF", ("franc", "chf")),
    ("CAD", ("canadian dollar", "cad")),
    ("AUD", ("australian dollar", "aud")),
    ("INR", ("rupee", "inr")),
    ("BRL", ("real", "brl")),
    ("RUB", ("ruble", "rouble", "rub")),
    ("KRW", ("won", "krw")),
    ("ZAR", ("rand", "zar")),
    ("TRY", ("lira", "try")),
    ("MXN", ("peso", "mxn")),
)

# Codes that are not fiat currencies even though ISO lists them
NON_FIAT_CODES = frozenset({"XDR", "XAU", "XAG"})

_SYMBOL_CODE_RE = re.compile(r"^([a-z]{3})[tc]?$|^([a-z]{3})[-_]")
_WORD_CODE_RE = re.compile(r"\b([a-z]{3})\b")

PatternLike = Union[str, Pattern]


# =============================================================================
# Currency Registry
# =============================================================================

class CurrencyRegistry:
    """
    Currency codes, alias table and compiled detection patterns.

    Reliability Level: L6 Critical
    Input Constraints: Detection inputs are lowercase, trimmed strings
    Side Effects: None on detection; extension replaces lookup tables
    """

    def __init__(
        self,
        aliases: Mapping[str, str],
        custom_currencies: Iterable[Tuple[str, str]] = (),
        budget_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
    ):
        """
        Build the registry.

        Args:
            aliases: Uppercase code -> canonical label
            custom_currencies: Extra (CODE, Name) pairs
            budget_ms: Pattern self-test budget

        Raises:
            ConfigurationError: If a generated pattern fails validation
        """
        self._budget_ms = budget_ms
        self._lock = threading.Lock()

        codes = {}  # type: Dict[str, None]
        symbol_patterns = {}  # type: Dict[str, Pattern]
        name_patterns = {}  # type: Dict[str, Pattern]

        for code in ISO_CURRENCY_CODES:
            codes[code] = None
            symbol_patterns[code] = self._compile_symbol(code)

        for code, keywords in CURRENCY_NAME_KEYWORDS:
            name_patterns[code] = compile_pattern(
                f"currency_name:{code}",
                currency_name_pattern_source(*keywords),
                self._budget_ms,
            )

        aliases_copy = dict(aliases)
        for code, name in custom_currencies:
            upper = code.upper()
            codes[upper] = None
            aliases_copy[upper] = name
            symbol_patterns[upper] = self._compile_symbol(upper)
            if len(name) > 2:
                name_patterns[upper] = compile_pattern(
                    f"currency_name:{upper}",
                    currency_name_pattern_source(name),
                    self._budget_ms,
                )

        self._aliases = MappingProxyType(aliases_copy)
        self._codes = frozenset(codes)
        self._symbol_patterns = tuple(symbol_patterns.items())
        self._name_patterns = tuple(name_patterns.items())

    def _compile_symbol(self, code: str) -> Pattern:
        return compile_pattern(
            f"currency_symbol:{code}",
            currency_symbol_pattern_source(code),
            self._budget_ms,
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @property
    def aliases(self) -> Mapping[str, str]:
        return self._aliases

    def canonical(self, code: str) -> str:
        """Map a code through the alias table, else return it uppercased."""
        upper = code.upper()
        return self._aliases.get(upper, upper)

    def supported_codes(self) -> list:
        return sorted(self._codes)

    def is_fiat(self, label: Optional[str]) -> bool:
        """True if the label is a supported fiat currency code."""
        if not label:
            return False
        upper = label.upper()
        return upper in self._codes and upper not in NON_FIAT_CODES

    def detect(self, symbol: str, name: str, slug: str) -> Optional[str]:
        """
        Infer the pegged currency from symbol, name or slug content.

        Args:
            symbol: Lowercase symbol
            name: Lowercase name
            slug: Lowercase slug

        Returns:
            Canonical currency label or None
        """
        aliases = self._aliases

        if symbol:
            direct = aliases.get(symbol.upper())
            if direct:
                return direct

            for code, pattern in self._symbol_patterns:
                if pattern.search(symbol):
                    return aliases.get(code, code)

        for code, pattern in self._name_patterns:
            if (name and pattern.search(name)) or (slug and pattern.search(slug)):
                return aliases.get(code, code)

        if symbol:
            m = _SYMBOL_CODE_RE.search(symbol)
            if m:
                code = (m.group(1) or m.group(2)).upper()
                if code in self._codes:
                    return aliases.get(code, code)

        m = _WORD_CODE_RE.search(f"{name} {slug}")
        if m:
            code = m.group(1).upper()
            if code in self._codes:
                return aliases.get(code, code)

        return None

    # -------------------------------------------------------------------------
    # Runtime extension
    # -------------------------------------------------------------------------

    def add_patterns(
        self,
        code: str,
        symbol_pattern: Optional[PatternLike] = None,
        name_pattern: Optional[PatternLike] = None
    ) -> None:
        """
        Register a currency code and optional custom detection patterns.

        String sources go through the pattern compiler; precompiled
        patterns are accepted as-is.

        Raises:
            ConfigurationError: If the code is empty or a pattern is invalid
        """
        if not isinstance(code, str) or not code.strip():
            raise ConfigurationError(f"Currency code must be a non-empty string, got: {code!r}")
        upper = code.strip().upper()

        compiled_symbol = self._prepare(f"currency_symbol:{upper}", symbol_pattern)
        compiled_name = self._prepare(f"currency_name:{upper}", name_pattern)

        with self._lock:
            self._codes = self._codes | {upper}
            if compiled_symbol is not None:
                self._symbol_patterns = _replace_entry(self._symbol_patterns, upper, compiled_symbol)
            if compiled_name is not None:
                self._name_patterns = _replace_entry(self._name_patterns, upper, compiled_name)

        logger.info(
            f"[CURRENCY] Added currency patterns | code={upper} | "
            f"symbol_pattern={compiled_symbol is not None} | "
            f"name_pattern={compiled_name is not None}"
        )

    def _prepare(self, name: str, pattern: Optional[PatternLike]) -> Optional[Pattern]:
        if pattern is None:
            return None
        if isinstance(pattern, re.Pattern):
            return pattern
        return compile_pattern(name, pattern, self._budget_ms)

    def summary(self) -> Dict[str, int]:
        return {
            "supported_currency_count": len(self._codes),
            "currency_symbol_pattern_count": len(self._symbol_patterns),
            "currency_name_pattern_count": len(self._name_patterns),
            "currency_alias_count": len(self._aliases),
        }


def _replace_entry(
    entries: Tuple[Tuple[str, Pattern], ...],
    code: str,
    pattern: Pattern
) -> Tuple[Tuple[str, Pattern], ...]:
    """Replace code's pattern in place, or append it if new."""
    if any(c == code for c, _ in entries):
        return tuple((c, pattern if c == code else p) for c, p in entries)
    return entries + ((code, pattern),)

"""
============================================================================
Pattern Compiler - Validated, Case-Insensitive Matchers
============================================================================

Reliability Level: L6 Critical
Side Effects: Logs warnings for suspicious patterns

PATTERN COMPILER:
    Every pattern source the engine uses is compiled exactly once, at
    construction time. A source is rejected (ConfigurationError) when it:
    1. Is not a string
    2. Is empty
    3. Exceeds MAX_PATTERN_LENGTH characters
    4. Fails to compile
    5. Fails the bounded-time self-test

SELF-TEST:
    The compiled matcher is run against escalating adversarial probes
    ("aaaa...!", "0000...!", ...). Catastrophic backtracking grows
    exponentially with probe length, so the cumulative time crosses the
    budget well before a single probe can hang the process.

    A heuristic nested-quantifier scan runs first and only logs a warning;
    the self-test is what decides.

Key Constraints:
- No pattern is compiled on the classification hot path
- Generated patterns embed external text only through escape_pattern_literal()
============================================================================
"""

from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Pattern
import logging
import re
import time

from asset_classification.errors import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_PATTERN_LENGTH = 1000

# Cumulative self-test budget per pattern (milliseconds)
DEFAULT_SELF_TEST_BUDGET_MS = 50

PROBE_LENGTHS = (8, 12, 16, 20, 24)
PROBE_ALPHABETS = ("a", "0", " ", "ab", "a-")

PATTERN_FLAGS = re.IGNORECASE

# Heuristics for nested quantifiers (warning only)
NESTED_QUANTIFIER_HEURISTICS = (
    re.compile(r"\([^)]*[+*]{2,}[^)]*\)"),
    re.compile(r"\(.*\+.*\)\+"),
    re.compile(r"\(.*\*.*\)\*"),
    re.compile(r"\([^)]*\{[^}]*\}[^)]*\)[+*]{2,}"),
    re.compile(r"(\[[^\]]*\]){3,}[+*]"),
    re.compile(r"(\\[dDwWsS]){3,}[+*]"),
)


# =============================================================================
# Validation
# =============================================================================

def validate_pattern_source(name: str, source: Any) -> str:
    """
    Check a pattern source before compilation.

    Args:
        name: Pattern name (for error messages)
        source: Candidate pattern source

    Returns:
        The source, unchanged

    Raises:
        ConfigurationError: If the source is not a non-empty string within bounds
    """
    if not isinstance(source, str):
        raise ConfigurationError(
            f"Pattern '{name}' must be a string, got: {type(source).__name__}"
        )
    if not source:
        raise ConfigurationError(f"Pattern '{name}' is empty")
    if len(source) > MAX_PATTERN_LENGTH:
        raise ConfigurationError(
            f"Pattern '{name}' exceeds {MAX_PATTERN_LENGTH} characters "
            f"(length={len(source)})"
        )
    return source


def has_nested_quantifiers(source: str) -> bool:
    """Heuristic scan for quantifiers nested inside quantified groups."""
    return any(h.search(source) for h in NESTED_QUANTIFIER_HEURISTICS)


def run_self_test(
    name: str,
    compiled: Pattern,
    budget_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
) -> float:
    """
    Run escalating adversarial probes against a compiled pattern.

    Args:
        name: Pattern name (for error messages)
        compiled: Compiled matcher
        budget_ms: Cumulative time budget in milliseconds

    Returns:
        Total elapsed milliseconds

    Raises:
        ConfigurationError: If the probes exceed the budget
    """
    elapsed_ms = 0.0
    for length in PROBE_LENGTHS:
        for alphabet in PROBE_ALPHABETS:
            probe = (alphabet * length)[:length] + "!"
            started = time.perf_counter()
            compiled.search(probe)
            elapsed_ms += (time.perf_counter() - started) * 1000.0
            if elapsed_ms > budget_ms:
                raise ConfigurationError(
                    f"Pattern '{name}' failed self-test: exceeded {budget_ms}ms "
                    f"at probe length {length} (possible catastrophic backtracking)"
                )
    return elapsed_ms


def compile_pattern(
    name: str,
    source: Any,
    budget_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
) -> Pattern:
    """
    Validate, compile and self-test one pattern source.

    Args:
        name: Pattern name
        source: Pattern source string
        budget_ms: Self-test budget in milliseconds

    Returns:
        Case-insensitive compiled pattern

    Raises:
        ConfigurationError: On any validation, compilation or self-test failure
    """
    validate_pattern_source(name, source)

    if has_nested_quantifiers(source):
        logger.warning(
            f"[PATTERN] Suspicious nested quantifier | "
            f"name={name} | source={source[:80]}"
        )

    try:
        compiled = re.compile(source, PATTERN_FLAGS)
    except re.error as e:
        raise ConfigurationError(f"Pattern '{name}' failed to compile: {e}") from e

    run_self_test(name, compiled, budget_ms)
    return compiled


def escape_pattern_literal(text: str) -> str:
    """Escape trusted text (e.g. a configured currency name) for embedding in a pattern."""
    return re.escape(str(text))


# =============================================================================
# Generated Currency Patterns
# =============================================================================

def currency_symbol_pattern_source(code: str) -> str:
    """
    Symbol pattern for a currency code.

    Covers the bare code, a trailing "t"/"c" (USDT, EURC), token/coin
    suffixes (USD-TOKEN, USDCOIN), an "X" prefix (XUSD) and the code as a
    separate word inside a longer symbol (USD-T, USD.E).
    """
    c = escape_pattern_literal(code.lower())
    return (
        rf"^x?{c}(?:[tc]|[-_]?(?:token|coin))?$"
        rf"|\b{c}[-_]?(?:token|coin|t)?\b"
    )


def currency_name_pattern_source(*keywords: str) -> str:
    """Word-bounded name/slug pattern matching any of the keywords."""
    escaped = "|".join(
        r"\s+".join(escape_pattern_literal(part) for part in k.lower().split())
        for k in keywords if k and k.strip()
    )
    return rf"\b(?:{escaped})\b"


# =============================================================================
# Compiled Pattern Table
# =============================================================================

class CompiledPatternTable:
    """
    Immutable name -> compiled pattern table.

    Reliability Level: L6 Critical
    Side Effects: None after construction
    """

    def __init__(self, patterns: Mapping[str, Pattern]):
        self._patterns = MappingProxyType(dict(patterns))

    def get(self, name: str) -> Optional[Pattern]:
        return self._patterns.get(name)

    def matches(self, name: str, *texts: str) -> bool:
        """True if the named pattern matches any of the texts. Unknown names never match."""
        compiled = self._patterns.get(name)
        if compiled is None:
            return False
        return any(text and compiled.search(text) for text in texts)

    def __contains__(self, name: object) -> bool:
        return name in self._patterns

    def __iter__(self) -> Iterator[str]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)


def compile_pattern_table(
    sources: Mapping[str, Any],
    budget_ms: float = DEFAULT_SELF_TEST_BUDGET_MS
) -> CompiledPatternTable:
    """
    Compile every named pattern source. Fails fast on the first bad pattern.

    Raises:
        ConfigurationError: If sources is not a mapping or any pattern is invalid
    """
    if not isinstance(sources, Mapping):
        raise ConfigurationError(
            f"Pattern sources must be a mapping, got: {type(sources).__name__}"
        )

    compiled = {}  # type: Dict[str, Pattern]
    for name, source in sources.items():
        compiled[str(name)] = compile_pattern(str(name), source, budget_ms)

    logger.debug(f"[PATTERN] Compiled pattern table | count={len(compiled)}")
    return CompiledPatternTable(compiled)

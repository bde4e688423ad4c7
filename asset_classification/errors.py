"""
============================================================================
Asset Classification - Error Codes and Exceptions
============================================================================

Reliability Level: L6 Critical

ERROR CODES:
    - CLS-CFG-001: Invalid taxonomy or pattern configuration (fatal)
    - CLS-001: Malformed asset input (validation)
    - CLS-002: Normalization or pattern evaluation failure
    - CLS-003: Unexpected failure inside classify()
    - CLS-004: Schema monitor bookkeeping failure (best-effort)
    - CLS-005: Metrics / conflict bookkeeping failure (best-effort)

Only ConfigurationError is ever raised to callers. Every per-call failure
is converted into an absent result plus a log line and a counter increment.
============================================================================
"""


class ClassifierErrorCode:
    """Classifier error codes for audit logging."""
    CONFIG_INVALID = "CLS-CFG-001"
    VALIDATION_FAIL = "CLS-001"
    PATTERN_FAIL = "CLS-002"
    UNKNOWN_FAIL = "CLS-003"
    SCHEMA_MONITOR_FAIL = "CLS-004"
    BOOKKEEPING_FAIL = "CLS-005"


class ConfigurationError(Exception):
    """
    Raised at construction when the taxonomy, alias map or a pattern is invalid.

    The engine refuses to start with a bad rule set.
    """

    def __init__(self, message: str, error_code: str = ClassifierErrorCode.CONFIG_INVALID):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class AssetValidationError(ValueError):
    """Malformed per-call asset input. Never escapes classify()."""


class PatternEvaluationError(RuntimeError):
    """Normalization or matcher evaluation failed. Never escapes classify()."""

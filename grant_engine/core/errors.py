"""
Error taxonomy for the analysis engine.

Every failure carries the operation, the offending field and a reason so the
calling layer can render a user-facing message without parsing strings.
"""

from typing import Optional, Dict, Any


class GrantEngineError(Exception):
    """Base class for all analysis failures."""

    code = "engine_error"
    recoverable = False

    def __init__(self, reason: str, operation: Optional[str] = None,
                 field: Optional[str] = None):
        self.reason = reason
        self.operation = operation
        self.field = field
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.field:
            parts.append(self.field)
        prefix = "/".join(parts)
        return f"{prefix}: {self.reason}" if prefix else self.reason

    def with_operation(self, operation: str) -> "GrantEngineError":
        """Attach the operation name if the raiser did not know it."""
        if not self.operation:
            self.operation = operation
            self.args = (self._format(),)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "operation": self.operation,
            "field": self.field,
            "reason": self.reason,
            "recoverable": self.recoverable,
        }


class InvalidInput(GrantEngineError):
    """Malformed or missing required input, rejected before any analysis."""

    code = "invalid_input"


class IncompleteProfile(GrantEngineError):
    """Organization profile lacks a field that is absolutely required."""

    code = "incomplete_profile"


class IncompleteRuleSet(GrantEngineError):
    """Compliance rule set cannot produce any answer."""

    code = "incomplete_rule_set"


class BackendUnavailable(GrantEngineError):
    """Text-understanding backend unreachable or timed out after retries."""

    code = "backend_unavailable"
    recoverable = True


class CacheError(GrantEngineError):
    """Cache read or write failed. Callers fall back to direct computation."""

    code = "cache_error"
    recoverable = True


class ResultTimeout(GrantEngineError):
    """Caller stopped waiting on a shared computation. The computation keeps running."""

    code = "result_timeout"
    recoverable = True

"""
Error handling for the policyauth engine.

Forbidden decisions are ordinary return values and never appear here. This
module only covers author errors (invalid configuration), the internal
signal used to degrade a check to strict evaluation, engine faults, and the
exception raised for callers that explicitly ask for one on Forbidden.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Structured error codes for policyauth."""

    INVALID_CONFIGURATION = "invalid_configuration"
    UNKNOWN_REFERENCE = "unknown_reference"
    UNKNOWN_FIELD = "unknown_field"
    UNKNOWN_ACTION = "unknown_action"
    UNSATISFIABLE_POLICY = "unsatisfiable_policy"
    UNREACHABLE_POLICY = "unreachable_policy"
    UNCOMPILABLE_FILTER = "uncompilable_filter"
    FORBIDDEN = "forbidden"
    ENGINE_FAULT = "engine_fault"
    STORAGE_ERROR = "storage_error"
    NOT_FOUND = "not_found"

    def __str__(self) -> str:
        return self.value


class PolicyAuthError(Exception):
    """Base exception for all policyauth errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ENGINE_FAULT,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            'error': self.error_code.value,
            'message': self.message,
            'details': self.details
        }

        if self.cause:
            result['cause'] = str(self.cause)

        return result

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"


class ConfigurationProblem:
    """A single problem found while compiling a policy set."""

    __slots__ = ("code", "message", "location")

    def __init__(self, code: ErrorCode, message: str, location: str = "") -> None:
        self.code = code
        self.message = message
        self.location = location

    def to_dict(self) -> Dict[str, str]:
        return {
            'code': self.code.value,
            'message': self.message,
            'location': self.location
        }

    def __repr__(self) -> str:
        where = f" at {self.location}" if self.location else ""
        return f"<ConfigurationProblem {self.code.value}{where}: {self.message}>"


class InvalidConfigurationError(PolicyAuthError):
    """
    Raised at definition-compile time for author errors.

    Covers malformed predicates (unknown field, relationship or actor
    reference), field policies naming nonexistent fields and, when strict
    analysis is enabled, policies the analyzer proved unsatisfiable.
    """

    def __init__(
        self,
        message: str,
        problems: Optional[List[ConfigurationProblem]] = None,
        entity: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if entity:
            details['entity'] = entity
        if problems:
            details['problems'] = [p.to_dict() for p in problems]
        super().__init__(message, ErrorCode.INVALID_CONFIGURATION, details)
        self.problems = list(problems or [])
        self.entity = entity


class UncompilableFilterError(PolicyAuthError):
    """
    Raised by a data layer when an expression cannot become a storage filter.

    The engine catches this and degrades the containing policy to strict-only
    evaluation; it never reaches the caller of ``authorize``.
    """

    def __init__(self, message: str, expression: Any = None):
        super().__init__(message, ErrorCode.UNCOMPILABLE_FILTER)
        self.expression = expression


class EngineFault(PolicyAuthError):
    """
    Internal invariant violation during evaluation.

    Always propagated. A fault is never converted into an Authorized or
    Forbidden decision.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None):
        super().__init__(message, ErrorCode.ENGINE_FAULT, details, cause)


class ForbiddenError(PolicyAuthError):
    """Raised only by helpers that turn a Forbidden decision into an exception."""

    def __init__(self, message: str = "Forbidden", reasons: Optional[List[str]] = None,
                 policies_evaluated: Optional[List[str]] = None):
        super().__init__(
            message,
            ErrorCode.FORBIDDEN,
            {
                'reasons': list(reasons or []),
                'policies_evaluated': list(policies_evaluated or [])
            }
        )
        self.reasons = list(reasons or [])
        self.policies_evaluated = list(policies_evaluated or [])


class StorageError(PolicyAuthError):
    """Errors raised by storage collaborators."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_ERROR,
                 cause: Optional[Exception] = None):
        super().__init__(message, error_code, cause=cause)


class RecordNotFoundError(StorageError):
    """Raised when a record looked up by key does not exist."""

    def __init__(self, entity: str, key: Any):
        super().__init__(f"No {entity} record with key {key!r}", ErrorCode.NOT_FOUND)
        self.details['entity'] = entity
        self.details['key'] = str(key)


class ErrorCollection:
    """Collects configuration problems so they can be reported together."""

    def __init__(self):
        self.problems: List[ConfigurationProblem] = []

    def add(self, code: ErrorCode, message: str, location: str = "") -> None:
        """Add a problem to the collection."""
        self.problems.append(ConfigurationProblem(code, message, location))

    def has_errors(self) -> bool:
        """Check if collection has any problems."""
        return len(self.problems) > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "problems": [problem.to_dict() for problem in self.problems],
            "problem_count": len(self.problems)
        }

    def raise_if_errors(self, entity: Optional[str] = None) -> None:
        """Raise an InvalidConfigurationError carrying every collected problem."""
        if not self.has_errors():
            return
        summary = "; ".join(p.message for p in self.problems[:3])
        if len(self.problems) > 3:
            summary += f" (+{len(self.problems) - 3} more)"
        prefix = f"Invalid policy configuration for {entity}" if entity else "Invalid policy configuration"
        raise InvalidConfigurationError(f"{prefix}: {summary}", self.problems, entity)


__all__ = [
    'ErrorCode',
    'PolicyAuthError',
    'ConfigurationProblem',
    'InvalidConfigurationError',
    'UncompilableFilterError',
    'EngineFault',
    'ForbiddenError',
    'StorageError',
    'RecordNotFoundError',
    'ErrorCollection',
]

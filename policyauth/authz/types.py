"""
Authorization types: checks, policies, field policies and decisions.

Policies and field policies are immutable once built. Decisions are created
per request; every variant is a frozen dataclass so two evaluations of the
same request compare equal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from ..core.types import FactTruthValue
from ..expr.expression import TRUE, Predicate, as_predicate, fold_and


class CheckKind(Enum):
    """Closed set of check kinds."""
    AUTHORIZE_IF = "authorize_if"
    AUTHORIZE_UNLESS = "authorize_unless"
    FORBID_IF = "forbid_if"
    FORBID_UNLESS = "forbid_unless"

    @property
    def authorizes(self) -> bool:
        return self in (CheckKind.AUTHORIZE_IF, CheckKind.AUTHORIZE_UNLESS)

    @property
    def trigger(self) -> bool:
        """Predicate value that makes this kind resolve the policy."""
        return self in (CheckKind.AUTHORIZE_IF, CheckKind.FORBID_IF)


class Outcome(Enum):
    """Definite outcome of a policy or check."""
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"


def resolve_kind(kind: CheckKind, value: FactTruthValue) -> Optional[Outcome]:
    """
    Resolve a definite predicate value for one check kind.

    Returns:
        The outcome the check forces, or None to continue with the next check.
    """
    if value is FactTruthValue.UNKNOWN:
        raise ValueError("resolve_kind needs a definite value")
    if (value is FactTruthValue.TRUE) != kind.trigger:
        return None
    return Outcome.AUTHORIZED if kind.authorizes else Outcome.FORBIDDEN


@dataclass(frozen=True)
class Check:
    """One ordered step of a policy."""
    kind: CheckKind
    predicate: Predicate
    description: str = ""

    @property
    def label(self) -> str:
        return self.description or f"{self.kind.value} {self.predicate}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'predicate': str(self.predicate),
            'description': self.label
        }


def authorize_if(predicate: Any, description: str = "") -> Check:
    return Check(CheckKind.AUTHORIZE_IF, as_predicate(predicate), description)


def authorize_unless(predicate: Any, description: str = "") -> Check:
    return Check(CheckKind.AUTHORIZE_UNLESS, as_predicate(predicate), description)


def forbid_if(predicate: Any, description: str = "") -> Check:
    return Check(CheckKind.FORBID_IF, as_predicate(predicate), description)


def forbid_unless(predicate: Any, description: str = "") -> Check:
    return Check(CheckKind.FORBID_UNLESS, as_predicate(predicate), description)


@dataclass(frozen=True)
class Policy:
    """
    An ordered list of checks gated by a condition.

    A bypass policy that authorizes grants the whole request, skipping normal
    policies and field policies.
    """
    checks: Tuple[Check, ...]
    condition: Predicate = TRUE
    bypass: bool = False
    description: str = ""

    @classmethod
    def build(cls, condition: Any, *checks: Check, bypass: bool = False,
              description: str = "") -> "Policy":
        """Build a policy; a list of conditions is combined with AND."""
        if isinstance(condition, (list, tuple)):
            condition = fold_and([as_predicate(c) for c in condition])
        else:
            condition = as_predicate(condition)
        return cls(checks=tuple(checks), condition=condition, bypass=bypass,
                   description=description)

    @property
    def label(self) -> str:
        if self.description:
            return self.description
        prefix = "bypass" if self.bypass else "policy"
        return f"{prefix} {self.condition}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.label,
            'condition': str(self.condition),
            'bypass': self.bypass,
            'checks': [c.to_dict() for c in self.checks]
        }


WILDCARD = "*"


@dataclass(frozen=True)
class FieldPolicy:
    """Visibility rule for a set of fields; ``*`` matches any field."""
    fields: FrozenSet[str]
    checks: Tuple[Check, ...]
    description: str = ""

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.fields

    @property
    def label(self) -> str:
        return self.description or f"field_policy {sorted(self.fields)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fields': sorted(self.fields),
            'description': self.label,
            'checks': [c.to_dict() for c in self.checks]
        }


@dataclass(frozen=True)
class CheckResult:
    """Result of evaluating one check: a truth value and, if UNKNOWN, a filter fragment."""
    value: FactTruthValue
    fragment: Optional[Any] = None
    # Residual predicate (before storage compilation) behind an UNKNOWN value
    residual: Optional[Predicate] = None

    @property
    def is_filterable(self) -> bool:
        return self.value is FactTruthValue.UNKNOWN and self.fragment is not None


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class Decision:
    """Base of the decision variants."""

    @property
    def is_authorized(self) -> bool:
        return False

    @property
    def is_forbidden(self) -> bool:
        return False

    @property
    def requires_strict(self) -> bool:
        return False


@dataclass(frozen=True)
class Authorized(Decision):
    """Access granted outright. ``bypassed`` marks a bypass policy grant."""
    bypassed: bool = False
    policies_evaluated: Tuple[str, ...] = ()

    @property
    def is_authorized(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision': 'authorized',
            'bypassed': self.bypassed,
            'policies_evaluated': list(self.policies_evaluated)
        }


@dataclass(frozen=True)
class Forbidden(Decision):
    """Access denied; carries the failing reasons and the policies evaluated in order."""
    reasons: Tuple[str, ...] = ()
    policies_evaluated: Tuple[str, ...] = ()

    @property
    def is_forbidden(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision': 'forbidden',
            'reasons': list(self.reasons),
            'policies_evaluated': list(self.policies_evaluated)
        }


@dataclass(frozen=True)
class FilteredBy(Decision):
    """
    Access limited to records matching ``filter``.

    ``strict_policies`` lists policies that must still be confirmed against
    each loaded record; empty means the filter alone is exact.
    """
    filter: Predicate
    strict_policies: Tuple[Policy, ...] = ()
    policies_evaluated: Tuple[str, ...] = ()

    @property
    def requires_strict(self) -> bool:
        return bool(self.strict_policies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision': 'filtered_by',
            'filter': str(self.filter),
            'strict_policies': [p.label for p in self.strict_policies],
            'policies_evaluated': list(self.policies_evaluated)
        }


@dataclass(frozen=True)
class RequiresStrictCheck(Decision):
    """
    The outcome depends on data no filter can express.

    ``prefilter`` is a superset filter that is safe to push to storage before
    the strict pass; it never replaces that pass.
    """
    residual: Tuple[Policy, ...]
    prefilter: Predicate = TRUE
    policies_evaluated: Tuple[str, ...] = ()

    @property
    def requires_strict(self) -> bool:
        return True

    @property
    def strict_policies(self) -> Tuple[Policy, ...]:
        return self.residual

    @property
    def filter(self) -> Predicate:
        return self.prefilter

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision': 'requires_strict_check',
            'prefilter': str(self.prefilter),
            'residual': [p.label for p in self.residual],
            'policies_evaluated': list(self.policies_evaluated)
        }


class FieldVisibility(Enum):
    """Visibility of one field after redaction."""
    VISIBLE = "visible"
    FORBIDDEN = "forbidden"


class ForbiddenField:
    """Sentinel substituted for the value of a redacted field."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "#ForbiddenField"


FORBIDDEN_FIELD = ForbiddenField()

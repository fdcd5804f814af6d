"""
Check evaluation: one check against one EvaluationContext.

A check either resolves to a definite truth value from what the context
knows, or (before records are loaded) yields UNKNOWN together with a filter
fragment the storage layer can evaluate per row. A check whose residual
cannot become a filter yields UNKNOWN with no fragment, which makes the
containing policy strict-only.
"""

import logging

from ..core.types import EvaluationContext, FactTruthValue
from ..errors import EngineFault, UncompilableFilterError
from ..expr.expression import (
    Literal,
    Predicate,
    contains_unresolvable,
    references_record,
    simplify,
)
from ..store.types import DataLayer
from .types import Check, CheckKind, CheckResult, Policy


logger = logging.getLogger(__name__)


def conservative_value(kind: CheckKind) -> FactTruthValue:
    """
    Truth value used when a predicate can never be decided.

    Authorize kinds do not authorize and forbid kinds forbid.
    """
    if kind.authorizes:
        return FactTruthValue.of(not kind.trigger)
    return FactTruthValue.of(kind.trigger)


def evaluate_predicate(predicate: Predicate,
                       kind: CheckKind,
                       context: EvaluationContext,
                       compiler: DataLayer) -> CheckResult:
    """
    Evaluate a predicate for a check of the given kind.

    Args:
        predicate: The check's predicate
        kind: The check kind, used only for conservative resolution
        context: What is known about the request
        compiler: Storage collaborator that compiles residual filters

    Returns:
        CheckResult: definite value, or UNKNOWN with an optional fragment
    """
    residual = simplify(predicate, context)

    if isinstance(residual, Literal):
        return CheckResult(FactTruthValue.of(bool(residual.value)))

    if context.has_record or not references_record(residual):
        # Nothing left that record data could decide
        if contains_unresolvable(residual):
            value = conservative_value(kind)
            logger.debug(f"Unresolvable fact in {predicate}; resolving {kind.value} as {value.value}")
            return CheckResult(value)
        raise EngineFault(
            f"Predicate {predicate} left residual {residual} with all data available",
            details={'kind': kind.value}
        )

    try:
        fragment = compiler.compile_filter(residual)
    except UncompilableFilterError as e:
        logger.debug(f"Residual {residual} is not filterable ({e.message}); strict check required")
        return CheckResult(FactTruthValue.UNKNOWN, None, residual)

    return CheckResult(FactTruthValue.UNKNOWN, fragment, residual)


def evaluate_check(check: Check, context: EvaluationContext, compiler: DataLayer) -> CheckResult:
    """Evaluate one check's predicate against the context."""
    return evaluate_predicate(check.predicate, check.kind, context, compiler)


def evaluate_condition(policy: Policy, context: EvaluationContext) -> FactTruthValue:
    """
    Decide whether a policy applies to the request.

    Conditions are meant to be decidable from action metadata. A condition
    that reads record data is UNKNOWN until a record is loaded. One that can
    never be decided applies for normal policies and does not apply for
    bypass policies.
    """
    residual = simplify(policy.condition, context)
    if isinstance(residual, Literal):
        return FactTruthValue.of(bool(residual.value))
    if not context.has_record and references_record(residual):
        return FactTruthValue.UNKNOWN
    if contains_unresolvable(residual):
        return FactTruthValue.of(not policy.bypass)
    raise EngineFault(f"Condition {policy.condition} left residual {residual}")

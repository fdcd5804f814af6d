"""
Policy evaluation: resolve one policy's ordered checks to a decision.

Checks run in declaration order and the first one that resolves wins. Before
records are loaded, checks that depend on record data are folded into an
exact filter expression that encodes the same first-match semantics, so
every record matching the filter is one the policy would authorize.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..core.types import EvaluationContext
from ..errors import EngineFault
from ..expr.expression import (
    FALSE,
    TRUE,
    Predicate,
    fold_and,
    fold_not,
    fold_or,
    is_false,
    is_true,
)
from ..store.types import DataLayer
from .check_evaluator import conservative_value, evaluate_check
from .types import (
    Authorized,
    Check,
    CheckKind,
    Decision,
    FilteredBy,
    Forbidden,
    Outcome,
    Policy,
    RequiresStrictCheck,
    resolve_kind,
)


logger = logging.getLogger(__name__)

NO_MATCHING_CHECK = "no matching check"


def chain_filter(pending: Sequence[Tuple[CheckKind, Predicate]], tail: Predicate) -> Predicate:
    """
    Fold pending checks into one filter, right to left.

    ``tail`` is what happens when none of the pending checks resolves: the
    definite terminal reached after them, or FALSE on exhaustion.
    """
    result = tail
    for kind, fragment in reversed(pending):
        if kind is CheckKind.AUTHORIZE_IF:
            result = fold_or([fragment, result])
        elif kind is CheckKind.AUTHORIZE_UNLESS:
            result = fold_or([fold_not(fragment), result])
        elif kind is CheckKind.FORBID_IF:
            result = fold_and([fold_not(fragment), result])
        else:
            result = fold_and([fragment, result])
    return result


def evaluate_policy(policy: Policy, context: EvaluationContext, compiler: DataLayer) -> Decision:
    """
    Evaluate the checks of an applicable policy.

    Returns:
        Authorized or Forbidden when the outcome is definite, FilteredBy with
        an exact filter when it depends on filterable record data, or
        RequiresStrictCheck (carrying a superset prefilter) when some check
        can only be decided against a loaded record.
    """
    pending: List[Tuple[CheckKind, Predicate]] = []
    terminal: Optional[Outcome] = None

    for check in policy.checks:
        result = evaluate_check(check, context, compiler)

        if result.value.is_definite:
            outcome = resolve_kind(check.kind, result.value)
            if outcome is None:
                continue
            terminal = outcome
            break

        if context.has_record:
            raise EngineFault(
                f"Check {check.label} stayed unknown with a loaded record",
                details={'policy': policy.label}
            )

        if not result.is_filterable:
            prefilter = chain_filter(pending, TRUE)
            logger.debug(f"Policy '{policy.label}' needs a strict check at '{check.label}'")
            return RequiresStrictCheck(residual=(policy,), prefilter=prefilter)

        pending.append((check.kind, result.fragment))

    tail = TRUE if terminal is Outcome.AUTHORIZED else FALSE
    expression = chain_filter(pending, tail)

    if is_true(expression):
        return Authorized()
    if is_false(expression):
        if terminal is Outcome.FORBIDDEN:
            return Forbidden(reasons=(policy.label,))
        return Forbidden(reasons=(f"{policy.label}: {NO_MATCHING_CHECK}",))
    return FilteredBy(filter=expression)


def evaluate_checks_definite(checks: Sequence[Check], context: EvaluationContext,
                             compiler: DataLayer) -> Outcome:
    """
    Run checks to a definite outcome.

    Used where no filter can be applied (field visibility): a check that is
    still unknown takes its conservative value, so unknown data never reveals
    anything.
    """
    for check in checks:
        result = evaluate_check(check, context, compiler)
        value = result.value
        if not value.is_definite:
            value = conservative_value(check.kind)
        outcome = resolve_kind(check.kind, value)
        if outcome is not None:
            return outcome
    return Outcome.FORBIDDEN

"""
Field-level visibility.

Redaction runs after the record-level decision and can only hide fields,
never grant access to a record. Explicit field policies take precedence
over wildcard ones; a field no policy covers is hidden.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from ..core.types import EvaluationContext, FactTruthValue
from ..store.types import DataLayer
from .check_evaluator import evaluate_condition
from .policy_evaluator import evaluate_checks_definite, evaluate_policy
from .types import (
    FORBIDDEN_FIELD,
    Authorized,
    FieldPolicy,
    FieldVisibility,
    Outcome,
    Policy,
)


logger = logging.getLogger(__name__)


def bypass_passes(policies: Sequence[Policy], context: EvaluationContext,
                  compiler: DataLayer) -> bool:
    """True when some applicable bypass policy authorizes outright."""
    for policy in policies:
        if not policy.bypass:
            continue
        if evaluate_condition(policy, context) is not FactTruthValue.TRUE:
            continue
        if isinstance(evaluate_policy(policy, context, compiler), Authorized):
            return True
    return False


def matching_field_policies(field_name: str,
                            field_policies: Sequence[FieldPolicy]) -> Sequence[FieldPolicy]:
    """Field policies governing ``field_name``: explicit ones if any, else wildcards."""
    explicit = [fp for fp in field_policies if field_name in fp.fields]
    if explicit:
        return explicit
    return [fp for fp in field_policies if fp.is_wildcard]


def redact(fields: Iterable[str],
           context: EvaluationContext,
           policies: Sequence[Policy],
           field_policies: Sequence[FieldPolicy],
           compiler: DataLayer,
           record: Optional[Mapping[str, Any]] = None) -> Dict[str, FieldVisibility]:
    """
    Compute the visibility of each requested field.

    Args:
        fields: Field names to decide
        context: The request context
        policies: The entity's record-level policies (for bypass)
        field_policies: The entity's field policies
        compiler: Storage collaborator used by check evaluation
        record: Loaded record; without one, record-dependent checks resolve
            conservatively

    Returns:
        Mapping of field name to VISIBLE or FORBIDDEN
    """
    fields = list(fields)
    if record is not None:
        context = context.with_record(record)

    if not field_policies or bypass_passes(policies, context, compiler):
        return {name: FieldVisibility.VISIBLE for name in fields}

    # Each field policy is evaluated at most once per call
    outcomes: Dict[int, Outcome] = {}

    def outcome_of(index: int) -> Outcome:
        if index not in outcomes:
            outcomes[index] = evaluate_checks_definite(
                field_policies[index].checks, context, compiler
            )
        return outcomes[index]

    visibility = {}
    for name in fields:
        matching = matching_field_policies(name, field_policies)
        if not matching:
            visibility[name] = FieldVisibility.FORBIDDEN
            continue
        indices = [i for i, fp in enumerate(field_policies) if any(fp is m for m in matching)]
        authorized = all(outcome_of(i) is Outcome.AUTHORIZED for i in indices)
        visibility[name] = FieldVisibility.VISIBLE if authorized else FieldVisibility.FORBIDDEN

    hidden = sorted(n for n, v in visibility.items() if v is FieldVisibility.FORBIDDEN)
    if hidden:
        logger.debug(f"Redacted fields for {context.action.name}: {hidden}")
    return visibility


def apply_redaction(record: Mapping[str, Any],
                    visibility: Mapping[str, FieldVisibility]) -> Dict[str, Any]:
    """Copy ``record`` with every forbidden field replaced by FORBIDDEN_FIELD."""
    redacted = dict(record)
    for name, value in visibility.items():
        if value is FieldVisibility.FORBIDDEN and name in redacted:
            redacted[name] = FORBIDDEN_FIELD
    return redacted

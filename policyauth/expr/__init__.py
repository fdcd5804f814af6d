"""
Package expr implements the fact model: boolean expressions over actor,
request and record facts, their partial evaluation, and the builtin checks.
"""

from .expression import (
    FALSE,
    TRUE,
    ActionIs,
    ActionTypeIs,
    ActorRef,
    And,
    Calculation,
    Changing,
    Compare,
    Expression,
    IsNil,
    Literal,
    Not,
    Or,
    Predicate,
    Ref,
    Selecting,
    TenantRef,
    Term,
    Unresolvable,
    ValueSet,
    actor,
    and_,
    as_predicate,
    contains_unresolvable,
    evaluate_record,
    fold_and,
    fold_not,
    fold_or,
    is_false,
    is_true,
    lit,
    not_,
    or_,
    record_paths,
    ref,
    references_record,
    resolve_path,
    simplify,
    tenant,
    walk,
)

from .checks import (
    action,
    action_type,
    actor_attribute_equals,
    actor_present,
    always,
    calculation,
    changing,
    expr,
    never,
    relates_to_actor_via,
    selecting,
)

__all__ = [
    # Nodes
    'Expression', 'Predicate', 'Term', 'Literal', 'Ref', 'ActorRef', 'TenantRef',
    'Compare', 'IsNil', 'And', 'Or', 'Not', 'ActionTypeIs', 'ActionIs',
    'Selecting', 'Changing', 'Calculation', 'Unresolvable', 'ValueSet',
    'TRUE', 'FALSE',

    # Construction
    'ref', 'actor', 'tenant', 'lit', 'and_', 'or_', 'not_', 'as_predicate',

    # Evaluation
    'simplify', 'evaluate_record', 'resolve_path', 'fold_and', 'fold_or',
    'fold_not', 'walk', 'record_paths', 'references_record',
    'contains_unresolvable', 'is_true', 'is_false',

    # Builtin checks
    'always', 'never', 'actor_present', 'actor_attribute_equals',
    'action_type', 'action', 'relates_to_actor_via', 'selecting',
    'changing', 'calculation', 'expr',
]

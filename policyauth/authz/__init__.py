"""
Package authz implements policy evaluation and authorization decisions.

  - types:            checks, policies, field policies and decision variants
  - check_evaluator:  one check against one context
  - policy_evaluator: ordered checks of one policy to a decision
  - authz:            decision combinator and the Authorizer
  - field_policy:     field-level redaction
  - builder:          policy set definition, validation and compilation
"""

from .types import (
    Check,
    CheckKind,
    CheckResult,
    Decision,
    Authorized,
    Forbidden,
    FilteredBy,
    RequiresStrictCheck,
    FieldPolicy,
    FieldVisibility,
    ForbiddenField,
    FORBIDDEN_FIELD,
    Outcome,
    Policy,
    WILDCARD,
    authorize_if,
    authorize_unless,
    forbid_if,
    forbid_unless,
)
from .check_evaluator import evaluate_check, evaluate_condition
from .policy_evaluator import chain_filter, evaluate_policy
from .cache import DecisionCache
from .field_policy import apply_redaction, redact
from .builder import CompiledPolicySet, PolicyRegistry, PolicySetBuilder
from .authz import Authorizer, ReadResult, combine, ensure_authorized, outcome_name

__all__ = [
    # Types
    'Check',
    'CheckKind',
    'CheckResult',
    'Decision',
    'Authorized',
    'Forbidden',
    'FilteredBy',
    'RequiresStrictCheck',
    'FieldPolicy',
    'FieldVisibility',
    'ForbiddenField',
    'FORBIDDEN_FIELD',
    'Outcome',
    'Policy',
    'WILDCARD',
    'authorize_if',
    'authorize_unless',
    'forbid_if',
    'forbid_unless',

    # Evaluation
    'evaluate_check',
    'evaluate_condition',
    'evaluate_policy',
    'chain_filter',
    'combine',
    'apply_redaction',
    'redact',

    # Engine
    'Authorizer',
    'ReadResult',
    'ensure_authorized',
    'outcome_name',
    'DecisionCache',
    'CompiledPolicySet',
    'PolicySetBuilder',
    'PolicyRegistry',
]

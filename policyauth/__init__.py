"""
policyauth Python Package

Declarative, per-request authorization engine with filter pushdown, strict
re-evaluation and field-level redaction.
"""

__version__ = "0.1.0"

from .core.config import EngineConfig
from .core.types import (
    Action,
    ActionType,
    Actor,
    EvaluationContext,
    FactTruthValue,
)
from .errors import (
    EngineFault,
    ForbiddenError,
    InvalidConfigurationError,
    PolicyAuthError,
)
from .resource import Cardinality, EntityDefinition, Relationship
from .authz import (
    Authorized,
    Authorizer,
    CompiledPolicySet,
    Decision,
    FilteredBy,
    Forbidden,
    FORBIDDEN_FIELD,
    FieldVisibility,
    PolicyRegistry,
    PolicySetBuilder,
    RequiresStrictCheck,
    authorize_if,
    authorize_unless,
    ensure_authorized,
    forbid_if,
    forbid_unless,
)
from .analysis import PolicyAnalysis, analyze
from .store import DataLayer, MemoryDataLayer

__all__ = [
    "EngineConfig",
    "Action",
    "ActionType",
    "Actor",
    "EvaluationContext",
    "FactTruthValue",
    "EngineFault",
    "ForbiddenError",
    "InvalidConfigurationError",
    "PolicyAuthError",
    "Cardinality",
    "EntityDefinition",
    "Relationship",
    "Authorized",
    "Authorizer",
    "CompiledPolicySet",
    "Decision",
    "FilteredBy",
    "Forbidden",
    "FORBIDDEN_FIELD",
    "FieldVisibility",
    "PolicyRegistry",
    "PolicySetBuilder",
    "RequiresStrictCheck",
    "authorize_if",
    "authorize_unless",
    "ensure_authorized",
    "forbid_if",
    "forbid_unless",
    "PolicyAnalysis",
    "analyze",
    "DataLayer",
    "MemoryDataLayer",
]

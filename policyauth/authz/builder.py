"""
Policy set definition and compilation.

A PolicySetBuilder collects policies, bypass policies and field policies for
one entity. ``compile`` validates every reference against the entity
metadata, reports all problems at once, runs the satisfiability analysis and
returns an immutable CompiledPolicySet.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..analysis.analyzer import PolicyAnalysis, analyze
from ..core.config import EngineConfig
from ..errors import ErrorCode, ErrorCollection, InvalidConfigurationError
from ..expr.expression import ActionIs, Changing, Expression, Selecting, record_paths, walk
from ..resource.types import EntityDefinition
from .types import WILDCARD, Check, FieldPolicy, Policy


logger = logging.getLogger(__name__)

# Analysis and registration run one at a time
_COMPILE_LOCK = threading.RLock()


@dataclass(frozen=True)
class CompiledPolicySet:
    """Validated, analyzed and frozen policies of one entity."""
    entity: EntityDefinition
    policies: Tuple[Policy, ...]
    field_policies: Tuple[FieldPolicy, ...]
    analysis: PolicyAnalysis

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def bypass_policies(self) -> Tuple[Policy, ...]:
        return tuple(p for p in self.policies if p.bypass)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.entity.name,
            'policies': [p.to_dict() for p in self.policies],
            'field_policies': [fp.to_dict() for fp in self.field_policies],
            'analysis': self.analysis.to_dict()
        }


class PolicySetBuilder:
    """
    Collects the policies of one entity in declaration order.

    Example:
        policies = (
            PolicySetBuilder(post)
            .bypass(actor_attribute_equals("admin", True), authorize_if(always()))
            .policy(action_type(ActionType.READ),
                    authorize_if(relates_to_actor_via("owner")))
            .compile()
        )
    """

    def __init__(self, entity: EntityDefinition):
        self.entity = entity
        self._policies: List[Policy] = []
        self._field_policies: List[FieldPolicy] = []

    def policy(self, condition: Any, *checks: Check, description: str = "") -> "PolicySetBuilder":
        """Add a normal policy; ``condition`` may be a list combined with AND."""
        self._policies.append(Policy.build(condition, *checks, description=description))
        return self

    def bypass(self, condition: Any, *checks: Check, description: str = "") -> "PolicySetBuilder":
        """Add a bypass policy."""
        self._policies.append(Policy.build(condition, *checks, bypass=True, description=description))
        return self

    def field_policy(self, fields: Union[str, Iterable[str]], *checks: Check,
                     description: str = "") -> "PolicySetBuilder":
        """Add a field policy; ``"*"`` matches every field."""
        if isinstance(fields, str):
            fields = [fields]
        self._field_policies.append(FieldPolicy(frozenset(fields), tuple(checks), description))
        return self

    def _validate_expression(self, expr: Expression, location: str, errors: ErrorCollection) -> None:
        for path in record_paths(expr):
            problem = self.entity.resolve_path(path)
            if problem is not None:
                errors.add(ErrorCode.UNKNOWN_REFERENCE, problem, location)

        for node in walk(expr):
            if isinstance(node, (Selecting, Changing)) and not self.entity.has_field(node.field):
                errors.add(
                    ErrorCode.UNKNOWN_FIELD,
                    f"{self.entity.name} has no field {node.field!r}",
                    location
                )
            elif isinstance(node, ActionIs):
                for name in sorted(node.names):
                    if self.entity.action(name) is None:
                        errors.add(
                            ErrorCode.UNKNOWN_ACTION,
                            f"{self.entity.name} has no action {name!r}",
                            location
                        )

    def _validate_checks(self, checks: Tuple[Check, ...], location: str,
                         errors: ErrorCollection) -> None:
        if not checks:
            errors.add(ErrorCode.INVALID_CONFIGURATION, "policy has no checks", location)
        for index, check in enumerate(checks):
            self._validate_expression(check.predicate, f"{location}.checks[{index}]", errors)

    def validate(self) -> ErrorCollection:
        """Collect every configuration problem without raising."""
        errors = ErrorCollection()

        for index, policy in enumerate(self._policies):
            location = f"policies[{index}]"
            self._validate_expression(policy.condition, f"{location}.condition", errors)
            self._validate_checks(policy.checks, location, errors)

        for index, field_policy in enumerate(self._field_policies):
            location = f"field_policies[{index}]"
            if not field_policy.fields:
                errors.add(ErrorCode.INVALID_CONFIGURATION, "field policy names no fields", location)
            for name in sorted(field_policy.fields):
                if name != WILDCARD and not self.entity.has_field(name):
                    errors.add(
                        ErrorCode.UNKNOWN_FIELD,
                        f"{self.entity.name} has no field {name!r}",
                        location
                    )
            self._validate_checks(field_policy.checks, location, errors)

        return errors

    def compile(self, config: Optional[EngineConfig] = None) -> CompiledPolicySet:
        """
        Validate, analyze and freeze the policy set.

        Raises:
            InvalidConfigurationError: if any reference is invalid, or if
                strict analysis is enabled and the analyzer reports an
                always-denying or unreachable policy.
        """
        config = config or EngineConfig()
        errors = self.validate()
        errors.raise_if_errors(self.entity.name)

        policies = tuple(self._policies)
        field_policies = tuple(self._field_policies)

        with _COMPILE_LOCK:
            analysis = analyze(self.entity, policies)

        if config.strict_analysis and analysis.escalations:
            strict_errors = ErrorCollection()
            for warning in analysis.escalations:
                strict_errors.add(warning.code, warning.message, warning.location)
            strict_errors.raise_if_errors(self.entity.name)

        logger.info(
            f"Compiled {len(policies)} policies and {len(field_policies)} field policies "
            f"for {self.entity.name} ({len(analysis.warnings)} warnings)"
        )
        return CompiledPolicySet(
            entity=self.entity,
            policies=policies,
            field_policies=field_policies,
            analysis=analysis
        )


class PolicyRegistry:
    """Compiled policy sets keyed by entity name."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._sets: Dict[str, CompiledPolicySet] = {}

    def register(self, policy_set: CompiledPolicySet) -> CompiledPolicySet:
        with _COMPILE_LOCK:
            self._sets[policy_set.name] = policy_set
        return policy_set

    def compile(self, builder: PolicySetBuilder) -> CompiledPolicySet:
        """
        Compile and register a builder's policies.

        Compiling the same policies for an entity twice returns the set that
        is already registered.
        """
        with _COMPILE_LOCK:
            existing = self._sets.get(builder.entity.name)
            if (existing is not None
                    and existing.entity is builder.entity
                    and existing.policies == tuple(builder._policies)
                    and existing.field_policies == tuple(builder._field_policies)):
                return existing
            return self.register(builder.compile(self.config))

    def get(self, entity_name: str) -> Optional[CompiledPolicySet]:
        return self._sets.get(entity_name)

    def __contains__(self, entity_name: str) -> bool:
        return entity_name in self._sets

    def entities(self) -> List[str]:
        return sorted(self._sets)

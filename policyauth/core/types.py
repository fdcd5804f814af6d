"""
Core request-scoped types for the policyauth engine.

An EvaluationContext describes what is known when a decision is computed:
the actor, the action, and (at the strict stage) a materialized record.
Contexts are created per request and never shared between requests.
"""

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


class FactTruthValue(Enum):
    """Truth value of a fact at the point of evaluation."""
    TRUE = "true"
    FALSE = "false"
    # Only legal while no record is loaded and the fact reads record data
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, value: bool) -> "FactTruthValue":
        return cls.TRUE if value else cls.FALSE

    @property
    def is_definite(self) -> bool:
        return self is not FactTruthValue.UNKNOWN


class ActionType(Enum):
    """Kind of operation an action performs on an entity."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    ACTION = "action"

    @property
    def is_query(self) -> bool:
        return self is ActionType.READ


@dataclass(frozen=True)
class Action:
    """A named operation on an entity."""
    name: str
    type: ActionType
    primary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'name': self.name,
            'type': self.type.value,
            'primary': self.primary
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Action':
        """Create from dictionary representation."""
        return cls(
            name=data['name'],
            type=ActionType(data['type']),
            primary=data.get('primary', False)
        )


@dataclass(frozen=True)
class Actor:
    """
    Principal on whose behalf an action is performed.

    ``id`` is addressable as the ``"id"`` attribute; everything else lives in
    ``attributes``.
    """
    id: Any
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def get(self, attribute: Optional[str]) -> Any:
        """Return an attribute value, the actor itself for ``None``, or None if absent."""
        if attribute is None:
            return self
        if attribute == "id":
            return self.id
        return self.attributes.get(attribute)

    def identity(self) -> str:
        """Stable string identity used for cache keys."""
        return json.dumps(
            {'id': self.id, 'attributes': dict(self.attributes)},
            sort_keys=True,
            default=str
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {'id': self.id, 'attributes': dict(self.attributes)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Actor':
        """Create from dictionary representation."""
        return cls(id=data['id'], attributes=dict(data.get('attributes', {})))


@dataclass(frozen=True)
class EvaluationContext:
    """
    What is known at the point of evaluation.

    Queries are evaluated without a record first (filter stage). When a check
    cannot be turned into a filter, the caller re-evaluates with each loaded
    record (strict stage) via ``with_record``.

    ``select`` of ``None`` means every field is selected.
    """
    action: Action
    actor: Optional[Actor] = None
    tenant: Optional[str] = None
    record: Optional[Mapping[str, Any]] = None
    select: Optional[FrozenSet[str]] = None
    changes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_record(self) -> bool:
        return self.record is not None

    @property
    def action_type(self) -> ActionType:
        return self.action.type

    def with_record(self, record: Mapping[str, Any]) -> "EvaluationContext":
        """Derive the strict-stage context for one materialized record."""
        return replace(self, record=record)

    def without_record(self) -> "EvaluationContext":
        return replace(self, record=None)

    def is_selecting(self, field_name: str) -> bool:
        return self.select is None or field_name in self.select

    def is_changing(self, field_name: str) -> bool:
        return field_name in self.changes

    def cache_key(self) -> Tuple[Any, ...]:
        """Key identifying every static input of a filter-stage evaluation."""
        return (
            self.action.name,
            self.actor.identity() if self.actor is not None else None,
            self.tenant,
            None if self.select is None else tuple(sorted(self.select)),
            tuple(sorted(self.changes)),
        )

"""
Entity metadata consumed by the policy compiler.

Only the parts the engine needs are modelled: attribute names, relationships
(for path validation and traversal semantics) and the entity's actions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Tuple

from ..core.types import Action, ActionType


class Cardinality(Enum):
    """Relationship cardinality."""
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True, eq=False)
class Relationship:
    """A named relationship to another entity."""
    name: str
    destination: "EntityDefinition"
    cardinality: Cardinality = Cardinality.ONE


@dataclass(frozen=True, eq=False)
class EntityDefinition:
    """
    Immutable description of a protected entity.

    Attributes:
        name: Entity identity, used as registry and data-layer key
        attributes: Names of the entity's fields
        relationships: Relationships keyed by name
        actions: Actions the entity exposes
        primary_key: Attribute used to look records up by key
    """
    name: str
    attributes: FrozenSet[str]
    relationships: Dict[str, Relationship] = field(default_factory=dict)
    actions: Tuple[Action, ...] = ()
    primary_key: str = "id"

    @classmethod
    def define(cls,
               name: str,
               attributes: Iterable[str],
               actions: Optional[Sequence[Action]] = None,
               relationships: Optional[Sequence[Relationship]] = None,
               primary_key: str = "id") -> "EntityDefinition":
        """
        Build an entity definition, adding default CRUD actions when none are given.
        """
        attrs = frozenset(attributes) | {primary_key}
        if actions is None:
            actions = default_actions()
        rels = {rel.name: rel for rel in (relationships or [])}
        clash = attrs & set(rels)
        if clash:
            raise ValueError(f"Names used as both attribute and relationship: {sorted(clash)}")
        return cls(
            name=name,
            attributes=attrs,
            relationships=rels,
            actions=tuple(actions),
            primary_key=primary_key,
        )

    def has_field(self, name: str) -> bool:
        return name in self.attributes or name in self.relationships

    def action(self, name: str) -> Optional[Action]:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def primary_action(self, action_type: ActionType) -> Optional[Action]:
        """
        Return the primary action of a type.

        A sole action of the type is primary; otherwise the one flagged
        ``primary`` wins.
        """
        candidates = [a for a in self.actions if a.type == action_type]
        if len(candidates) == 1:
            return candidates[0]
        for action in candidates:
            if action.primary:
                return action
        return None

    def resolve_path(self, path: Sequence[str]) -> Optional[str]:
        """
        Validate a field path, following relationships.

        Returns:
            None if the path resolves, otherwise a message describing the
            first segment that does not.
        """
        if not path:
            return "empty reference path"
        entity = self
        for index, segment in enumerate(path):
            last = index == len(path) - 1
            if segment in entity.relationships:
                entity = entity.relationships[segment].destination
                continue
            if segment in entity.attributes and last:
                return None
            if segment in entity.attributes:
                return f"{entity.name}.{segment} is an attribute, cannot traverse into {path[index + 1]!r}"
            return f"{entity.name} has no attribute or relationship {segment!r}"
        # A path ending on a relationship compares the related record itself
        return None


def default_actions() -> Tuple[Action, ...]:
    """Default read/create/update/destroy actions, each primary."""
    return tuple(
        Action(name=t.value, type=t, primary=True)
        for t in (ActionType.READ, ActionType.CREATE, ActionType.UPDATE, ActionType.DESTROY)
    )

"""
Builtin facts used to write policy checks and conditions.

Every builtin returns a plain Predicate, so builtins and hand-written
expressions compose freely with ``&``, ``|`` and ``~``.
"""

from typing import Any, Callable, Iterable, Mapping, Union

from ..core.types import ActionType
from .expression import (
    FALSE,
    TRUE,
    ActionIs,
    ActionTypeIs,
    ActorRef,
    Calculation,
    Changing,
    Compare,
    Not,
    Predicate,
    Selecting,
    as_predicate,
    as_term,
    ref,
)


def always() -> Predicate:
    return TRUE


def never() -> Predicate:
    return FALSE


def actor_present() -> Predicate:
    """True when the request carries an actor."""
    return Not(ActorRef(None).is_nil())


def actor_attribute_equals(attribute: str, value: Any) -> Predicate:
    return Compare("eq", ActorRef(attribute), as_term(value))


def action_type(*types: Union[ActionType, str]) -> Predicate:
    """True when the action's type is one of ``types``."""
    return ActionTypeIs(frozenset(ActionType(t) for t in types))


def action(*names: str) -> Predicate:
    """True when the action's name is one of ``names``."""
    return ActionIs(frozenset(names))


def relates_to_actor_via(path: Union[str, Iterable[str]], field: str = "id") -> Predicate:
    """
    True when the record reaches the actor through ``path``.

    ``relates_to_actor_via("owner")`` compares ``owner.id`` with the actor's
    ``id``. Paths through to-many relationships match if any related record
    does.
    """
    segments = (path,) if isinstance(path, str) else tuple(path)
    return Compare("eq", ref(*segments, field), ActorRef(field))


def selecting(field: str) -> Predicate:
    return Selecting(field)


def changing(field: str) -> Predicate:
    return Changing(field)


def calculation(name: str, fn: Callable[[Mapping[str, Any]], Any], *refs: str) -> Predicate:
    """
    Record predicate computed in Python after the record is loaded.

    ``refs`` lists the fields ``fn`` reads so they can be validated at
    compile time. Calculations never compile into storage filters.
    """
    return Calculation(name, fn, tuple(tuple(r.split(".")) for r in refs))


def expr(value: Any) -> Predicate:
    """Accept any predicate or value term as a check predicate."""
    return as_predicate(value)

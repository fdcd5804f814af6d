"""
Boolean expression model for policy checks.

Expressions are immutable, hashable trees. Value terms (record references,
actor references, the tenant and literals) appear as operands of comparisons;
boolean nodes combine facts with and/or/not.

Two evaluation modes exist:

* ``simplify`` partially evaluates an expression against an
  EvaluationContext. Everything the context knows is substituted and
  constants are folded with three-valued short-circuit logic. A literal
  result is a definite fact; anything else is the residual that still needs
  record data.
* ``evaluate_record`` evaluates a residual against one materialized record.
  Data layers use it to run filter fragments row by row.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Tuple

from ..core.types import EvaluationContext
from ..errors import EngineFault


COMPARISON_OPERATORS = ("eq", "ne", "lt", "le", "gt", "ge", "in")

_OPERATOR_SYMBOLS = {
    "eq": "==",
    "ne": "!=",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
    "in": "in",
}


class ValueSet(tuple):
    """Values reached through a to-many traversal; comparisons match any member."""


class Expression:
    """Base class of every expression node."""

    __slots__ = ()

    def children(self) -> Tuple["Expression", ...]:
        return ()


class Predicate(Expression):
    """Boolean-valued expression; supports ``&``, ``|`` and ``~``."""

    __slots__ = ()

    def __and__(self, other: "Predicate") -> "Predicate":
        return And((self, as_predicate(other)))

    def __or__(self, other: "Predicate") -> "Predicate":
        return Or((self, as_predicate(other)))

    def __invert__(self) -> "Predicate":
        return Not(self)


class Term(Expression):
    """Value-valued expression used as a comparison operand."""

    __slots__ = ()

    def eq(self, other: Any) -> "Compare":
        return Compare("eq", self, as_term(other))

    def ne(self, other: Any) -> "Compare":
        return Compare("ne", self, as_term(other))

    def lt(self, other: Any) -> "Compare":
        return Compare("lt", self, as_term(other))

    def le(self, other: Any) -> "Compare":
        return Compare("le", self, as_term(other))

    def gt(self, other: Any) -> "Compare":
        return Compare("gt", self, as_term(other))

    def ge(self, other: Any) -> "Compare":
        return Compare("ge", self, as_term(other))

    def in_(self, values: Any) -> "Compare":
        return Compare("in", self, as_term(values))

    def is_nil(self) -> "IsNil":
        return IsNil(self)


@dataclass(frozen=True)
class Literal(Term, Predicate):
    """A constant. Booleans double as always/never predicates."""
    value: Any

    def __str__(self) -> str:
        if self.value is True:
            return "true"
        if self.value is False:
            return "false"
        return repr(self.value)


TRUE = Literal(True)
FALSE = Literal(False)


@dataclass(frozen=True)
class Ref(Term):
    """Reference to a record field, traversing relationships segment by segment."""
    path: Tuple[str, ...]

    def __str__(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True)
class ActorRef(Term):
    """Reference to the actor (``attribute=None``) or one of its attributes."""
    attribute: Optional[str] = None

    def __str__(self) -> str:
        return "actor" if self.attribute is None else f"actor(:{self.attribute})"


@dataclass(frozen=True)
class TenantRef(Term):
    """Reference to the request's tenant."""

    def __str__(self) -> str:
        return "tenant"


@dataclass(frozen=True)
class Compare(Predicate):
    op: str
    left: Term
    right: Term

    def __post_init__(self):
        if self.op not in COMPARISON_OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {self.op}")

    def children(self) -> Tuple[Expression, ...]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"{self.left} {_OPERATOR_SYMBOLS[self.op]} {self.right}"


@dataclass(frozen=True)
class IsNil(Predicate):
    operand: Term

    def children(self) -> Tuple[Expression, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return f"is_nil({self.operand})"


@dataclass(frozen=True)
class And(Predicate):
    args: Tuple[Predicate, ...]

    def children(self) -> Tuple[Expression, ...]:
        return self.args

    def __str__(self) -> str:
        return "(" + " and ".join(str(a) for a in self.args) + ")"


@dataclass(frozen=True)
class Or(Predicate):
    args: Tuple[Predicate, ...]

    def children(self) -> Tuple[Expression, ...]:
        return self.args

    def __str__(self) -> str:
        return "(" + " or ".join(str(a) for a in self.args) + ")"


@dataclass(frozen=True)
class Not(Predicate):
    arg: Predicate

    def children(self) -> Tuple[Expression, ...]:
        return (self.arg,)

    def __str__(self) -> str:
        return f"not {self.arg}"


@dataclass(frozen=True)
class ActionTypeIs(Predicate):
    """Static fact: the action's type is one of ``types``."""
    types: frozenset

    def __str__(self) -> str:
        names = sorted(t.value for t in self.types)
        return f"action_type({', '.join(names)})"


@dataclass(frozen=True)
class ActionIs(Predicate):
    """Static fact: the action's name is one of ``names``."""
    names: frozenset

    def __str__(self) -> str:
        return f"action({', '.join(sorted(self.names))})"


@dataclass(frozen=True)
class Selecting(Predicate):
    """Static fact: the request selects ``field``."""
    field: str

    def __str__(self) -> str:
        return f"selecting(:{self.field})"


@dataclass(frozen=True)
class Changing(Predicate):
    """Static fact: the pending change sets ``field``."""
    field: str

    def __str__(self) -> str:
        return f"changing(:{self.field})"


@dataclass(frozen=True)
class Calculation(Predicate):
    """
    Record predicate computed in Python.

    Its value only exists once a record is materialized, so it can never be
    compiled into a storage filter. Two calculations are the same fact only
    when they share both the name and the function object.
    """
    name: str
    fn: Callable[[Mapping[str, Any]], Any]
    refs: Tuple[Tuple[str, ...], ...] = ()

    def __str__(self) -> str:
        return f"{self.name}()"


@dataclass(frozen=True)
class Unresolvable(Predicate):
    """A fact no amount of record data can decide, e.g. an attribute of a missing actor."""
    reason: str = "missing actor"

    def __str__(self) -> str:
        return f"unresolvable({self.reason})"


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------


def as_term(value: Any) -> Term:
    """Wrap a plain Python value as a Literal term."""
    if isinstance(value, Term):
        return value
    if isinstance(value, Expression):
        raise TypeError(f"Expected a value term, got predicate {value}")
    if isinstance(value, (list, set, frozenset)):
        value = tuple(value)
    return Literal(value)


def as_predicate(value: Any) -> Predicate:
    """
    Coerce a value into a predicate; value terms mean ``term == true``.

    Plain booleans are rejected: ``ref("a") == actor("b")`` compares the
    expression trees and yields a bool, where ``ref("a").eq(actor("b"))`` was
    meant. Use ``always()``, ``never()`` or ``lit(True)`` for constants.
    """
    if isinstance(value, bool):
        raise TypeError(
            f"Got the plain boolean {value} where a predicate was expected; "
            "compare terms with .eq()/.ne() or use always()/never()"
        )
    if isinstance(value, Predicate):
        return value
    if isinstance(value, Term):
        return Compare("eq", value, TRUE)
    raise TypeError(f"Cannot use {value!r} as a predicate")


def and_(*args: Any) -> Predicate:
    return And(tuple(as_predicate(a) for a in args))


def or_(*args: Any) -> Predicate:
    return Or(tuple(as_predicate(a) for a in args))


def not_(arg: Any) -> Predicate:
    return Not(as_predicate(arg))


def ref(*path: str) -> Ref:
    """Reference a record field; dotted strings are split into segments."""
    segments: Tuple[str, ...] = ()
    for part in path:
        segments += tuple(part.split("."))
    return Ref(segments)


def actor(attribute: Optional[str] = None) -> ActorRef:
    return ActorRef(attribute)


def tenant() -> TenantRef:
    return TenantRef()


def lit(value: Any) -> Term:
    return as_term(value)


# ---------------------------------------------------------------------------
# Tree inspection
# ---------------------------------------------------------------------------


def walk(expr: Expression) -> Iterator[Expression]:
    """Yield every node of an expression, depth first."""
    yield expr
    for child in expr.children():
        yield from walk(child)


def record_paths(expr: Expression) -> Iterator[Tuple[str, ...]]:
    """Yield every record path an expression reads."""
    for node in walk(expr):
        if isinstance(node, Ref):
            yield node.path
        elif isinstance(node, Calculation):
            yield from node.refs


def references_record(expr: Expression) -> bool:
    return any(isinstance(node, (Ref, Calculation)) for node in walk(expr))


def contains_unresolvable(expr: Expression) -> bool:
    return any(isinstance(node, Unresolvable) for node in walk(expr))


def is_true(expr: Expression) -> bool:
    return isinstance(expr, Literal) and expr.value is True


def is_false(expr: Expression) -> bool:
    return isinstance(expr, Literal) and expr.value is False


# ---------------------------------------------------------------------------
# Boolean folding
# ---------------------------------------------------------------------------


def _truthy(expr: Predicate) -> Predicate:
    if isinstance(expr, Literal) and not isinstance(expr.value, bool):
        return Literal(bool(expr.value))
    return expr


def fold_and(args: Sequence[Predicate]) -> Predicate:
    """Conjunction with constant folding and flattening."""
    flat = []
    for arg in args:
        arg = _truthy(arg)
        if is_false(arg):
            return FALSE
        if is_true(arg):
            continue
        if isinstance(arg, And):
            flat.extend(arg.args)
        elif arg not in flat:
            flat.append(arg)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def fold_or(args: Sequence[Predicate]) -> Predicate:
    """Disjunction with constant folding and flattening."""
    flat = []
    for arg in args:
        arg = _truthy(arg)
        if is_true(arg):
            return TRUE
        if is_false(arg):
            continue
        if isinstance(arg, Or):
            flat.extend(arg.args)
        elif arg not in flat:
            flat.append(arg)
    if not flat:
        return FALSE
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def fold_not(arg: Predicate) -> Predicate:
    arg = _truthy(arg)
    if isinstance(arg, Literal):
        return Literal(not arg.value)
    if isinstance(arg, Not):
        return arg.arg
    if isinstance(arg, Unresolvable):
        return arg
    return Not(arg)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def resolve_path(record: Mapping[str, Any], path: Sequence[str]) -> Any:
    """
    Read a path from a record.

    Sequences met before the last segment are treated as to-many
    relationships and traversed member by member, producing a ValueSet.
    """
    current = [record]
    many = False
    for index, segment in enumerate(path):
        last = index == len(path) - 1
        values = []
        for item in current:
            if item is None:
                values.append(None)
                continue
            if isinstance(item, Mapping):
                value = item.get(segment)
            else:
                value = getattr(item, segment, None)
            if not last and isinstance(value, (list, tuple, set, frozenset)):
                many = True
                values.extend(value)
            else:
                values.append(value)
        current = values
    if many:
        return ValueSet(v for v in current if v is not None)
    return current[0]


def compare_values(op: str, left: Any, right: Any) -> bool:
    """
    Compare two resolved values; ValueSet operands match if any member does.

    A comparison with a nil operand never matches, whatever the operator.
    Use ``is_nil`` to test for nil.
    """
    if isinstance(left, ValueSet):
        return any(compare_values(op, member, right) for member in left)
    if left is None or right is None:
        return False
    if op == "in":
        try:
            return left in right
        except TypeError:
            return False
    if isinstance(right, ValueSet):
        return any(compare_values(op, left, member) for member in right)
    if op == "eq":
        return left == right
    if op == "ne":
        return left != right
    try:
        if op == "lt":
            return left < right
        if op == "le":
            return left <= right
        if op == "gt":
            return left > right
        if op == "ge":
            return left >= right
    except TypeError:
        return False
    raise EngineFault(f"Unknown comparison operator {op!r}")


class _Evaluator:
    """Shared partial evaluator; ``context=None`` means record-only evaluation."""

    def __init__(self, context: Optional[EvaluationContext],
                 record: Optional[Mapping[str, Any]]):
        self.context = context
        self.record = record

    def _static(self, node: Expression) -> EvaluationContext:
        if self.context is None:
            raise EngineFault(f"Static fact {node} reached record evaluation")
        return self.context

    def term(self, node: Term) -> Term:
        if isinstance(node, Literal):
            return node
        if isinstance(node, Ref):
            if self.record is None:
                return node
            return Literal(resolve_path(self.record, node.path))
        if isinstance(node, ActorRef):
            context = self._static(node)
            if context.actor is None:
                if node.attribute is None:
                    return Literal(None)
                return Unresolvable(f"actor(:{node.attribute}) without an actor")
            return Literal(context.actor.get(node.attribute))
        if isinstance(node, TenantRef):
            return Literal(self._static(node).tenant)
        raise EngineFault(f"Unexpected term {node!r}")

    def predicate(self, node: Expression) -> Predicate:
        if isinstance(node, Literal):
            return _truthy(node)
        if isinstance(node, Compare):
            left = self.term(node.left)
            right = self.term(node.right)
            for side in (left, right):
                if isinstance(side, Unresolvable):
                    return side
            for side in (left, right):
                if isinstance(side, Literal) and side.value is None:
                    return FALSE
            if isinstance(left, Literal) and isinstance(right, Literal):
                return Literal(compare_values(node.op, left.value, right.value))
            return Compare(node.op, left, right)
        if isinstance(node, IsNil):
            operand = self.term(node.operand)
            if isinstance(operand, Unresolvable):
                return operand
            if isinstance(operand, Literal):
                value = operand.value
                if isinstance(value, ValueSet):
                    return Literal(len(value) == 0)
                return Literal(value is None)
            return IsNil(operand)
        if isinstance(node, And):
            # Short-circuit: a false conjunct decides regardless of the rest
            return fold_and([self.predicate(arg) for arg in node.args])
        if isinstance(node, Or):
            return fold_or([self.predicate(arg) for arg in node.args])
        if isinstance(node, Not):
            return fold_not(self.predicate(node.arg))
        if isinstance(node, ActionTypeIs):
            return Literal(self._static(node).action.type in node.types)
        if isinstance(node, ActionIs):
            return Literal(self._static(node).action.name in node.names)
        if isinstance(node, Selecting):
            return Literal(self._static(node).is_selecting(node.field))
        if isinstance(node, Changing):
            return Literal(self._static(node).is_changing(node.field))
        if isinstance(node, Calculation):
            if self.record is None:
                return node
            return Literal(bool(node.fn(self.record)))
        if isinstance(node, Unresolvable):
            return node
        if isinstance(node, Term):
            return self.predicate(as_predicate(node))
        raise EngineFault(f"Unexpected expression node {node!r}")


def simplify(expr: Expression, context: EvaluationContext) -> Predicate:
    """
    Partially evaluate ``expr`` with everything ``context`` knows.

    Returns a Literal when the value is definite. Otherwise returns the
    residual predicate, which may contain record references, calculations or
    Unresolvable facts.
    """
    return _Evaluator(context, context.record).predicate(expr)


def evaluate_record(expr: Expression, record: Mapping[str, Any]) -> bool:
    """
    Evaluate a residual filter expression against one record.

    Raises:
        EngineFault: if the expression still contains static or
            unresolvable facts.
    """
    result = _Evaluator(None, record).predicate(expr)
    if isinstance(result, Literal):
        return bool(result.value)
    raise EngineFault(f"Expression {expr} did not resolve against a record (left {result})")



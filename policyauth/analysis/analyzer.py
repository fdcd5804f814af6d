"""
Compile-time analysis of a policy set.

Every distinct atomic predicate becomes a z3 boolean variable. For each
action of the entity the static action facts are substituted as constants,
and the solver answers which policies can apply, which can authorize or
forbid, and which checks can ever be reached. The results drive warnings,
the decision graph and the authorizer's skipping of never-applicable policies.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Hashable, List, Optional, Sequence, Tuple

from z3 import BoolRef

from ..core.types import Action
from ..errors import ErrorCode
from ..expr.expression import (
    ActionIs,
    ActionTypeIs,
    And,
    Compare,
    Expression,
    Literal,
    Not,
    Or,
    Predicate,
    Term,
    as_predicate,
    compare_values,
)
from ..resource.types import EntityDefinition
from ..authz.types import CheckKind, Policy
from .sat import SatSolver


logger = logging.getLogger(__name__)


class Applicability(Enum):
    """Whether a policy's condition holds for an action."""
    ALWAYS = "always"
    NEVER = "never"
    CONDITIONAL = "conditional"


class PolicyClassification(Enum):
    """Outcomes a policy can produce once it applies."""
    ALWAYS_AUTHORIZED = "always_authorized"
    ALWAYS_FORBIDDEN = "always_forbidden"
    DATA_DEPENDENT = "data_dependent"
    NOT_APPLICABLE = "not_applicable"


class PredicateClassification(Enum):
    """Values a check's predicate can take."""
    ALWAYS_TRUE = "always_true"
    ALWAYS_FALSE = "always_false"
    DATA_DEPENDENT = "data_dependent"


class WarningKind(Enum):
    NEVER_FORBIDS = "never_forbids"
    ALWAYS_DENIES = "always_denies"
    NEVER_APPLIES = "never_applies"
    UNREACHABLE_CHECK = "unreachable_check"
    SHADOWED_BY_BYPASS = "shadowed_by_bypass"


@dataclass(frozen=True)
class CheckReport:
    index: int
    label: str
    classification: PredicateClassification
    reachable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'label': self.label,
            'classification': self.classification.value,
            'reachable': self.reachable
        }


@dataclass(frozen=True)
class PolicyReport:
    """Analysis of one policy for one action."""
    index: int
    label: str
    bypass: bool
    applicability: Applicability
    classification: PolicyClassification
    checks: Tuple[CheckReport, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'label': self.label,
            'bypass': self.bypass,
            'applicability': self.applicability.value,
            'classification': self.classification.value,
            'checks': [c.to_dict() for c in self.checks]
        }


@dataclass(frozen=True)
class AnalysisWarning:
    """
    A finding about the policy set.

    ``code`` is set for findings that become configuration errors when strict
    analysis is enabled.
    """
    kind: WarningKind
    message: str
    policy_index: int
    action: Optional[str] = None
    check_index: Optional[int] = None
    code: Optional[ErrorCode] = None

    @property
    def escalates(self) -> bool:
        return self.code is not None

    @property
    def location(self) -> str:
        location = f"policies[{self.policy_index}]"
        if self.check_index is not None:
            location += f".checks[{self.check_index}]"
        if self.action is not None:
            location += f"@{self.action}"
        return location

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'location': self.location,
            'escalates': self.escalates
        }


@dataclass(frozen=True)
class GraphNode:
    id: str
    kind: str
    label: str
    detail: str = ""


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    label: str


@dataclass(frozen=True)
class DecisionGraph:
    """
    Decision flow of one action: start, policies, checks and the two outcomes.

    Edges that the analysis proved impossible are omitted.
    """
    action: str
    nodes: Tuple[GraphNode, ...]
    edges: Tuple[GraphEdge, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'nodes': [
                {'id': n.id, 'kind': n.kind, 'label': n.label, 'detail': n.detail}
                for n in self.nodes
            ],
            'edges': [
                {'source': e.source, 'target': e.target, 'label': e.label}
                for e in self.edges
            ]
        }


@dataclass(frozen=True)
class ActionAnalysis:
    action: Action
    policies: Tuple[PolicyReport, ...]
    graph: DecisionGraph

    @property
    def never_applicable(self) -> FrozenSet[int]:
        return frozenset(
            r.index for r in self.policies if r.applicability is Applicability.NEVER
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.to_dict(),
            'policies': [p.to_dict() for p in self.policies],
            'graph': self.graph.to_dict()
        }


@dataclass(frozen=True)
class PolicyAnalysis:
    """Result of analyzing one entity's policy set."""
    entity: str
    actions: Tuple[ActionAnalysis, ...]
    warnings: Tuple[AnalysisWarning, ...]
    variables: int = 0

    def for_action(self, name: str) -> Optional[ActionAnalysis]:
        for analysis in self.actions:
            if analysis.action.name == name:
                return analysis
        return None

    def never_applicable(self, action_name: str) -> FrozenSet[int]:
        """Indices of policies that can never apply to the named action."""
        analysis = self.for_action(action_name)
        if analysis is None:
            return frozenset()
        return analysis.never_applicable

    def report(self, action_name: str, policy_index: int) -> Optional[PolicyReport]:
        analysis = self.for_action(action_name)
        if analysis is None:
            return None
        return analysis.policies[policy_index]

    def graph(self, action_name: str) -> Optional[DecisionGraph]:
        analysis = self.for_action(action_name)
        return analysis.graph if analysis is not None else None

    @property
    def escalations(self) -> Tuple[AnalysisWarning, ...]:
        return tuple(w for w in self.warnings if w.escalates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.entity,
            'variables': self.variables,
            'actions': [a.to_dict() for a in self.actions],
            'warnings': [w.to_dict() for w in self.warnings]
        }


def _atom_key(atom: Expression) -> Hashable:
    try:
        hash(atom)
    except TypeError:
        return ('unhashable', repr(atom))
    return atom


def _formula(expr: Expression, action: Action, solver: SatSolver) -> BoolRef:
    if isinstance(expr, Literal):
        return solver.const(bool(expr.value))
    if isinstance(expr, And):
        return solver.all_of(_formula(arg, action, solver) for arg in expr.args)
    if isinstance(expr, Or):
        return solver.any_of(_formula(arg, action, solver) for arg in expr.args)
    if isinstance(expr, Not):
        return solver.negate(_formula(expr.arg, action, solver))
    if isinstance(expr, ActionTypeIs):
        return solver.const(action.type in expr.types)
    if isinstance(expr, ActionIs):
        return solver.const(action.name in expr.names)
    if isinstance(expr, Compare) and isinstance(expr.left, Literal) and isinstance(expr.right, Literal):
        return solver.const(compare_values(expr.op, expr.left.value, expr.right.value))
    if isinstance(expr, Term):
        return _formula(as_predicate(expr), action, solver)
    if isinstance(expr, Predicate):
        return solver.atom(_atom_key(expr))
    raise TypeError(f"Cannot analyze {expr!r}")


def _decision_formula(checks: Sequence[Tuple[CheckKind, BoolRef]], solver: SatSolver) -> BoolRef:
    """Formula that is true exactly when the checks authorize."""
    result = solver.false
    for kind, p in reversed(checks):
        if kind is CheckKind.AUTHORIZE_IF:
            result = solver.any_of([p, result])
        elif kind is CheckKind.AUTHORIZE_UNLESS:
            result = solver.any_of([solver.negate(p), result])
        elif kind is CheckKind.FORBID_IF:
            result = solver.all_of([solver.negate(p), result])
        else:
            result = solver.all_of([p, result])
    return result


def _classify(solver: SatSolver, p: BoolRef) -> PredicateClassification:
    if not solver.satisfiable(solver.negate(p)):
        return PredicateClassification.ALWAYS_TRUE
    if not solver.satisfiable(p):
        return PredicateClassification.ALWAYS_FALSE
    return PredicateClassification.DATA_DEPENDENT


def _analyze_policy(index: int, policy: Policy, action: Action,
                    solver: SatSolver) -> PolicyReport:
    condition = _formula(policy.condition, action, solver)
    checks = [(c.kind, _formula(c.predicate, action, solver)) for c in policy.checks]
    authorizes = _decision_formula(checks, solver)

    if not solver.satisfiable(condition):
        applicability = Applicability.NEVER
    elif not solver.satisfiable(solver.negate(condition)):
        applicability = Applicability.ALWAYS
    else:
        applicability = Applicability.CONDITIONAL

    reports = []
    # Conjunction of "applies and every earlier check continued"
    prefix = condition
    for check_index, (kind, p) in enumerate(checks):
        reachable = applicability is not Applicability.NEVER and solver.satisfiable(prefix)
        reports.append(CheckReport(
            index=check_index,
            label=policy.checks[check_index].label,
            classification=_classify(solver, p),
            reachable=reachable
        ))
        prefix = solver.all_of([prefix, solver.negate(p) if kind.trigger else p])

    if applicability is Applicability.NEVER:
        classification = PolicyClassification.NOT_APPLICABLE
    else:
        can_authorize = solver.satisfiable(solver.all_of([condition, authorizes]))
        can_forbid = solver.satisfiable(solver.all_of([condition, solver.negate(authorizes)]))
        if can_authorize and can_forbid:
            classification = PolicyClassification.DATA_DEPENDENT
        elif can_authorize:
            classification = PolicyClassification.ALWAYS_AUTHORIZED
        else:
            classification = PolicyClassification.ALWAYS_FORBIDDEN

    return PolicyReport(
        index=index,
        label=policy.label,
        bypass=policy.bypass,
        applicability=applicability,
        classification=classification,
        checks=tuple(reports)
    )


def _policy_node(index: int) -> str:
    return f"policy:{index}"


def _check_node(index: int, check_index: int) -> str:
    return f"policy:{index}.check:{check_index}"


def build_decision_graph(action: Action, policies: Sequence[Policy],
                         reports: Sequence[PolicyReport]) -> DecisionGraph:
    """Build the decision graph of one action from its policy reports."""
    nodes: List[GraphNode] = [GraphNode("start", "start", action.name, action.type.value)]
    edges: List[GraphEdge] = []

    live = [r for r in reports if r.applicability is not Applicability.NEVER]
    bypasses = [r for r in live if r.bypass]
    normals = [r for r in live if not r.bypass]
    order = bypasses + normals

    edges.append(GraphEdge("start", _policy_node(order[0].index) if order else "forbidden", "begin"))

    for position, report in enumerate(order):
        later = order[position + 1:]
        if report.bypass:
            on_success = "authorized"
            on_failure = _policy_node(later[0].index) if later else "forbidden"
            skip = on_failure
        else:
            on_success = _policy_node(later[0].index) if later else "authorized"
            on_failure = "forbidden"
            if later:
                skip = on_success
            elif any(r.applicability is Applicability.ALWAYS for r in normals if r is not report):
                skip = "authorized"
            else:
                skip = "forbidden"

        policy_id = _policy_node(report.index)
        nodes.append(GraphNode(
            policy_id,
            "bypass" if report.bypass else "policy",
            report.label,
            report.classification.value
        ))
        if report.applicability is Applicability.CONDITIONAL:
            edges.append(GraphEdge(policy_id, skip, "not applicable"))

        policy = policies[report.index]
        edges.append(GraphEdge(policy_id, _check_node(report.index, 0), "applies"))

        for check_report in report.checks:
            if not check_report.reachable:
                continue
            j = check_report.index
            kind = policy.checks[j].kind
            check_id = _check_node(report.index, j)
            nodes.append(GraphNode(check_id, "check", check_report.label,
                                   check_report.classification.value))

            trigger_label = "true" if kind.trigger else "false"
            continue_label = "false" if kind.trigger else "true"
            can_trigger = check_report.classification is not (
                PredicateClassification.ALWAYS_FALSE if kind.trigger
                else PredicateClassification.ALWAYS_TRUE
            )
            can_continue = check_report.classification is not (
                PredicateClassification.ALWAYS_TRUE if kind.trigger
                else PredicateClassification.ALWAYS_FALSE
            )

            if can_trigger:
                target = on_success if kind.authorizes else on_failure
                edges.append(GraphEdge(check_id, target, trigger_label))
            if can_continue:
                if j + 1 >= len(report.checks):
                    edges.append(GraphEdge(check_id, on_failure, continue_label))
                elif report.checks[j + 1].reachable:
                    edges.append(GraphEdge(check_id, _check_node(report.index, j + 1), continue_label))

    nodes.append(GraphNode("authorized", "outcome", "authorized"))
    nodes.append(GraphNode("forbidden", "outcome", "forbidden"))

    return DecisionGraph(action=action.name, nodes=tuple(nodes), edges=tuple(edges))


def _collect_warnings(policies: Sequence[Policy],
                      per_action: Sequence[ActionAnalysis]) -> List[AnalysisWarning]:
    warnings: List[AnalysisWarning] = []

    for index, policy in enumerate(policies):
        applicable = [
            a.policies[index] for a in per_action
            if a.policies[index].applicability is not Applicability.NEVER
        ]
        if not applicable:
            warnings.append(AnalysisWarning(
                WarningKind.NEVER_APPLIES,
                f"'{policy.label}' applies to no action of this entity",
                index,
                code=ErrorCode.UNREACHABLE_POLICY
            ))
            continue

        classes = {r.classification for r in applicable}
        if classes == {PolicyClassification.ALWAYS_FORBIDDEN}:
            message = (f"bypass '{policy.label}' can never authorize" if policy.bypass
                       else f"'{policy.label}' denies every request it applies to")
            warnings.append(AnalysisWarning(
                WarningKind.ALWAYS_DENIES, message, index,
                code=ErrorCode.UNSATISFIABLE_POLICY
            ))
        elif classes == {PolicyClassification.ALWAYS_AUTHORIZED} and not policy.bypass:
            warnings.append(AnalysisWarning(
                WarningKind.NEVER_FORBIDS,
                f"'{policy.label}' can never deny a request",
                index
            ))

        for check_index, check in enumerate(policy.checks):
            if not any(r.checks[check_index].reachable for r in applicable):
                warnings.append(AnalysisWarning(
                    WarningKind.UNREACHABLE_CHECK,
                    f"check '{check.label}' of '{policy.label}' can never be reached",
                    index,
                    check_index=check_index
                ))

    for analysis in per_action:
        shadowing = next((
            r for r in analysis.policies
            if r.bypass
            and r.applicability is Applicability.ALWAYS
            and r.classification is PolicyClassification.ALWAYS_AUTHORIZED
        ), None)
        if shadowing is None:
            continue
        for report in analysis.policies:
            if report.bypass or report.applicability is Applicability.NEVER:
                continue
            warnings.append(AnalysisWarning(
                WarningKind.SHADOWED_BY_BYPASS,
                f"'{report.label}' is unreachable: bypass '{shadowing.label}' always authorizes",
                report.index,
                action=analysis.action.name,
                code=ErrorCode.UNREACHABLE_POLICY
            ))

    return warnings


def analyze(entity: EntityDefinition, policies: Sequence[Policy]) -> PolicyAnalysis:
    """
    Analyze a policy set against every action of its entity.

    Args:
        entity: The entity the policies protect
        policies: Policies in declaration order

    Returns:
        PolicyAnalysis: per-action reports, graphs and warnings
    """
    solver = SatSolver()
    per_action = []

    for action in entity.actions:
        reports = tuple(
            _analyze_policy(index, policy, action, solver)
            for index, policy in enumerate(policies)
        )
        per_action.append(ActionAnalysis(
            action=action,
            policies=reports,
            graph=build_decision_graph(action, policies, reports)
        ))

    warnings = _collect_warnings(policies, per_action)
    for warning in warnings:
        logger.warning(f"{entity.name} {warning.location}: {warning.message}")

    logger.debug(
        f"Analyzed {len(policies)} policies of {entity.name} over {len(entity.actions)} actions "
        f"({solver.atom_count} atoms, {solver.calls} solver calls)"
    )

    return PolicyAnalysis(
        entity=entity.name,
        actions=tuple(per_action),
        warnings=tuple(warnings),
        variables=solver.atom_count
    )

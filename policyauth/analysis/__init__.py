"""
Compile-time satisfiability analysis of policy sets.
"""

from .sat import SatSolver
from .analyzer import (
    ActionAnalysis,
    AnalysisWarning,
    Applicability,
    CheckReport,
    DecisionGraph,
    GraphEdge,
    GraphNode,
    PolicyAnalysis,
    PolicyClassification,
    PolicyReport,
    PredicateClassification,
    WarningKind,
    analyze,
    build_decision_graph,
)

__all__ = [
    'SatSolver',
    'ActionAnalysis',
    'AnalysisWarning',
    'Applicability',
    'CheckReport',
    'DecisionGraph',
    'GraphEdge',
    'GraphNode',
    'PolicyAnalysis',
    'PolicyClassification',
    'PolicyReport',
    'PredicateClassification',
    'WarningKind',
    'analyze',
    'build_decision_graph',
]

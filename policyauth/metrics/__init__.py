"""
Prometheus metrics for authorization decisions.
"""

from .collector import DecisionMetrics, create_decision_metrics

__all__ = [
    'DecisionMetrics',
    'create_decision_metrics',
]

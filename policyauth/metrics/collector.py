"""
Prometheus metrics for authorization decisions.

Each collector owns its CollectorRegistry, so several authorizers (or test
cases) can record side by side without clashing on metric names.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


logger = logging.getLogger(__name__)


class DecisionMetrics:
    """Decision, strict-pass and cache metrics for one or more authorizers."""

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None,
                 namespace: str = "policyauth"):
        """
        Initialize metrics collector.

        Args:
            enabled: Record metrics at all
            registry: Registry to register with; a private one by default
            namespace: Prefix of every metric name
        """
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

        self.decisions = Counter(
            f'{namespace}_decisions_total',
            'Total number of authorization decisions',
            ['entity', 'action', 'outcome'],
            registry=self.registry
        )

        self.decision_latency = Histogram(
            f'{namespace}_decision_duration_seconds',
            'Time spent computing an authorization decision',
            ['entity'],
            buckets=[0.00005, 0.0001, 0.0002, 0.0005, 0.001, 0.002, 0.005, 0.01, 0.05, 0.1],
            registry=self.registry
        )

        self.strict_checks = Counter(
            f'{namespace}_strict_checks_total',
            'Records evaluated by the strict pass',
            ['entity', 'outcome'],
            registry=self.registry
        )

        self.cache_operations = Counter(
            f'{namespace}_cache_operations_total',
            'Decision cache lookups',
            ['status'],
            registry=self.registry
        )

        logger.debug("Decision metrics initialized")

    def _bump(self, key: str) -> None:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1

    def record_decision(self, entity: str, action: str, outcome: str, duration: float) -> None:
        """Record one decision and how long it took."""
        if not self.enabled:
            return

        self._bump(f"decisions_{outcome}")
        self.decisions.labels(entity=entity, action=action, outcome=outcome).inc()
        self.decision_latency.labels(entity=entity).observe(duration)

        logger.debug(f"Recorded decision: {entity}.{action} -> {outcome} ({duration:.6f}s)")

    def record_strict_check(self, entity: str, authorized: bool) -> None:
        """Record one record-level strict evaluation."""
        if not self.enabled:
            return

        outcome = "authorized" if authorized else "forbidden"
        self._bump(f"strict_{outcome}")
        self.strict_checks.labels(entity=entity, outcome=outcome).inc()

    def record_cache(self, hit: bool) -> None:
        """Record a decision cache lookup."""
        if not self.enabled:
            return

        status = "hit" if hit else "miss"
        self._bump(f"cache_{status}")
        self.cache_operations.labels(status=status).inc()

    @contextmanager
    def timer(self) -> Iterator[Dict[str, float]]:
        """Context manager yielding a dict whose ``duration`` is set on exit."""
        timing = {'duration': 0.0}
        start_time = time.perf_counter()
        try:
            yield timing
        finally:
            timing['duration'] = time.perf_counter() - start_time

    def export(self) -> str:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get a summary of the counts recorded so far."""
        with self._lock:
            counts = dict(self._counts)
        return {
            'enabled': self.enabled,
            'counts': counts
        }


def create_decision_metrics(enabled: bool = True, namespace: str = "policyauth") -> DecisionMetrics:
    """Create a decision metrics collector with its own registry."""
    return DecisionMetrics(enabled=enabled, namespace=namespace)

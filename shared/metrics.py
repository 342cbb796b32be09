"""
Shared metrics configuration for the rules engine.
"""

from typing import Dict, Any, Optional

from prometheus_client import REGISTRY, Counter, Histogram, CollectorRegistry


class EngineMetrics:
    """Centralized metrics collector for rule evaluations.

    Metrics are registered against ``registry`` when one is given. With no
    registry the metrics are still usable but are not exported anywhere;
    ``get_engine_metrics`` hands out the collector exported by default.
    """

    def __init__(self, namespace: str = "rules_engine", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up evaluation metrics."""
        self._metrics["rule_evaluations_total"] = Counter(
            "rule_evaluations_total",
            "Total rule evaluations",
            ["result"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["rule_evaluation_errors_total"] = Counter(
            "rule_evaluation_errors_total",
            "Total rule evaluations that failed",
            ["error_code"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["rule_evaluation_duration_seconds"] = Histogram(
            "rule_evaluation_duration_seconds",
            "Rule evaluation duration in seconds",
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["fact_resolutions_total"] = Counter(
            "fact_resolutions_total",
            "Total fact resolver invocations",
            ["fact"],
            namespace=self.namespace,
            registry=self.registry
        )

    def record_evaluation(self, result: bool, duration: float):
        """Record a completed evaluation."""
        self._metrics["rule_evaluations_total"].labels(result=str(result).lower()).inc()
        self._metrics["rule_evaluation_duration_seconds"].observe(duration)

    def record_error(self, error_code: str):
        """Record a failed evaluation."""
        self._metrics["rule_evaluation_errors_total"].labels(error_code=error_code).inc()

    def record_fact_resolution(self, fact: str):
        """Record a fact resolver invocation."""
        self._metrics["fact_resolutions_total"].labels(fact=fact).inc()


_default_metrics: Optional[EngineMetrics] = None


def get_engine_metrics(registry: Optional[CollectorRegistry] = None) -> EngineMetrics:
    """Get a metrics collector for an engine.

    With no registry, every engine shares one collector exported through the
    default prometheus ``REGISTRY``. An explicit registry gets its own collector.
    """
    global _default_metrics
    if registry is not None:
        return EngineMetrics(registry=registry)
    if _default_metrics is None:
        _default_metrics = EngineMetrics(registry=REGISTRY)
    return _default_metrics

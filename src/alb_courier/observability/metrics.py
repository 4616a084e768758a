"""
Prometheus metrics for traffic shifts.

Gives operators a view of rule writes, step progress, metric check outcomes
and the live weight of every target group touched by a shift.
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge

logger = logging.getLogger(__name__)

METRIC_PREFIX = "courier"


class ShiftMetrics:
    """Counters and gauges describing traffic shifts."""

    def __init__(self, registry: CollectorRegistry | None = None):
        # A private registry keeps independent instances from clashing on
        # metric names; pass prometheus_client.REGISTRY to expose globally.
        self.registry = registry if registry is not None else CollectorRegistry()

        self.rule_writes = Counter(
            f"{METRIC_PREFIX}_rule_writes_total",
            "Listener rule writes issued to the load balancer",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self.shift_steps = Counter(
            f"{METRIC_PREFIX}_shift_steps_total",
            "Weight advancement steps applied",
            ["rule"],
            registry=self.registry,
        )
        self.metric_checks = Counter(
            f"{METRIC_PREFIX}_metric_checks_total",
            "Metric evaluations by provider and outcome",
            ["provider", "outcome"],
            registry=self.registry,
        )
        self.shift_outcomes = Counter(
            f"{METRIC_PREFIX}_shift_outcomes_total",
            "Finished traffic shifts by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.target_group_weight = Gauge(
            f"{METRIC_PREFIX}_target_group_weight",
            "Last weight written for a target group",
            ["target_group"],
            registry=self.registry,
        )

    def record_rule_write(self, operation: str, success: bool) -> None:
        self.rule_writes.labels(operation=operation, outcome="success" if success else "error").inc()

    def record_step(self, rule_arn: str) -> None:
        self.shift_steps.labels(rule=rule_arn).inc()

    def record_metric_check(self, provider: str, outcome: str) -> None:
        self.metric_checks.labels(provider=provider, outcome=outcome).inc()

    def record_outcome(self, outcome: str) -> None:
        self.shift_outcomes.labels(outcome=outcome).inc()

    def set_weights(self, weights: dict[str, int]) -> None:
        for target_group, weight in weights.items():
            self.target_group_weight.labels(target_group=target_group).set(weight)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Current value of a sample, mainly for diagnostics."""
        return self.registry.get_sample_value(name, labels or {})

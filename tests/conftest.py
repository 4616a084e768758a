"""
Global pytest configuration and fixtures for ALB Courier testing.

Provides shared fixtures so test modules stay focused on behavior. The
fakes themselves live in ``fakes.py``.
"""

import copy
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest

from alb_courier.canary.models import CanaryOpts, ListenerStatus
from alb_courier.metrics.models import Comparator, Metric, MetricProviderType
from alb_courier.metrics.registry import MetricProviderRegistry
from alb_courier.observability.metrics import ShiftMetrics

from fakes import (
    BLUE_TG,
    GREEN_TG,
    FakeLoadBalancerClient,
    ScriptedProvider,
    make_listener,
    make_rule,
    make_target_group,
)


@pytest.fixture
def error_rate_metric() -> Metric:
    return Metric(
        name="error-rate",
        provider=MetricProviderType.DATADOG,
        query="sum:trace.http.request.errors{service:shop}.as_rate()",
        comparator=Comparator.LESS_THAN,
        threshold=0.05,
    )


@pytest.fixture
def latency_metric() -> Metric:
    return Metric(
        name="p99-latency",
        provider=MetricProviderType.CLOUDWATCH,
        namespace="AWS/ApplicationELB",
        metric_name="TargetResponseTime",
        dimensions={"TargetGroup": "targetgroup/green/943f017f100becff"},
        statistic="p99",
        max=1.5,
    )


@pytest.fixture
def fake_client() -> FakeLoadBalancerClient:
    return FakeLoadBalancerClient(rules=[make_rule({BLUE_TG: 90, GREEN_TG: 10})])


@pytest.fixture
def shift_metrics() -> ShiftMetrics:
    return ShiftMetrics()


@pytest.fixture
def fast_opts() -> CanaryOpts:
    """Options that never sleep."""
    return CanaryOpts(
        advancement_interval=timedelta(0),
        advancement_step=50,
        inconclusive_retry_interval=timedelta(0),
        metric_retry_delay=0.0,
    )


@pytest.fixture
def make_status(fake_client, error_rate_metric) -> Callable[..., ListenerStatus]:
    """Build a ListenerStatus from the fake client's first rule."""

    def _make(metrics: list[Metric] | None = None, **overrides: Any) -> ListenerStatus:
        values = {
            "listener": make_listener(),
            "rule": copy.deepcopy(fake_client.rules[0]),
            "current_tg": make_target_group(BLUE_TG),
            "desired_tg": make_target_group(GREEN_TG),
            "metrics": [error_rate_metric] if metrics is None else metrics,
        }
        values.update(overrides)
        return ListenerStatus(**values)

    return _make


@pytest.fixture
def datadog_provider() -> ScriptedProvider:
    return ScriptedProvider(MetricProviderType.DATADOG, {"error-rate": [[0.01]]})


@pytest.fixture
def registry(datadog_provider) -> MetricProviderRegistry:
    return MetricProviderRegistry([datadog_provider])

"""
Metric provider abstraction

Uniform pass/fail/indeterminate evaluation over Datadog and CloudWatch.
"""

from .base import MetricProvider, evaluate_datapoints
from .cloudwatch import CloudWatchProvider
from .datadog import DatadogProvider
from .models import (
    Aggregation,
    Comparator,
    Metric,
    MetricOutcome,
    MetricProviderType,
    MetricResult,
    TimeWindow,
)
from .registry import MetricProviderRegistry

__all__ = [
    "Aggregation",
    "CloudWatchProvider",
    "Comparator",
    "DatadogProvider",
    "Metric",
    "MetricOutcome",
    "MetricProvider",
    "MetricProviderRegistry",
    "MetricProviderType",
    "MetricResult",
    "TimeWindow",
    "evaluate_datapoints",
]

"""
Metric declarations and evaluation results.

A Metric is built once from configuration, tagged with its provider, and
evaluated once per canary step. Comparator and aggregation semantics are
identical for every provider.
"""

import builtins
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..errors import ConfigurationError


class MetricProviderType(Enum):
    """Supported metric backends."""

    DATADOG = "datadog"
    CLOUDWATCH = "cloudwatch"


class Comparator(Enum):
    """Direction of a threshold check. A value passes when the relation holds."""

    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN_OR_EQUAL = "<="

    def holds(self, value: float, threshold: float) -> bool:
        if self is Comparator.GREATER_THAN:
            return value > threshold
        if self is Comparator.LESS_THAN:
            return value < threshold
        if self is Comparator.GREATER_THAN_OR_EQUAL:
            return value >= threshold
        return value <= threshold


class Aggregation(Enum):
    """How the datapoints of a window are reduced to one value."""

    AVERAGE = "average"
    SUM = "sum"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    LAST = "last"

    def apply(self, values: builtins.list[float]) -> float:
        if not values:
            raise ValueError("cannot aggregate an empty series")
        if self is Aggregation.AVERAGE:
            return sum(values) / len(values)
        if self is Aggregation.SUM:
            return sum(values)
        if self is Aggregation.MINIMUM:
            return min(values)
        if self is Aggregation.MAXIMUM:
            return max(values)
        return values[-1]


class MetricOutcome(Enum):
    PASS = "pass"
    FAIL = "fail"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open evaluation window [start, end)."""

    start: datetime
    end: datetime

    @classmethod
    def ending_now(cls, length: timedelta) -> "TimeWindow":
        end = datetime.now(timezone.utc)
        return cls(start=end - length, end=end)

    @property
    def seconds(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass(frozen=True)
class Metric:
    """One health check evaluated during every canary step.

    Either ``comparator`` + ``threshold`` or a ``min``/``max`` band must be
    given. Datadog metrics use ``query``. CloudWatch metrics use
    ``namespace``/``metric_name``/``dimensions``/``statistic``, or ``query``
    as a metric math expression.
    """

    name: str
    provider: MetricProviderType

    query: str = ""

    # CloudWatch metric selection
    namespace: str = ""
    metric_name: str = ""
    dimensions: builtins.dict[str, str] = field(default_factory=dict)
    statistic: str = "Average"
    period: int = 60

    aggregation: Aggregation = Aggregation.AVERAGE
    comparator: Comparator | None = None
    threshold: float | None = None
    min: float | None = None
    max: float | None = None

    # Look-back window; defaults to the advancement interval
    interval: timedelta | None = None
    address: str | None = None
    aws_region: str | None = None

    def validate(self) -> None:
        if not self.name:
            raise ConfigurationError("Metric name is required")

        has_threshold = self.comparator is not None or self.threshold is not None
        has_band = self.min is not None or self.max is not None
        if has_threshold and (self.comparator is None or self.threshold is None):
            raise ConfigurationError(
                f"Metric {self.name!r} needs both comparator and threshold"
            )
        if not has_threshold and not has_band:
            raise ConfigurationError(
                f"Metric {self.name!r} needs a comparator/threshold or a min/max band"
            )
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ConfigurationError(f"Metric {self.name!r} has min greater than max")

        if self.provider is MetricProviderType.DATADOG and not self.query:
            raise ConfigurationError(f"Datadog metric {self.name!r} needs a query")
        if self.provider is MetricProviderType.CLOUDWATCH and not self.query:
            if not self.namespace or not self.metric_name:
                raise ConfigurationError(
                    f"CloudWatch metric {self.name!r} needs namespace and metric_name, "
                    "or a metric math query"
                )
        if self.period <= 0:
            raise ConfigurationError(f"Metric {self.name!r} period must be positive")
        if self.interval is not None and self.interval <= timedelta(0):
            raise ConfigurationError(f"Metric {self.name!r} interval must be positive")

    def passes(self, value: float) -> bool:
        if math.isnan(value):
            return False
        if self.comparator is not None and self.threshold is not None:
            if not self.comparator.holds(value, self.threshold):
                return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def describe_check(self) -> str:
        parts = []
        if self.comparator is not None:
            parts.append(f"{self.aggregation.value} {self.comparator.value} {self.threshold}")
        if self.min is not None:
            parts.append(f">= {self.min}")
        if self.max is not None:
            parts.append(f"<= {self.max}")
        return " and ".join(parts)


@dataclass
class MetricResult:
    """Outcome of evaluating one metric over one window."""

    metric: Metric
    outcome: MetricOutcome
    value: float | None = None
    datapoints: int = 0
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.outcome is MetricOutcome.PASS

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "metric": self.metric.name,
            "provider": self.metric.provider.value,
            "outcome": self.outcome.value,
            "value": self.value,
            "datapoints": self.datapoints,
            "message": self.message,
        }

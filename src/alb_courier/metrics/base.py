"""
Metric provider interface.

Providers only fetch datapoints. Aggregation and the threshold check are
done here, once, so every backend shares the same pass/fail semantics.
Providers never retry; the caller owns the retry policy.
"""

import builtins
import logging
from abc import ABC, abstractmethod

from .models import Metric, MetricOutcome, MetricProviderType, MetricResult, TimeWindow

logger = logging.getLogger(__name__)


def evaluate_datapoints(metric: Metric, values: builtins.list[float]) -> MetricResult:
    """Classify a series as pass, fail or indeterminate (no data)."""
    if not values:
        return MetricResult(
            metric=metric,
            outcome=MetricOutcome.INDETERMINATE,
            message="no datapoints in window",
        )

    value = metric.aggregation.apply(values)
    passed = metric.passes(value)

    return MetricResult(
        metric=metric,
        outcome=MetricOutcome.PASS if passed else MetricOutcome.FAIL,
        value=value,
        datapoints=len(values),
        message=f"{value:g} {'satisfies' if passed else 'violates'} {metric.describe_check()}",
    )


class MetricProvider(ABC):
    """A metric backend able to return the datapoints of a query over a window."""

    provider_type: MetricProviderType

    @abstractmethod
    async def fetch_datapoints(self, metric: Metric, window: TimeWindow) -> builtins.list[float]:
        """Return the datapoints in ``window`` ordered oldest first.

        An empty list means "no data". Backend failures raise
        MetricProviderError.
        """

    async def evaluate(self, metric: Metric, window: TimeWindow) -> MetricResult:
        values = await self.fetch_datapoints(metric, window)
        result = evaluate_datapoints(metric, values)
        logger.debug(
            f"Metric {metric.name} ({self.provider_type.value}) -> {result.outcome.value}",
            extra={"metric": metric.name, "value": result.value, "datapoints": result.datapoints},
        )
        return result

    async def close(self) -> None:
        """Release any underlying connections."""

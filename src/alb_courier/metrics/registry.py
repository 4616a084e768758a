"""Dispatch from a metric's provider tag to the provider instance."""

import builtins
from collections.abc import Iterable

from ..errors import ConfigurationError
from .base import MetricProvider
from .models import Metric, MetricProviderType


class MetricProviderRegistry:
    """Holds one provider per MetricProviderType."""

    def __init__(self, providers: Iterable[MetricProvider] = ()):
        self._providers: builtins.dict[MetricProviderType, MetricProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: MetricProvider) -> None:
        self._providers[provider.provider_type] = provider

    def get(self, provider_type: MetricProviderType) -> MetricProvider:
        try:
            return self._providers[provider_type]
        except KeyError:
            raise ConfigurationError(
                f"No metric provider configured for {provider_type.value!r}"
            ) from None

    def provider_for(self, metric: Metric) -> MetricProvider:
        return self.get(metric.provider)

    def check_metrics(self, metrics: Iterable[Metric]) -> None:
        """Fail fast when a metric is malformed or has no provider."""
        for metric in metrics:
            metric.validate()
            self.provider_for(metric)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

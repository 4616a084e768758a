"""
Datadog metric provider.

Runs a timeseries query against the Datadog v1 query API and returns the
non-null points of every series in the response, oldest first.
"""

import asyncio
import builtins
import logging
from typing import Any

import aiohttp

from ..errors import MetricProviderError
from .base import MetricProvider
from .models import Metric, MetricProviderType, TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_DATADOG_SITE = "datadoghq.com"
QUERY_PATH = "/api/v1/query"


class DatadogProvider(MetricProvider):
    """Metric provider backed by the Datadog metrics query API."""

    provider_type = MetricProviderType.DATADOG

    def __init__(
        self,
        api_key: str,
        application_key: str,
        site: str = DEFAULT_DATADOG_SITE,
        timeout_seconds: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        if not api_key or not application_key:
            raise ValueError("Datadog api_key and application_key are required")

        self.base_url = f"https://api.{site}"
        self.timeout_seconds = timeout_seconds
        self._headers = {
            "Accept": "application/json",
            "DD-API-KEY": api_key,
            "DD-APPLICATION-KEY": application_key,
        }
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    def _query_url(self, metric: Metric) -> str:
        base = (metric.address or self.base_url).rstrip("/")
        return f"{base}{QUERY_PATH}"

    async def fetch_datapoints(self, metric: Metric, window: TimeWindow) -> builtins.list[float]:
        params = {
            "query": metric.query,
            "from": str(int(window.start.timestamp())),
            "to": str(int(window.end.timestamp())),
        }
        url = self._query_url(metric)

        try:
            async with self._get_session().get(url, params=params, headers=self._headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise MetricProviderError(
                        f"Datadog query returned HTTP {response.status}: {body[:200]}",
                        provider=self.provider_type.value,
                        metric_name=metric.name,
                    )
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MetricProviderError(
                f"Datadog query failed: {e}",
                provider=self.provider_type.value,
                metric_name=metric.name,
            ) from e
        except ValueError as e:
            raise MetricProviderError(
                f"Datadog returned an unparseable body for {metric.name}: {e}",
                provider=self.provider_type.value,
                metric_name=metric.name,
            ) from e

        if not isinstance(payload, dict):
            raise MetricProviderError(
                f"Datadog returned a {type(payload).__name__} for {metric.name}, expected an object",
                provider=self.provider_type.value,
                metric_name=metric.name,
            )

        return self._parse_series(metric, payload)

    def _parse_series(self, metric: Metric, payload: builtins.dict[str, Any]) -> builtins.list[float]:
        if payload.get("status") == "error" or payload.get("error"):
            raise MetricProviderError(
                f"Datadog rejected query {metric.query!r}: {payload.get('error')}",
                provider=self.provider_type.value,
                metric_name=metric.name,
            )

        points: builtins.list[tuple[float, float]] = []
        try:
            for series in payload.get("series") or []:
                for timestamp, value in series.get("pointlist") or []:
                    if value is not None:
                        points.append((float(timestamp), float(value)))
        except (TypeError, ValueError) as e:
            raise MetricProviderError(
                f"Malformed Datadog response for {metric.name}: {e}",
                provider=self.provider_type.value,
                metric_name=metric.name,
            ) from e

        points.sort(key=lambda p: p[0])
        return [value for _, value in points]

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

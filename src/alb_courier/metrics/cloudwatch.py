"""
CloudWatch metric provider.

Uses GetMetricData, either with a MetricStat built from the namespace,
metric name and dimensions, or with a metric math expression.
"""

import asyncio
import builtins
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import MetricProviderError
from .base import MetricProvider
from .models import Metric, MetricProviderType, TimeWindow

logger = logging.getLogger(__name__)

QUERY_ID = "m0"


class CloudWatchProvider(MetricProvider):
    """Metric provider backed by the CloudWatch GetMetricData API."""

    provider_type = MetricProviderType.CLOUDWATCH

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any | None = None,
    ):
        self.region = region
        self.endpoint_url = endpoint_url
        self._clients: builtins.dict[tuple[str | None, str | None], Any] = {}
        if client is not None:
            self._clients[(region, endpoint_url)] = client

    def _client_for(self, metric: Metric) -> Any:
        key = (metric.aws_region or self.region, metric.address or self.endpoint_url)
        if key not in self._clients:
            region, endpoint_url = key
            client_kwargs: builtins.dict[str, Any] = {}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            self._clients[key] = boto3.client("cloudwatch", **client_kwargs)
        return self._clients[key]

    @staticmethod
    def build_query(metric: Metric) -> builtins.dict[str, Any]:
        if metric.query:
            return {
                "Id": QUERY_ID,
                "Expression": metric.query,
                "Period": metric.period,
                "ReturnData": True,
            }
        return {
            "Id": QUERY_ID,
            "MetricStat": {
                "Metric": {
                    "Namespace": metric.namespace,
                    "MetricName": metric.metric_name,
                    "Dimensions": [
                        {"Name": name, "Value": value} for name, value in metric.dimensions.items()
                    ],
                },
                "Period": metric.period,
                "Stat": metric.statistic,
            },
            "ReturnData": True,
        }

    async def fetch_datapoints(self, metric: Metric, window: TimeWindow) -> builtins.list[float]:
        client = self._client_for(metric)
        values: builtins.list[float] = []
        next_token: str | None = None

        while True:
            kwargs: builtins.dict[str, Any] = {
                "MetricDataQueries": [self.build_query(metric)],
                "StartTime": window.start,
                "EndTime": window.end,
                "ScanBy": "TimestampAscending",
            }
            if next_token:
                kwargs["NextToken"] = next_token

            try:
                response = await asyncio.to_thread(client.get_metric_data, **kwargs)
            except (ClientError, BotoCoreError) as e:
                raise MetricProviderError(
                    f"CloudWatch GetMetricData failed: {e}",
                    provider=self.provider_type.value,
                    metric_name=metric.name,
                ) from e

            for result in response.get("MetricDataResults", []):
                if result.get("Id") != QUERY_ID:
                    continue
                if result.get("StatusCode") == "InternalError":
                    raise MetricProviderError(
                        f"CloudWatch could not compute {metric.name}: {result.get('Messages')}",
                        provider=self.provider_type.value,
                        metric_name=metric.name,
                    )
                values.extend(float(v) for v in result.get("Values", []))

            next_token = response.get("NextToken")
            if not next_token:
                return values

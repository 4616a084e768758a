"""
Tests for metric declarations, evaluation and the Datadog/CloudWatch providers.
"""

import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from botocore.exceptions import ClientError

from alb_courier.errors import ConfigurationError, MetricProviderError
from alb_courier.metrics.base import evaluate_datapoints
from alb_courier.metrics.cloudwatch import CloudWatchProvider
from alb_courier.metrics.datadog import DatadogProvider
from alb_courier.metrics.models import (
    Aggregation,
    Comparator,
    Metric,
    MetricOutcome,
    MetricProviderType,
    TimeWindow,
)
from alb_courier.metrics.registry import MetricProviderRegistry

WINDOW = TimeWindow(
    start=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    end=datetime(2024, 5, 1, 12, 5, tzinfo=timezone.utc),
)


def mock_session(status: int = 200, payload: Any = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value={} if payload is None else payload)
    response.text = AsyncMock(return_value=text)

    session = MagicMock()
    session.get.return_value.__aenter__ = AsyncMock(return_value=response)
    session.get.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.mark.unit
class TestMetricModel:
    """Threshold semantics shared by every provider."""

    @pytest.mark.parametrize(
        "comparator,value,expected",
        [
            (Comparator.LESS_THAN, 0.04, True),
            (Comparator.LESS_THAN, 0.05, False),
            (Comparator.LESS_THAN_OR_EQUAL, 0.05, True),
            (Comparator.GREATER_THAN, 0.05, False),
            (Comparator.GREATER_THAN_OR_EQUAL, 0.05, True),
        ],
    )
    def test_comparators(self, comparator, value, expected):
        metric = Metric("m", MetricProviderType.DATADOG, query="q", comparator=comparator, threshold=0.05)

        assert metric.passes(value) is expected

    def test_band(self):
        metric = Metric("m", MetricProviderType.DATADOG, query="q", min=1.0, max=2.0)

        assert metric.passes(1.5)
        assert not metric.passes(0.5)
        assert not metric.passes(2.5)

    def test_nan_never_passes(self):
        metric = Metric("m", MetricProviderType.DATADOG, query="q", max=10.0)

        assert not metric.passes(math.nan)

    @pytest.mark.parametrize(
        "aggregation,expected",
        [
            (Aggregation.AVERAGE, 2.0),
            (Aggregation.SUM, 6.0),
            (Aggregation.MINIMUM, 1.0),
            (Aggregation.MAXIMUM, 3.0),
            (Aggregation.LAST, 2.0),
        ],
    )
    def test_aggregations(self, aggregation, expected):
        assert aggregation.apply([1.0, 3.0, 2.0]) == expected

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"provider": MetricProviderType.DATADOG, "comparator": Comparator.LESS_THAN, "threshold": 1},
            {"provider": MetricProviderType.DATADOG, "query": "q"},
            {"provider": MetricProviderType.DATADOG, "query": "q", "comparator": Comparator.LESS_THAN},
            {"provider": MetricProviderType.DATADOG, "query": "q", "min": 2.0, "max": 1.0},
            {"provider": MetricProviderType.CLOUDWATCH, "namespace": "AWS/ApplicationELB", "max": 1},
        ],
    )
    def test_invalid_metrics(self, kwargs):
        with pytest.raises(ConfigurationError):
            Metric("m", **kwargs).validate()

    def test_empty_series_is_indeterminate(self, error_rate_metric):
        result = evaluate_datapoints(error_rate_metric, [])

        assert result.outcome is MetricOutcome.INDETERMINATE
        assert result.value is None

    def test_evaluate_fail(self, error_rate_metric):
        result = evaluate_datapoints(error_rate_metric, [0.1, 0.2])

        assert result.outcome is MetricOutcome.FAIL
        assert result.value == pytest.approx(0.15)
        assert result.datapoints == 2

    def test_window_length(self):
        window = TimeWindow.ending_now(timedelta(minutes=5))

        assert window.seconds == pytest.approx(300)


@pytest.mark.unit
class TestDatadogProvider:
    """Datadog v1 query API through a mocked aiohttp session."""

    def test_requires_keys(self):
        with pytest.raises(ValueError):
            DatadogProvider("", "app")

    @pytest.mark.asyncio
    async def test_query_parameters_and_headers(self, error_rate_metric):
        session = mock_session(payload={"status": "ok", "series": []})
        provider = DatadogProvider("api", "app", site="datadoghq.eu", session=session)

        await provider.fetch_datapoints(error_rate_metric, WINDOW)

        args, kwargs = session.get.call_args
        assert args[0] == "https://api.datadoghq.eu/api/v1/query"
        assert kwargs["params"] == {
            "query": error_rate_metric.query,
            "from": str(int(WINDOW.start.timestamp())),
            "to": str(int(WINDOW.end.timestamp())),
        }
        assert kwargs["headers"]["DD-API-KEY"] == "api"
        assert kwargs["headers"]["DD-APPLICATION-KEY"] == "app"

    @pytest.mark.asyncio
    async def test_address_override(self, error_rate_metric):
        session = mock_session(payload={"series": []})
        metric = Metric(
            "m", MetricProviderType.DATADOG, query="q", max=1.0, address="http://localhost:8126/"
        )

        await DatadogProvider("api", "app", session=session).fetch_datapoints(metric, WINDOW)

        assert session.get.call_args.args[0] == "http://localhost:8126/api/v1/query"

    @pytest.mark.asyncio
    async def test_points_sorted_and_nulls_dropped(self, error_rate_metric):
        payload = {
            "status": "ok",
            "series": [
                {"pointlist": [[1714564920000, 0.03], [1714564860000, None]]},
                {"pointlist": [[1714564800000, 0.01]]},
            ],
        }
        provider = DatadogProvider("api", "app", session=mock_session(payload=payload))

        values = await provider.fetch_datapoints(error_rate_metric, WINDOW)

        assert values == [0.01, 0.03]

    @pytest.mark.asyncio
    async def test_evaluate_passes(self, error_rate_metric):
        payload = {"series": [{"pointlist": [[1, 0.01], [2, 0.02]]}]}
        provider = DatadogProvider("api", "app", session=mock_session(payload=payload))

        result = await provider.evaluate(error_rate_metric, WINDOW)

        assert result.outcome is MetricOutcome.PASS

    @pytest.mark.asyncio
    async def test_http_error(self, error_rate_metric):
        provider = DatadogProvider("api", "app", session=mock_session(status=403, text="Forbidden"))

        with pytest.raises(MetricProviderError) as exc_info:
            await provider.fetch_datapoints(error_rate_metric, WINDOW)

        assert exc_info.value.provider == "datadog"
        assert exc_info.value.metric_name == "error-rate"

    @pytest.mark.asyncio
    async def test_query_error_status(self, error_rate_metric):
        provider = DatadogProvider(
            "api", "app", session=mock_session(payload={"status": "error", "error": "bad query"})
        )

        with pytest.raises(MetricProviderError):
            await provider.fetch_datapoints(error_rate_metric, WINDOW)

    @pytest.mark.asyncio
    async def test_unparseable_body(self, error_rate_metric):
        session = mock_session()
        response = session.get.return_value.__aenter__.return_value
        response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)

        with pytest.raises(MetricProviderError) as exc_info:
            await DatadogProvider("api", "app", session=session).fetch_datapoints(
                error_rate_metric, WINDOW
            )

        assert exc_info.value.metric_name == "error-rate"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_body_not_an_object(self, error_rate_metric):
        provider = DatadogProvider("api", "app", session=mock_session(payload=["not", "an", "object"]))

        with pytest.raises(MetricProviderError, match="expected an object"):
            await provider.fetch_datapoints(error_rate_metric, WINDOW)

    @pytest.mark.asyncio
    async def test_connection_error(self, error_rate_metric):
        session = MagicMock()
        session.get.side_effect = aiohttp.ClientConnectionError("connection refused")

        with pytest.raises(MetricProviderError):
            await DatadogProvider("api", "app", session=session).fetch_datapoints(
                error_rate_metric, WINDOW
            )

    @pytest.mark.asyncio
    async def test_close_leaves_borrowed_session(self):
        session = mock_session()
        session.close = AsyncMock()

        await DatadogProvider("api", "app", session=session).close()

        session.close.assert_not_called()


@pytest.mark.unit
class TestCloudWatchProvider:
    """GetMetricData through a mocked boto3 client."""

    def test_metric_stat_query(self, latency_metric):
        query = CloudWatchProvider.build_query(latency_metric)

        assert query == {
            "Id": "m0",
            "MetricStat": {
                "Metric": {
                    "Namespace": "AWS/ApplicationELB",
                    "MetricName": "TargetResponseTime",
                    "Dimensions": [
                        {"Name": "TargetGroup", "Value": "targetgroup/green/943f017f100becff"}
                    ],
                },
                "Period": 60,
                "Stat": "p99",
            },
            "ReturnData": True,
        }

    def test_expression_query(self):
        metric = Metric("ratio", MetricProviderType.CLOUDWATCH, query="m1/m2", period=300, max=0.1)

        query = CloudWatchProvider.build_query(metric)

        assert query == {"Id": "m0", "Expression": "m1/m2", "Period": 300, "ReturnData": True}

    @pytest.mark.asyncio
    async def test_pages_are_joined(self, latency_metric):
        client = MagicMock()
        client.get_metric_data.side_effect = [
            {"MetricDataResults": [{"Id": "m0", "Values": [0.4, 0.5]}], "NextToken": "t"},
            {"MetricDataResults": [{"Id": "m0", "Values": [0.6]}]},
        ]
        provider = CloudWatchProvider(region="us-east-1", client=client)

        values = await provider.fetch_datapoints(latency_metric, WINDOW)

        assert values == [0.4, 0.5, 0.6]
        first = client.get_metric_data.call_args_list[0].kwargs
        assert first["StartTime"] == WINDOW.start
        assert first["EndTime"] == WINDOW.end
        assert first["ScanBy"] == "TimestampAscending"
        assert client.get_metric_data.call_args_list[1].kwargs["NextToken"] == "t"

    @pytest.mark.asyncio
    async def test_no_values_is_indeterminate(self, latency_metric):
        client = MagicMock()
        client.get_metric_data.return_value = {"MetricDataResults": [{"Id": "m0", "Values": []}]}

        result = await CloudWatchProvider(region="us-east-1", client=client).evaluate(
            latency_metric, WINDOW
        )

        assert result.outcome is MetricOutcome.INDETERMINATE

    @pytest.mark.asyncio
    async def test_client_error(self, latency_metric):
        client = MagicMock()
        client.get_metric_data.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetMetricData"
        )

        with pytest.raises(MetricProviderError) as exc_info:
            await CloudWatchProvider(region="us-east-1", client=client).fetch_datapoints(
                latency_metric, WINDOW
            )

        assert exc_info.value.provider == "cloudwatch"

    @pytest.mark.asyncio
    async def test_internal_error_status(self, latency_metric):
        client = MagicMock()
        client.get_metric_data.return_value = {
            "MetricDataResults": [{"Id": "m0", "StatusCode": "InternalError", "Values": []}]
        }

        with pytest.raises(MetricProviderError):
            await CloudWatchProvider(region="us-east-1", client=client).fetch_datapoints(
                latency_metric, WINDOW
            )


@pytest.mark.unit
class TestMetricProviderRegistry:
    def test_missing_provider(self, latency_metric):
        with pytest.raises(ConfigurationError):
            MetricProviderRegistry().provider_for(latency_metric)

    @pytest.mark.asyncio
    async def test_close_closes_every_provider(self, datadog_provider):
        registry = MetricProviderRegistry([datadog_provider])

        await registry.close()

        assert datadog_provider.closed

"""
Typed configuration for ALB Courier.

Settings are read from a YAML file and the environment (prefix
``COURIER_``, nested fields joined with ``__``), validated once, and turned
into plain domain objects before anything reaches the engine.
"""

import builtins
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..canary.models import CanaryOpts
from ..errors import ConfigurationError
from ..metrics.models import Aggregation, Comparator, Metric, MetricProviderType
from ..routing.models import Destination, ListenerRule

logger = logging.getLogger(__name__)

HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "CONNECT", "TRACE"}


class MetricSettings(BaseModel):
    """One metric block from the configuration file."""

    name: str = Field(..., description="Name used in logs and errors")
    query: str = Field(default="", description="Datadog query or CloudWatch math expression")

    namespace: str = Field(default="", description="CloudWatch namespace")
    metric_name: str = Field(default="", description="CloudWatch metric name")
    dimensions: builtins.dict[str, str] = Field(default_factory=dict)
    statistic: str = Field(default="Average", description="CloudWatch statistic")
    period: int = Field(default=60, gt=0, description="CloudWatch period in seconds")

    aggregation: Aggregation = Field(default=Aggregation.AVERAGE)
    comparator: Comparator | None = Field(default=None)
    threshold: float | None = Field(default=None)
    min: float | None = Field(default=None)
    max: float | None = Field(default=None)

    interval: float | None = Field(default=None, gt=0, description="Look-back window in seconds")
    address: str | None = Field(default=None, description="Provider endpoint override")
    aws_region: str | None = Field(default=None)

    def to_metric(self, provider: MetricProviderType) -> Metric:
        metric = Metric(
            name=self.name,
            provider=provider,
            query=self.query,
            namespace=self.namespace,
            metric_name=self.metric_name,
            dimensions=dict(self.dimensions),
            statistic=self.statistic,
            period=self.period,
            aggregation=self.aggregation,
            comparator=self.comparator,
            threshold=self.threshold,
            min=self.min,
            max=self.max,
            interval=timedelta(seconds=self.interval) if self.interval else None,
            address=self.address,
            aws_region=self.aws_region,
        )
        metric.validate()
        return metric


class DestinationSettings(BaseModel):
    target_group_arn: str = Field(..., min_length=1)
    weight: int = Field(..., ge=0, le=999)
    desired: bool = Field(default=False, description="Marks the group being promoted")


class DatadogSettings(BaseModel):
    api_key: SecretStr | None = Field(default=None)
    application_key: SecretStr | None = Field(default=None)
    site: str = Field(default="datadoghq.com")
    timeout_seconds: float = Field(default=10.0, gt=0)

    def credentials(self) -> tuple[str, str]:
        """API and application key, falling back to DATADOG_API_KEY/DATADOG_APP_KEY."""
        api_key = self.api_key.get_secret_value() if self.api_key else os.getenv("DATADOG_API_KEY", "")
        app_key = (
            self.application_key.get_secret_value()
            if self.application_key
            else os.getenv("DATADOG_APP_KEY", "")
        )
        if not api_key or not app_key:
            raise ConfigurationError(
                "Datadog metrics need an API key and an application key "
                "(datadog.api_key/application_key or DATADOG_API_KEY/DATADOG_APP_KEY)"
            )
        return api_key, app_key


class CanarySettings(BaseModel):
    advancement_interval: float = Field(default=60.0, ge=0, description="Seconds between steps")
    advancement_step: int = Field(default=10, description="Percentage points per step")
    max_inconclusive_checks: int = Field(default=3, ge=0)
    inconclusive_retry_interval: float = Field(default=10.0, ge=0)
    metric_retry_attempts: int = Field(default=3, ge=1)
    metric_retry_delay: float = Field(default=1.0, ge=0)
    rollback_on_evaluation_error: bool = Field(default=False)
    remove_drained_destination: bool = Field(default=False)
    cluster_name: str = Field(default="")

    def to_opts(self, region: str | None) -> CanaryOpts:
        opts = CanaryOpts(
            advancement_interval=timedelta(seconds=self.advancement_interval),
            advancement_step=self.advancement_step,
            region=region or "",
            cluster_name=self.cluster_name,
            max_inconclusive_checks=self.max_inconclusive_checks,
            inconclusive_retry_interval=timedelta(seconds=self.inconclusive_retry_interval),
            metric_retry_attempts=self.metric_retry_attempts,
            metric_retry_delay=self.metric_retry_delay,
            rollback_on_evaluation_error=self.rollback_on_evaluation_error,
            remove_drained_destination=self.remove_drained_destination,
        )
        opts.validate()
        return opts


class CourierSettings(BaseSettings):
    """Everything needed to create or shift one listener rule."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid",
    )

    region: str | None = Field(default=None, description="AWS region")
    address: str | None = Field(default=None, description="AWS endpoint override")

    listener_arn: str = Field(..., min_length=1)
    priority: int = Field(..., gt=0, description="Rule priority, unique per listener")

    hosts: builtins.list[str] = Field(default_factory=list)
    path_patterns: builtins.list[str] = Field(default_factory=list)
    methods: builtins.list[str] = Field(default_factory=list)
    source_ips: builtins.list[str] = Field(default_factory=list)
    headers: builtins.dict[str, builtins.list[str]] = Field(default_factory=dict)
    query_strings: builtins.dict[str, str] = Field(default_factory=dict)

    destinations: builtins.list[DestinationSettings] = Field(default_factory=list)

    datadog_metrics: builtins.list[MetricSettings] = Field(default_factory=list)
    cloudwatch_metrics: builtins.list[MetricSettings] = Field(default_factory=list)

    datadog: DatadogSettings = Field(default_factory=DatadogSettings)
    canary: CanarySettings = Field(default_factory=CanarySettings)

    @field_validator("methods")
    @classmethod
    def _known_methods(cls, methods: builtins.list[str]) -> builtins.list[str]:
        unknown = [m for m in methods if m.upper() not in HTTP_METHODS]
        if unknown:
            raise ValueError(f"unknown HTTP methods: {', '.join(unknown)}")
        return methods

    def listener_rule(self) -> ListenerRule:
        rule = ListenerRule(
            listener_arn=self.listener_arn,
            priority=self.priority,
            hosts=list(self.hosts),
            path_patterns=list(self.path_patterns),
            methods=list(self.methods),
            source_ips=list(self.source_ips),
            headers={k: list(v) for k, v in self.headers.items()},
            query_strings=dict(self.query_strings),
            destinations=[
                Destination(d.target_group_arn, d.weight, desired=d.desired)
                for d in self.destinations
            ],
        )
        rule.validate()
        return rule

    def metrics(self) -> builtins.list[Metric]:
        """Metrics from both blocks, each tagged with its provider."""
        metrics = [m.to_metric(MetricProviderType.DATADOG) for m in self.datadog_metrics]
        metrics.extend(m.to_metric(MetricProviderType.CLOUDWATCH) for m in self.cloudwatch_metrics)
        return metrics

    def canary_opts(self) -> CanaryOpts:
        return self.canary.to_opts(self.region)


def load_settings(path: str | Path | None = None, **overrides: Any) -> CourierSettings:
    """Load settings from an optional YAML file plus the environment.

    Values from the file and ``overrides`` take precedence; environment
    variables fill in whatever they leave unset. Validation problems are
    raised as ConfigurationError.
    """
    data: builtins.dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file {config_path} does not exist")
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
        data.update(loaded)
        logger.debug(f"Loaded configuration from {config_path}")

    data.update(overrides)

    try:
        return CourierSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

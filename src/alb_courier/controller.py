"""
Create-or-shift entry point.

Looks up the rule at the configured priority. When there is none, the
compiled rule is created in one call. When there is one, a gradual traffic
shift moves it from the current to the desired target group.
"""

import asyncio
import builtins
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .canary.engine import TrafficShiftEngine
from .canary.models import CanaryOpts, ListenerStatus, ShiftResult, WeightSnapshot
from .config.settings import CourierSettings
from .errors import ConfigurationError, RuleWriteError
from .metrics.cloudwatch import CloudWatchProvider
from .metrics.datadog import DatadogProvider
from .metrics.models import Metric, MetricProviderType
from .metrics.registry import MetricProviderRegistry
from .observability.metrics import ShiftMetrics
from .routing.client import LoadBalancerClient
from .routing.compiler import compile_create_rule_request, forward_weights
from .routing.lookup import ListenerRuleLookup

logger = logging.getLogger(__name__)


class ApplyAction(Enum):
    CREATED = "created"
    SHIFTED = "shifted"
    PLANNED_CREATE = "planned-create"
    PLANNED_SHIFT = "planned-shift"


@dataclass
class ApplyResult:
    """What an apply did, or would do under dry-run."""

    action: ApplyAction
    rule: builtins.dict[str, Any] | None = None
    request: builtins.dict[str, Any] | None = None
    shift: ShiftResult | None = None
    plan: builtins.list[WeightSnapshot] = field(default_factory=list)

    def to_dict(self) -> builtins.dict[str, Any]:
        data: builtins.dict[str, Any] = {"action": self.action.value}
        if self.rule is not None:
            data["rule_arn"] = self.rule.get("RuleArn")
        if self.request is not None:
            data["request"] = self.request
        if self.shift is not None:
            data["shift"] = self.shift.to_dict()
        if self.plan:
            data["plan"] = [snapshot.weights() for snapshot in self.plan]
        return data


def build_provider_registry(
    settings: CourierSettings, metrics: builtins.list[Metric]
) -> MetricProviderRegistry:
    """Instantiate a provider for every backend the metrics refer to."""
    registry = MetricProviderRegistry()
    used = {metric.provider for metric in metrics}

    if MetricProviderType.DATADOG in used:
        api_key, application_key = settings.datadog.credentials()
        registry.register(
            DatadogProvider(
                api_key,
                application_key,
                site=settings.datadog.site,
                timeout_seconds=settings.datadog.timeout_seconds,
            )
        )
    if MetricProviderType.CLOUDWATCH in used:
        registry.register(CloudWatchProvider(region=settings.region, endpoint_url=settings.address))

    return registry


def plan_shift(origin: WeightSnapshot, opts: CanaryOpts) -> builtins.list[WeightSnapshot]:
    """Weights every step would write, ending with the promotion."""
    plan = []
    snapshot = origin
    while not snapshot.converged:
        snapshot = snapshot.advance(opts.advancement_step)
        plan.append(snapshot)
    plan.append(snapshot.promoted())
    return plan


async def create_or_update_listener_rule(
    settings: CourierSettings,
    client: LoadBalancerClient | None = None,
    providers: MetricProviderRegistry | None = None,
    cancel_event: asyncio.Event | None = None,
    dry_run: bool = False,
    shift_metrics: ShiftMetrics | None = None,
) -> ApplyResult:
    """Create the rule at the configured priority, or shift traffic on it."""
    rule_spec = settings.listener_rule()
    metrics = settings.metrics()
    opts = settings.canary_opts()
    shift_metrics = shift_metrics or ShiftMetrics()

    if client is None:
        client = LoadBalancerClient(region=settings.region, endpoint_url=settings.address)

    target_group_arns = [d.target_group_arn for d in rule_spec.destinations]
    lookup = await ListenerRuleLookup(client).lookup(
        settings.listener_arn, settings.priority, target_group_arns
    )

    if not lookup.exists:
        if not rule_spec.destinations:
            raise ConfigurationError("Creating a rule needs at least one destination")
        request = compile_create_rule_request(settings.listener_arn, rule_spec)
        if dry_run:
            return ApplyResult(ApplyAction.PLANNED_CREATE, request=request)

        try:
            rule = await client.create_rule(request)
        except RuleWriteError:
            shift_metrics.record_rule_write("create_rule", success=False)
            raise
        shift_metrics.record_rule_write("create_rule", success=True)
        return ApplyResult(ApplyAction.CREATED, rule=rule, request=request)

    current, desired = rule_spec.split_destinations()
    target_groups = {tg["TargetGroupArn"]: tg for tg in lookup.target_groups}
    status = ListenerStatus(
        listener=lookup.listener or {},
        rule=lookup.rule,
        current_tg=target_groups[current.target_group_arn],
        desired_tg=target_groups[desired.target_group_arn],
        metrics=metrics,
    )

    if dry_run:
        weights = forward_weights(status.rule.get("Actions") or [])
        origin = WeightSnapshot(
            current_tg_arn=current.target_group_arn,
            current_weight=weights.get(current.target_group_arn, 0),
            desired_tg_arn=desired.target_group_arn,
            desired_weight=weights.get(desired.target_group_arn, 0),
        )
        return ApplyResult(
            ApplyAction.PLANNED_SHIFT, rule=lookup.rule, plan=plan_shift(origin, opts)
        )

    owns_providers = providers is None
    if providers is None:
        providers = build_provider_registry(settings, metrics)

    engine = TrafficShiftEngine(client, providers, opts, shift_metrics=shift_metrics)
    try:
        shift = await engine.run(status, cancel_event)
    finally:
        if owns_providers:
            await providers.close()

    return ApplyResult(ApplyAction.SHIFTED, rule=shift.rule, shift=shift)

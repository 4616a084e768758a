"""
Async boundary over the boto3 ``elbv2`` client.

boto3 is synchronous, so every call runs in a worker thread. Each call is
wrapped in a bounded retry that only retries throttling and transient
service errors; anything else is surfaced at once as a typed error.
"""

import asyncio
import builtins
import logging
from collections.abc import Sequence
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import RuleLookupError, RuleWriteError
from ..resilience.retry import (
    AWS_THROTTLING_RETRY_CONFIG,
    RetryConfig,
    RetryError,
    RetryManager,
    aws_error_code,
)

logger = logging.getLogger(__name__)


class LoadBalancerClient:
    """Listener, rule and target group directory backed by elbv2."""

    def __init__(
        self,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        retry_config: RetryConfig | None = None,
    ):
        if client is None:
            client_kwargs: builtins.dict[str, Any] = {}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("elbv2", **client_kwargs)

        self._client = client
        self._retry = RetryManager(retry_config or AWS_THROTTLING_RETRY_CONFIG)

    async def _call(self, operation: str, **kwargs: Any) -> builtins.dict[str, Any]:
        method = getattr(self._client, operation)

        async def invoke() -> builtins.dict[str, Any]:
            return await asyncio.to_thread(method, **kwargs)

        try:
            return await self._retry.execute_async(invoke)
        except RetryError as e:
            # Surface the last AWS error rather than the retry wrapper
            raise e.last_exception from e

    async def _read(self, operation: str, **kwargs: Any) -> builtins.dict[str, Any]:
        try:
            return await self._call(operation, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise RuleLookupError(f"{operation} failed: {e}") from e

    async def _write(self, operation: str, **kwargs: Any) -> builtins.dict[str, Any]:
        try:
            return await self._call(operation, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise RuleWriteError(f"{operation} failed: {e}", operation, aws_error_code(e)) from e

    async def describe_rules(self, listener_arn: str) -> builtins.list[builtins.dict[str, Any]]:
        """All rules of a listener, following pagination markers."""
        rules: builtins.list[builtins.dict[str, Any]] = []
        marker: str | None = None

        while True:
            kwargs: builtins.dict[str, Any] = {"ListenerArn": listener_arn}
            if marker:
                kwargs["Marker"] = marker
            response = await self._read("describe_rules", **kwargs)
            rules.extend(response.get("Rules", []))
            marker = response.get("NextMarker")
            if not marker:
                return rules

    async def describe_listener(self, listener_arn: str) -> builtins.dict[str, Any]:
        response = await self._read("describe_listeners", ListenerArns=[listener_arn])
        listeners = response.get("Listeners", [])
        if not listeners:
            raise RuleLookupError(f"Listener {listener_arn} not found")
        return listeners[0]

    async def describe_target_groups(
        self, target_group_arns: Sequence[str]
    ) -> builtins.list[builtins.dict[str, Any]]:
        """Target groups in the same order as the requested ARNs."""
        response = await self._read(
            "describe_target_groups", TargetGroupArns=list(target_group_arns)
        )
        by_arn = {tg["TargetGroupArn"]: tg for tg in response.get("TargetGroups", [])}

        missing = [arn for arn in target_group_arns if arn not in by_arn]
        if missing:
            raise RuleLookupError(f"Target groups not found: {', '.join(missing)}")

        return [by_arn[arn] for arn in target_group_arns]

    async def create_rule(self, request: builtins.dict[str, Any]) -> builtins.dict[str, Any]:
        response = await self._write("create_rule", **request)
        rules = response.get("Rules", [])
        if not rules:
            raise RuleWriteError("create_rule returned no rule", "create_rule")
        logger.info(
            "Created listener rule",
            extra={"rule_arn": rules[0].get("RuleArn"), "priority": request.get("Priority")},
        )
        return rules[0]

    async def modify_rule(
        self, rule_arn: str, actions: builtins.list[builtins.dict[str, Any]]
    ) -> builtins.dict[str, Any]:
        """Replace the rule's actions. The whole action list is written at once."""
        response = await self._write("modify_rule", RuleArn=rule_arn, Actions=actions)
        rules = response.get("Rules", [])
        return rules[0] if rules else {"RuleArn": rule_arn, "Actions": actions}

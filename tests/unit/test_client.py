"""
Tests for the elbv2 client wrapper and the listener/rule lookup.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from alb_courier.errors import RuleLookupError, RuleWriteError
from alb_courier.resilience.retry import RetryConfig, is_transient_aws_error
from alb_courier.routing.client import LoadBalancerClient
from alb_courier.routing.lookup import ListenerRuleLookup

from fakes import BLUE_TG, GREEN_TG, LISTENER_ARN, RULE_ARN, make_rule, make_target_group

FAST_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=0.0,
    jitter=False,
    retryable_exceptions=(ClientError,),
    retry_condition=is_transient_aws_error,
)


def client_error(code: str, operation: str = "ModifyRule") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture
def boto_client():
    return MagicMock()


@pytest.fixture
def lb_client(boto_client):
    return LoadBalancerClient(client=boto_client, retry_config=FAST_RETRY)


@pytest.mark.unit
class TestLoadBalancerClient:
    """Calls into elbv2 through a mocked boto3 client."""

    @pytest.mark.asyncio
    async def test_describe_rules_follows_markers(self, lb_client, boto_client):
        boto_client.describe_rules.side_effect = [
            {"Rules": [{"RuleArn": "r1", "Priority": "1"}], "NextMarker": "page-2"},
            {"Rules": [{"RuleArn": "r2", "Priority": "2"}]},
        ]

        rules = await lb_client.describe_rules(LISTENER_ARN)

        assert [r["RuleArn"] for r in rules] == ["r1", "r2"]
        assert boto_client.describe_rules.call_args_list[1].kwargs == {
            "ListenerArn": LISTENER_ARN,
            "Marker": "page-2",
        }

    @pytest.mark.asyncio
    async def test_throttled_write_is_retried(self, lb_client, boto_client):
        boto_client.modify_rule.side_effect = [
            client_error("Throttling"),
            {"Rules": [{"RuleArn": RULE_ARN, "Actions": []}]},
        ]

        rule = await lb_client.modify_rule(RULE_ARN, [])

        assert rule["RuleArn"] == RULE_ARN
        assert boto_client.modify_rule.call_count == 2

    @pytest.mark.asyncio
    async def test_validation_error_is_not_retried(self, lb_client, boto_client):
        boto_client.modify_rule.side_effect = client_error("ValidationError")

        with pytest.raises(RuleWriteError) as exc_info:
            await lb_client.modify_rule(RULE_ARN, [])

        assert exc_info.value.error_code == "ValidationError"
        assert exc_info.value.operation == "modify_rule"
        assert boto_client.modify_rule.call_count == 1

    @pytest.mark.asyncio
    async def test_throttling_exhausts_retries(self, lb_client, boto_client):
        boto_client.create_rule.side_effect = client_error("Throttling", "CreateRule")

        with pytest.raises(RuleWriteError) as exc_info:
            await lb_client.create_rule({"ListenerArn": LISTENER_ARN})

        assert exc_info.value.error_code == "Throttling"
        assert boto_client.create_rule.call_count == 3

    @pytest.mark.asyncio
    async def test_create_rule_returns_rule(self, lb_client, boto_client):
        boto_client.create_rule.return_value = {"Rules": [{"RuleArn": RULE_ARN}]}
        request = {"ListenerArn": LISTENER_ARN, "Priority": 10, "Conditions": [], "Actions": []}

        rule = await lb_client.create_rule(request)

        assert rule == {"RuleArn": RULE_ARN}
        boto_client.create_rule.assert_called_once_with(**request)

    @pytest.mark.asyncio
    async def test_read_errors_become_lookup_errors(self, lb_client, boto_client):
        boto_client.describe_listeners.side_effect = client_error("ListenerNotFound", "DescribeListeners")

        with pytest.raises(RuleLookupError):
            await lb_client.describe_listener(LISTENER_ARN)

    @pytest.mark.asyncio
    async def test_target_groups_in_requested_order(self, lb_client, boto_client):
        boto_client.describe_target_groups.return_value = {
            "TargetGroups": [make_target_group(GREEN_TG), make_target_group(BLUE_TG)]
        }

        groups = await lb_client.describe_target_groups([BLUE_TG, GREEN_TG])

        assert [g["TargetGroupArn"] for g in groups] == [BLUE_TG, GREEN_TG]

    @pytest.mark.asyncio
    async def test_missing_target_group(self, lb_client, boto_client):
        boto_client.describe_target_groups.return_value = {
            "TargetGroups": [make_target_group(BLUE_TG)]
        }

        with pytest.raises(RuleLookupError):
            await lb_client.describe_target_groups([BLUE_TG, GREEN_TG])


@pytest.mark.unit
class TestListenerRuleLookup:
    """Finding the rule at a priority."""

    @pytest.mark.asyncio
    async def test_matches_priority_as_string(self, lb_client, boto_client):
        boto_client.describe_rules.return_value = {
            "Rules": [
                {"RuleArn": "default", "Priority": "default", "IsDefault": True},
                {"RuleArn": "r1", "Priority": "1"},
                make_rule({BLUE_TG: 90, GREEN_TG: 10}),
            ]
        }

        rule = await ListenerRuleLookup(lb_client).find_rule(LISTENER_ARN, 10)

        assert rule["RuleArn"] == RULE_ARN

    @pytest.mark.asyncio
    async def test_duplicate_priority_first_wins(self, lb_client, boto_client):
        boto_client.describe_rules.return_value = {
            "Rules": [{"RuleArn": "first", "Priority": "5"}, {"RuleArn": "second", "Priority": "5"}]
        }

        rule = await ListenerRuleLookup(lb_client).find_rule(LISTENER_ARN, 5)

        assert rule["RuleArn"] == "first"

    @pytest.mark.asyncio
    async def test_no_rule_skips_other_lookups(self, lb_client, boto_client):
        boto_client.describe_rules.return_value = {"Rules": [{"RuleArn": "r1", "Priority": "1"}]}

        result = await ListenerRuleLookup(lb_client).lookup(LISTENER_ARN, 10, [BLUE_TG, GREEN_TG])

        assert not result.exists
        boto_client.describe_target_groups.assert_not_called()
        boto_client.describe_listeners.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_resolves_listener_and_groups(self, lb_client, boto_client):
        boto_client.describe_rules.return_value = {"Rules": [make_rule({BLUE_TG: 90, GREEN_TG: 10})]}
        boto_client.describe_target_groups.return_value = {
            "TargetGroups": [make_target_group(BLUE_TG), make_target_group(GREEN_TG)]
        }
        boto_client.describe_listeners.return_value = {"Listeners": [{"ListenerArn": LISTENER_ARN}]}

        result = await ListenerRuleLookup(lb_client).lookup(LISTENER_ARN, 10, [BLUE_TG, GREEN_TG])

        assert result.exists
        assert result.listener["ListenerArn"] == LISTENER_ARN
        assert [g["TargetGroupArn"] for g in result.target_groups] == [BLUE_TG, GREEN_TG]

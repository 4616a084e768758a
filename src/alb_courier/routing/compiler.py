"""
Rule compiler.

Translates a ListenerRule into the keyword arguments of the elbv2
``create_rule`` call, and rewrites forward actions for weight updates.
Pure functions: no I/O happens here.
"""

import builtins
import copy
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import ConfigurationError
from .models import Destination, ListenerRule

FORWARD_ACTION_TYPE = "forward"


def compile_conditions(rule: ListenerRule) -> builtins.list[builtins.dict[str, Any]]:
    """Build one condition per configured field.

    Host, path, method and source IP each produce at most one condition
    holding every value. Headers produce one condition per header name.
    Query strings produce a single condition with all key/value pairs.
    """
    conditions: builtins.list[builtins.dict[str, Any]] = []

    if rule.hosts:
        conditions.append(
            {"Field": "host-header", "HostHeaderConfig": {"Values": list(rule.hosts)}}
        )

    if rule.path_patterns:
        conditions.append(
            {"Field": "path-pattern", "PathPatternConfig": {"Values": list(rule.path_patterns)}}
        )

    if rule.methods:
        conditions.append(
            {
                "Field": "http-request-method",
                "HttpRequestMethodConfig": {"Values": [m.upper() for m in rule.methods]},
            }
        )

    if rule.source_ips:
        conditions.append(
            {"Field": "source-ip", "SourceIpConfig": {"Values": list(rule.source_ips)}}
        )

    for name, values in rule.headers.items():
        conditions.append(
            {
                "Field": "http-header",
                "HttpHeaderConfig": {"HttpHeaderName": name, "Values": list(values)},
            }
        )

    if rule.query_strings:
        conditions.append(
            {
                "Field": "query-string",
                "QueryStringConfig": {
                    "Values": [{"Key": k, "Value": v} for k, v in rule.query_strings.items()]
                },
            }
        )

    return conditions


def target_group_tuples(
    weights: Iterable[Destination],
) -> builtins.list[builtins.dict[str, Any]]:
    return [{"TargetGroupArn": d.target_group_arn, "Weight": d.weight} for d in weights]


def forward_action(destinations: Iterable[Destination]) -> builtins.dict[str, Any]:
    """A forward action splitting traffic across the given destinations."""
    return {
        "Type": FORWARD_ACTION_TYPE,
        "ForwardConfig": {"TargetGroups": target_group_tuples(destinations)},
    }


def compile_create_rule_request(listener_arn: str, rule: ListenerRule) -> builtins.dict[str, Any]:
    """Compile a ListenerRule into ``create_rule`` keyword arguments.

    An empty destination list still compiles; keeping that shape off the
    wire is up to the caller.
    """
    return {
        "ListenerArn": listener_arn,
        "Priority": rule.priority,
        "Conditions": compile_conditions(rule),
        "Actions": [forward_action(rule.destinations)],
    }


def find_forward_action(actions: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    for action in actions:
        if action.get("Type") == FORWARD_ACTION_TYPE:
            return action
    return None


def forward_weights(actions: Iterable[Mapping[str, Any]]) -> builtins.dict[str, int]:
    """Map target group ARN to weight for the rule's forward action.

    A forward action that only carries ``TargetGroupArn`` counts as a single
    destination at weight 1, which is what the load balancer does.
    """
    action = find_forward_action(actions)
    if action is None:
        raise ConfigurationError("Rule has no forward action")

    groups = (action.get("ForwardConfig") or {}).get("TargetGroups")
    if groups:
        return {g["TargetGroupArn"]: int(g.get("Weight", 1)) for g in groups}
    if action.get("TargetGroupArn"):
        return {action["TargetGroupArn"]: 1}
    return {}


def rewrite_forward_actions(
    actions: Iterable[Mapping[str, Any]], destinations: Iterable[Destination]
) -> builtins.list[builtins.dict[str, Any]]:
    """Return a copy of ``actions`` with the forward target groups replaced.

    Non-forward actions and the stickiness config are kept as they are. The
    forward action's top-level TargetGroupArn is dropped, since it cannot be
    combined with a multi-group ForwardConfig.
    """
    rewritten = []
    replaced = False
    for action in actions:
        action = copy.deepcopy(dict(action))
        if action.get("Type") == FORWARD_ACTION_TYPE and not replaced:
            action.pop("TargetGroupArn", None)
            forward_config = dict(action.get("ForwardConfig") or {})
            forward_config["TargetGroups"] = target_group_tuples(destinations)
            action["ForwardConfig"] = forward_config
            replaced = True
        rewritten.append(action)

    if not replaced:
        raise ConfigurationError("Rule has no forward action to rewrite")

    return rewritten

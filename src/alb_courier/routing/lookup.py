"""Listener/rule lookup used to bootstrap a traffic shift."""

import builtins
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .client import LoadBalancerClient

logger = logging.getLogger(__name__)


@dataclass
class RuleLookupResult:
    """Existing rule at a priority plus the objects it references.

    ``rule`` is None when nothing sits at the priority yet, which tells the
    caller this is a first deploy.
    """

    rule: builtins.dict[str, Any] | None
    listener: builtins.dict[str, Any] | None = None
    target_groups: builtins.list[builtins.dict[str, Any]] = field(default_factory=list)

    @property
    def exists(self) -> bool:
        return self.rule is not None


class ListenerRuleLookup:
    """Read path over the listener, rule and target group directories."""

    def __init__(self, client: LoadBalancerClient):
        self.client = client

    async def find_rule(self, listener_arn: str, priority: int) -> builtins.dict[str, Any] | None:
        """Return the rule whose priority equals ``priority``, if any.

        Priorities come back as strings ("default" for the listener's default
        rule), so the comparison is on the string form. Should the listener
        report more than one rule at the priority, the first one wins.
        """
        wanted = str(priority)
        matches = [r for r in await self.client.describe_rules(listener_arn) if r.get("Priority") == wanted]

        if not matches:
            return None

        if len(matches) > 1:
            logger.warning(
                f"Listener {listener_arn} reports {len(matches)} rules at priority {wanted}; "
                f"using {matches[0].get('RuleArn')}"
            )

        return matches[0]

    async def lookup(
        self, listener_arn: str, priority: int, target_group_arns: Sequence[str]
    ) -> RuleLookupResult:
        """Find the rule and, when it exists, fetch its listener and target groups.

        Target groups are returned in the order of ``target_group_arns``.
        """
        rule = await self.find_rule(listener_arn, priority)
        if rule is None:
            logger.info(
                "No rule at priority; first deploy",
                extra={"listener_arn": listener_arn, "priority": priority},
            )
            return RuleLookupResult(rule=None)

        target_groups = await self.client.describe_target_groups(target_group_arns)
        listener = await self.client.describe_listener(listener_arn)

        logger.debug(
            "Resolved existing rule",
            extra={"rule_arn": rule.get("RuleArn"), "listener_arn": listener_arn},
        )
        return RuleLookupResult(rule=rule, listener=listener, target_groups=target_groups)

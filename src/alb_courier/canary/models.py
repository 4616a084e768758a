"""
Data models for traffic shifts.
"""

import builtins
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from ..errors import ConfigurationError
from ..metrics.models import Metric
from ..routing.models import Destination
from .enums import ShiftState

MAX_WEIGHT = 100
MIN_WEIGHT = 0


@dataclass(frozen=True)
class CanaryOpts:
    """Tuning knobs for one shift. Immutable while the shift runs."""

    advancement_interval: timedelta = timedelta(seconds=60)
    # Percentage points moved per step
    advancement_step: int = 10
    region: str = ""
    cluster_name: str = ""

    # Extra re-checks allowed while metrics have no data
    max_inconclusive_checks: int = 3
    inconclusive_retry_interval: timedelta = timedelta(seconds=10)

    # Attempts per metric when the provider errors
    metric_retry_attempts: int = 3
    metric_retry_delay: float = 1.0

    rollback_on_evaluation_error: bool = False
    remove_drained_destination: bool = False

    def validate(self) -> None:
        if isinstance(self.advancement_step, bool) or not isinstance(self.advancement_step, int):
            raise ConfigurationError(
                f"advancement_step must be an integer, got {self.advancement_step!r}"
            )
        if self.advancement_step <= 0:
            raise ConfigurationError(
                f"advancement_step must be positive, got {self.advancement_step}"
            )
        if self.advancement_interval < timedelta(0):
            raise ConfigurationError("advancement_interval must not be negative")
        if self.inconclusive_retry_interval < timedelta(0):
            raise ConfigurationError("inconclusive_retry_interval must not be negative")
        if self.max_inconclusive_checks < 0:
            raise ConfigurationError("max_inconclusive_checks must not be negative")
        if self.metric_retry_attempts < 1:
            raise ConfigurationError("metric_retry_attempts must be at least 1")


@dataclass(frozen=True)
class WeightSnapshot:
    """Weights of the two target groups as written to the rule."""

    current_tg_arn: str
    current_weight: int
    desired_tg_arn: str
    desired_weight: int
    # Order of the two groups in the rule's forward action
    desired_first: bool = False

    @property
    def converged(self) -> bool:
        return self.desired_weight == MAX_WEIGHT and self.current_weight == MIN_WEIGHT

    def advance(self, step: int) -> "WeightSnapshot":
        """Move ``step`` points toward the desired group, clamped to 0..100."""
        return replace(
            self,
            desired_weight=min(MAX_WEIGHT, self.desired_weight + step),
            current_weight=max(MIN_WEIGHT, self.current_weight - step),
        )

    def promoted(self) -> "WeightSnapshot":
        return replace(self, desired_weight=MAX_WEIGHT, current_weight=MIN_WEIGHT)

    def destinations(self, drop_current: bool = False) -> builtins.list[Destination]:
        current = Destination(self.current_tg_arn, self.current_weight)
        desired = Destination(self.desired_tg_arn, self.desired_weight, desired=True)
        if drop_current:
            return [desired]
        return [desired, current] if self.desired_first else [current, desired]

    def weights(self) -> builtins.dict[str, int]:
        return {self.current_tg_arn: self.current_weight, self.desired_tg_arn: self.desired_weight}

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "current": {"target_group_arn": self.current_tg_arn, "weight": self.current_weight},
            "desired": {"target_group_arn": self.desired_tg_arn, "weight": self.desired_weight},
        }


@dataclass
class ListenerStatus:
    """Snapshot handed to the engine for one invocation. Never persisted."""

    listener: builtins.dict[str, Any]
    rule: builtins.dict[str, Any]
    current_tg: builtins.dict[str, Any]
    desired_tg: builtins.dict[str, Any]
    metrics: builtins.list[Metric] = field(default_factory=list)
    # ARNs of groups that may be decommissioned once drained
    deleted_tgs: builtins.list[str] = field(default_factory=list)
    alb_attachments: builtins.list[builtins.dict[str, Any]] = field(default_factory=list)

    @property
    def rule_arn(self) -> str:
        return self.rule.get("RuleArn", "")

    @property
    def listener_arn(self) -> str:
        return self.listener.get("ListenerArn", "")


@dataclass
class ShiftEvent:
    """A state transition recorded during a shift."""

    state: ShiftState
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    weights: builtins.dict[str, int] = field(default_factory=dict)
    details: builtins.dict[str, Any] = field(default_factory=dict)


@dataclass
class ShiftResult:
    """Outcome of a completed shift."""

    state: ShiftState
    origin: WeightSnapshot
    final: WeightSnapshot
    rule: builtins.dict[str, Any]
    steps: int = 0
    history: builtins.list[WeightSnapshot] = field(default_factory=list)
    events: builtins.list[ShiftEvent] = field(default_factory=list)
    deleted_tgs: builtins.list[str] = field(default_factory=list)

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "state": self.state.value,
            "rule_arn": self.rule.get("RuleArn"),
            "steps": self.steps,
            "origin": self.origin.to_dict(),
            "final": self.final.to_dict(),
            "deleted_tgs": list(self.deleted_tgs),
        }

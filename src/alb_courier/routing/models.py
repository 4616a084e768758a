"""
Rule specification model: the desired state of one ALB listener rule.
"""

import builtins
from dataclasses import dataclass, field

from ..errors import ConfigurationError


@dataclass(frozen=True)
class Destination:
    """A target group and its relative weight within a forward action."""

    target_group_arn: str
    weight: int
    # Explicit marker for the group being promoted
    desired: bool = False

    def validate(self) -> None:
        if not self.target_group_arn:
            raise ConfigurationError("Destination target_group_arn is required")
        if isinstance(self.weight, bool) or not isinstance(self.weight, int):
            raise ConfigurationError(
                f"Weight for {self.target_group_arn} must be an integer, got {self.weight!r}"
            )
        if self.weight < 0:
            raise ConfigurationError(
                f"Weight for {self.target_group_arn} must be non-negative, got {self.weight}"
            )


@dataclass
class ListenerRule:
    """Match conditions and weighted destinations for one listener rule."""

    listener_arn: str
    priority: int

    hosts: builtins.list[str] = field(default_factory=list)
    path_patterns: builtins.list[str] = field(default_factory=list)
    methods: builtins.list[str] = field(default_factory=list)
    source_ips: builtins.list[str] = field(default_factory=list)
    headers: builtins.dict[str, builtins.list[str]] = field(default_factory=dict)
    query_strings: builtins.dict[str, str] = field(default_factory=dict)

    destinations: builtins.list[Destination] = field(default_factory=list)

    def validate(self) -> None:
        if not self.listener_arn:
            raise ConfigurationError("listener_arn is required")
        if isinstance(self.priority, bool) or not isinstance(self.priority, int) or self.priority <= 0:
            raise ConfigurationError(f"Priority must be a positive integer, got {self.priority!r}")
        for name, values in self.headers.items():
            if not values:
                raise ConfigurationError(f"Header condition {name!r} has no values")
        for destination in self.destinations:
            destination.validate()

    def validate_for_shift(self) -> None:
        """A gradual shift needs exactly two distinct destinations."""
        self.validate()
        if len(self.destinations) != 2:
            raise ConfigurationError(
                f"A traffic shift needs exactly two destinations, got {len(self.destinations)}"
            )
        first, second = self.destinations
        if first.target_group_arn == second.target_group_arn:
            raise ConfigurationError("Both destinations point at the same target group")

    def split_destinations(self) -> tuple[Destination, Destination]:
        """Return (current, desired).

        An explicit ``desired`` marker wins. Without one, the destination with
        the lower weight is taken to be the group being promoted.
        """
        self.validate_for_shift()
        first, second = self.destinations

        marked = [d for d in self.destinations if d.desired]
        if len(marked) == 2:
            raise ConfigurationError("Only one destination may be marked desired")
        if len(marked) == 1:
            desired = marked[0]
            current = second if desired is first else first
            return current, desired

        if first.weight == second.weight:
            raise ConfigurationError(
                "Cannot infer the desired target group from equal weights; "
                "mark one destination as desired"
            )
        if first.weight < second.weight:
            return second, first
        return first, second

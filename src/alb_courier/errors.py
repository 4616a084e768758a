"""
Error taxonomy for ALB Courier.

Configuration and lookup errors are raised before any routing change is
made. Engine failures derive from ShiftError and always say which phase
failed and what the last successfully written weights were, so operators
can reconcile the rule by hand.
"""

from __future__ import annotations

import builtins
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .canary.enums import ShiftState
    from .canary.models import WeightSnapshot
    from .metrics.models import MetricResult


class CourierError(Exception):
    """Base class for every error raised by ALB Courier."""


class ConfigurationError(CourierError):
    """Invalid configuration detected before anything was mutated."""


class RuleLookupError(CourierError):
    """Listener, rule or target group lookup failed."""


class RuleWriteError(CourierError):
    """A create_rule/modify_rule call was rejected by the load balancer."""

    def __init__(self, message: str, operation: str, error_code: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.error_code = error_code


class MetricProviderError(CourierError):
    """A metric backend could not be queried or returned a malformed answer."""

    def __init__(self, message: str, provider: str, metric_name: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.metric_name = metric_name


class ShiftError(CourierError):
    """Terminal failure of a traffic shift."""

    def __init__(
        self,
        message: str,
        phase: ShiftState,
        last_written: WeightSnapshot | None = None,
        origin: WeightSnapshot | None = None,
        rolled_back: bool = False,
    ):
        super().__init__(message)
        self.phase = phase
        self.last_written = last_written
        self.origin = origin
        self.rolled_back = rolled_back

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "phase": self.phase.value,
            "rolled_back": self.rolled_back,
            "last_written": self.last_written.to_dict() if self.last_written else None,
            "origin": self.origin.to_dict() if self.origin else None,
        }


class MetricCheckFailedError(ShiftError):
    """At least one metric failed its threshold; traffic was restored."""

    def __init__(self, message: str, failures: builtins.list[MetricResult], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.failures = failures


class InconclusiveMetricsError(ShiftError):
    """Metrics stayed indeterminate for longer than the configured bound."""


class MetricEvaluationError(ShiftError):
    """A metric provider kept erroring after the retry budget was spent."""


class ShiftWriteError(ShiftError):
    """A weight write failed; the rule is left at its last known-good state."""


class ShiftCancelledError(ShiftError):
    """The shift was cancelled by the caller."""


class RollbackFailedError(ShiftError):
    """Restoring the original weights failed. Needs operator attention."""

    def __init__(
        self,
        message: str,
        cause: BaseException,
        rollback_error: BaseException,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.cause = cause
        self.rollback_error = rollback_error

    def to_dict(self) -> builtins.dict[str, Any]:
        data = super().to_dict()
        data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        data["rollback_error"] = f"{type(self.rollback_error).__name__}: {self.rollback_error}"
        return data

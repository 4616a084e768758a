"""
ALB Courier

Creates AWS Application Load Balancer listener rules and shifts traffic
between two target groups in metric-gated steps.
"""

__version__ = "0.1.0"

# Primary entry points
from .canary import CanaryOpts, ShiftState, TrafficShiftEngine, do_gradual_traffic_shift
from .config import CourierSettings, load_settings
from .controller import ApplyResult, create_or_update_listener_rule
from .errors import CourierError, ShiftError
from .routing import ListenerRule, compile_create_rule_request

__all__ = [
    "__version__",
    "CanaryOpts",
    "CourierError",
    "CourierSettings",
    "ApplyResult",
    "ListenerRule",
    "ShiftError",
    "ShiftState",
    "TrafficShiftEngine",
    "compile_create_rule_request",
    "create_or_update_listener_rule",
    "do_gradual_traffic_shift",
    "load_settings",
]

"""
Canary traffic shift engine.
"""

from .engine import TrafficShiftEngine, do_gradual_traffic_shift
from .enums import ShiftState
from .models import CanaryOpts, ListenerStatus, ShiftEvent, ShiftResult, WeightSnapshot

__all__ = [
    "CanaryOpts",
    "ListenerStatus",
    "ShiftEvent",
    "ShiftResult",
    "ShiftState",
    "TrafficShiftEngine",
    "WeightSnapshot",
    "do_gradual_traffic_shift",
]

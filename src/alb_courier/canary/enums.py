"""
Enums for the traffic shift state machine.
"""

from enum import Enum


class ShiftState(Enum):
    """States of one traffic shift."""

    INIT = "init"
    ADVANCING = "advancing"
    VERIFYING = "verifying"
    PROMOTING = "promoting"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ShiftState.DONE, ShiftState.FAILED)

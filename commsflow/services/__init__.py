from commsflow.services.action_state import (
    ActionStatus,
    InvalidTransitionError,
    can_transition,
    transition,
)
from commsflow.services.result import ActionResult, Result

__all__ = [
    "ActionStatus",
    "InvalidTransitionError",
    "can_transition",
    "transition",
    "ActionResult",
    "Result",
]

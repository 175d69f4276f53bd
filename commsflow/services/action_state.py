from enum import Enum


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


TERMINAL_STATES = {ActionStatus.REJECTED, ActionStatus.EXECUTED, ActionStatus.FAILED}

VALID_TRANSITIONS = {
    ActionStatus.PENDING: [ActionStatus.APPROVED, ActionStatus.REJECTED],
    ActionStatus.APPROVED: [ActionStatus.EXECUTED, ActionStatus.FAILED],
    ActionStatus.REJECTED: [],
    ActionStatus.EXECUTED: [],
    ActionStatus.FAILED: [],
}

# Records that skip the approval gate go straight from pending to a result
NO_APPROVAL_TRANSITIONS = {
    ActionStatus.PENDING: [ActionStatus.EXECUTED, ActionStatus.FAILED],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ActionStatus, to_state: ActionStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ActionStatus, to_state: ActionStatus, requires_approval: bool = True) -> bool:
    """Check if transition is valid."""
    allowed = list(VALID_TRANSITIONS.get(from_state, []))
    if not requires_approval:
        allowed.extend(NO_APPROVAL_TRANSITIONS.get(from_state, []))
    return to_state in allowed


def transition(
    from_state: ActionStatus, to_state: ActionStatus, requires_approval: bool = True
) -> ActionStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state, requires_approval):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_terminal(state: ActionStatus) -> bool:
    return state in TERMINAL_STATES


def approve(current_state: ActionStatus) -> ActionStatus:
    return transition(current_state, ActionStatus.APPROVED)


def reject(current_state: ActionStatus) -> ActionStatus:
    return transition(current_state, ActionStatus.REJECTED)


def ready_to_execute(current_state: ActionStatus, requires_approval: bool) -> bool:
    """Approved records, or pending ones that never needed approval."""
    if current_state == ActionStatus.APPROVED:
        return True
    return current_state == ActionStatus.PENDING and not requires_approval


def complete(current_state: ActionStatus, success: bool, requires_approval: bool = True) -> ActionStatus:
    target = ActionStatus.EXECUTED if success else ActionStatus.FAILED
    return transition(current_state, target, requires_approval)

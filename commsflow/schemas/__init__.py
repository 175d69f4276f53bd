from commsflow.schemas.action import ActionType, normalize_action_payload
from commsflow.schemas.communication import CommunicationType, Direction, NormalizedCommunication, Participant
from commsflow.schemas.decision import Decision, DecisionPayload, DecisionResult
from commsflow.schemas.job import JobStatus, OperationType
from commsflow.schemas.webhook import WebhookAck

__all__ = [
    "ActionType",
    "normalize_action_payload",
    "CommunicationType",
    "Direction",
    "NormalizedCommunication",
    "Participant",
    "Decision",
    "DecisionPayload",
    "DecisionResult",
    "JobStatus",
    "OperationType",
    "WebhookAck",
]

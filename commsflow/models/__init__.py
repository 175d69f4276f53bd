from commsflow.models.action_record import ActionRecord
from commsflow.models.chat_session import ChatSession, ChatSessionMessage
from commsflow.models.communication import Communication
from commsflow.models.comms_batch import CommsBatch
from commsflow.models.company import Company
from commsflow.models.contact import Contact
from commsflow.models.escalation_config import EscalationConfig
from commsflow.models.integration_job import IntegrationJob
from commsflow.models.project import Project, ProjectContact, ProjectTrack, ProjectTrackMilestone
from commsflow.models.raw_webhook import RawWebhook

__all__ = [
    "Company",
    "Contact",
    "Project",
    "ProjectContact",
    "ProjectTrack",
    "ProjectTrackMilestone",
    "RawWebhook",
    "Communication",
    "CommsBatch",
    "ChatSession",
    "ChatSessionMessage",
    "ActionRecord",
    "IntegrationJob",
    "EscalationConfig",
]

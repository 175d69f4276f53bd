from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.database import utcnow
from commsflow.logging_config import get_logger
from commsflow.models import ActionRecord, Communication, Company, Contact, Project, ProjectContact
from commsflow.schemas.action import (
    ActionType,
    DataUpdatePayload,
    EscalationPayload,
    HumanReviewPayload,
    KnowledgeQueryPayload,
    MessagePayload,
    ReminderPayload,
    normalize_action_payload,
)
from commsflow.schemas.communication import CommunicationType, Direction
from commsflow.schemas.job import OperationType, ResourceType
from commsflow.services.action_service import compute_next_check_date
from commsflow.services.action_state import ActionStatus, InvalidTransitionError, complete, ready_to_execute
from commsflow.services.channel_service import ChannelSender
from commsflow.services.escalation_service import send_escalation
from commsflow.services.job_queue import enqueue_job
from commsflow.services.knowledge_service import KnowledgeClient
from commsflow.services.matching import find_contact_by_name, format_phone_number
from commsflow.services.result import ActionResult
from commsflow.services.session_service import attach_communication

logger = get_logger("action_executor")

Handler = Callable[[Session, ActionRecord, Project, object, datetime], ActionResult]


class ActionExecutor:
    """Runs approved action records through one handler per action type."""

    def __init__(self, sender: ChannelSender, knowledge: KnowledgeClient, settings: Settings):
        self.sender = sender
        self.knowledge = knowledge
        self.settings = settings
        self.handlers: dict[ActionType, Handler] = {
            ActionType.MESSAGE: self.handle_message,
            ActionType.DATA_UPDATE: self.handle_data_update,
            ActionType.SET_FUTURE_REMINDER: self.handle_set_future_reminder,
            ActionType.ESCALATION: self.handle_escalation,
            ActionType.HUMAN_IN_LOOP: self.handle_human_in_loop,
            ActionType.KNOWLEDGE_QUERY: self.handle_knowledge_query,
        }

    def execute(self, db: Session, record: ActionRecord, now: Optional[datetime] = None) -> ActionResult:
        """Run the record's handler and store the outcome.

        The record ends executed when the handler reports success and failed
        otherwise, including when the handler raises.
        """
        current = ActionStatus(record.status)
        if not ready_to_execute(current, record.requires_approval):
            raise InvalidTransitionError(current, ActionStatus.EXECUTED)

        now = now or utcnow()
        result = self._dispatch(db, record, now)

        record.status = complete(current, result.success, record.requires_approval).value
        record.execution_result = result.as_dict()
        record.executed_at = now
        db.commit()

        log = logger.info if result.success else logger.warning
        log(
            "Action executed" if result.success else "Action failed",
            extra={
                "context": {
                    "action_id": str(record.id),
                    "action_type": record.action_type,
                    "status": record.status,
                    "message": result.message,
                }
            },
        )
        return result

    def _dispatch(self, db: Session, record: ActionRecord, now: datetime) -> ActionResult:
        try:
            action_type = ActionType(record.action_type)
        except ValueError:
            return ActionResult(False, f"Unsupported action type: {record.action_type}")

        project = db.query(Project).filter(Project.id == record.project_id).first()
        if project is None:
            return ActionResult(False, f"Project {record.project_id} not found")

        try:
            payload = normalize_action_payload(action_type, {}, record.action_payload)
            return self.handlers[action_type](db, record, project, payload, now)
        except Exception as exc:
            db.rollback()
            logger.error(
                "Action handler raised",
                extra={"context": {"action_id": str(record.id), "error": str(exc)}},
                exc_info=True,
            )
            return ActionResult(False, f"{type(exc).__name__}: {exc}")

    def _project_contacts(self, db: Session, project: Project) -> list[Contact]:
        return (
            db.query(Contact)
            .join(ProjectContact, ProjectContact.contact_id == Contact.id)
            .filter(ProjectContact.project_id == project.id)
            .all()
        )

    def handle_message(
        self, db: Session, record: ActionRecord, project: Project, payload: MessagePayload, now: datetime
    ) -> ActionResult:
        company = db.query(Company).filter(Company.id == project.company_id).first()
        contacts = self._project_contacts(db, project)
        contact = find_contact_by_name(contacts, payload.recipient)

        phone = payload.recipient_phone or (contact.phone_number if contact else None)
        if not phone:
            return ActionResult(
                False,
                f"No phone number found for recipient '{payload.recipient}'",
                {"recipient": payload.recipient},
            )

        sender_name = payload.sender
        if not sender_name and company:
            sender_name = company.agent_name or f"{company.name} Agent"

        delivery_id = self.sender.send(payload.channel, phone, payload.message_content)

        agent_phone = company.agent_phone_number if company else None
        participants = [{"type": "phone", "value": format_phone_number(phone), "role": "recipient"}]
        if contact:
            participants[0]["contact_id"] = str(contact.id)
        if agent_phone:
            participants.insert(0, {"type": "phone", "value": format_phone_number(agent_phone), "role": "sender"})

        outbound = Communication(
            company_id=project.company_id,
            provider=self.sender.name,
            type=CommunicationType.SMS.value if payload.channel == "sms" else CommunicationType.EMAIL.value,
            direction=Direction.OUTBOUND.value,
            participants=participants,
            content=payload.message_content,
            timestamp=now,
            project_id=project.id,
        )
        db.add(outbound)
        db.flush()
        session = attach_communication(
            db,
            outbound,
            contact_id=contact.id if contact else None,
            project_id=project.id,
        )

        return ActionResult(
            True,
            f"Message sent to {contact.full_name if contact else payload.recipient}",
            {
                "delivery_id": delivery_id,
                "communication_id": str(outbound.id),
                "session_id": str(session.id) if session else None,
                "recipient_contact_id": str(contact.id) if contact else None,
                "sender": sender_name,
            },
        )

    def handle_data_update(
        self, db: Session, record: ActionRecord, project: Project, payload: DataUpdatePayload, now: datetime
    ) -> ActionResult:
        if not payload.field:
            return ActionResult(False, "No field given for data update")

        project.crm_fields = {**(project.crm_fields or {}), payload.field: payload.value}
        details = {"field": payload.field, "value": payload.value, "job_id": None}

        if project.crm_id:
            job = enqueue_job(
                db,
                company_id=project.company_id,
                resource_type=ResourceType.PROJECT.value,
                operation_type=OperationType.UPDATE.value,
                resource_id=project.crm_id,
                data={payload.field: payload.value},
            )
            details["job_id"] = str(job.id)

        return ActionResult(True, f"Updated {payload.field}", details)

    def handle_set_future_reminder(
        self, db: Session, record: ActionRecord, project: Project, payload: ReminderPayload, now: datetime
    ) -> ActionResult:
        next_check = compute_next_check_date(now, payload.days_until_check, self.settings)
        project.next_check_date = next_check
        return ActionResult(
            True,
            f"Next check scheduled for {next_check.date().isoformat()}",
            {"next_check_date": next_check.isoformat(), "check_reason": payload.check_reason},
        )

    def handle_escalation(
        self, db: Session, record: ActionRecord, project: Project, payload: EscalationPayload, now: datetime
    ) -> ActionResult:
        result = send_escalation(db, project, payload, self.sender, self.settings)
        if result.value is None:
            return ActionResult(False, result.error, {"status": "error", "error": result.error})

        summary = result.value
        message = (
            f"Escalation sent to {summary['notifications_sent']} of "
            f"{summary['notifications_sent'] + summary['notifications_failed']} recipients"
        )
        return ActionResult(result.ok, message, summary)

    def handle_human_in_loop(
        self, db: Session, record: ActionRecord, project: Project, payload: HumanReviewPayload, now: datetime
    ) -> ActionResult:
        return ActionResult(
            True,
            "Flagged for human review",
            {"reason": payload.reason, "description": payload.description, "priority": payload.priority},
        )

    def handle_knowledge_query(
        self, db: Session, record: ActionRecord, project: Project, payload: KnowledgeQueryPayload, now: datetime
    ) -> ActionResult:
        if not payload.query:
            return ActionResult(False, "No query given for knowledge lookup")

        results = self.knowledge.search(payload.query, str(project.company_id), limit=payload.limit)
        return ActionResult(
            True,
            f"Found {len(results)} knowledge results",
            {"query": payload.query, "result_count": len(results), "results": results},
        )

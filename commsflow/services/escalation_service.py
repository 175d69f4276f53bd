from typing import Optional

from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.logging_config import get_logger
from commsflow.models import EscalationConfig, Project
from commsflow.schemas.action import EscalationPayload
from commsflow.services.alert_service import alert_error
from commsflow.services.channel_service import ChannelSender
from commsflow.services.result import Result

logger = get_logger("escalation_service")

NO_RECIPIENTS_ERROR = "No escalation recipients configured for this company"


def get_escalation_recipients(db: Session, company_id) -> list[EscalationConfig]:
    """All active configs for the company that subscribe to escalations."""
    configs = (
        db.query(EscalationConfig)
        .filter(EscalationConfig.company_id == company_id, EscalationConfig.is_active.is_(True))
        .all()
    )
    return [c for c in configs if "escalation" in (c.notification_types or [])]


def format_escalation_message(
    recipient_name: Optional[str],
    project: Project,
    reason: str,
    details: Optional[str] = None,
    next_step: Optional[str] = None,
    max_chars: int = 300,
) -> str:
    project_name = project.name or "Unknown project"
    address = project.address or "Address not available"
    next_step = next_step or project.next_step

    message = "🚨 PROJECT ESCALATION\n\n"
    message += f"Hi {recipient_name or 'there'},\n\n"
    message += f"Project: {project_name}\n"
    message += f"Address: {address}\n\n"
    message += f"Reason: {reason}\n"
    if details:
        message += f"Details: {details}\n"
    if next_step:
        message += f"Next Step: {next_step}\n"
    message += "\nPlease review this project immediately."

    if len(message) > max_chars:
        message = f"🚨 ESCALATION: {project_name} at {address}. {reason}. Please review immediately."
    if len(message) > max_chars:
        message = message[: max_chars - 3].rstrip() + "..."
    return message


def send_escalation(
    db: Session,
    project: Project,
    payload: EscalationPayload,
    sender: ChannelSender,
    settings: Settings,
) -> Result[dict]:
    """Notify every active escalation recipient of the project's company.

    Succeeds when at least one notification went out; the value always holds
    per-recipient results.
    """
    recipients = get_escalation_recipients(db, project.company_id)
    if not recipients:
        logger.warning(
            "Escalation without recipients",
            extra={"context": {"project_id": str(project.id), "company_id": str(project.company_id)}},
        )
        return Result.failure(NO_RECIPIENTS_ERROR, code="no_recipients")

    results = []
    sent = 0
    for recipient in recipients:
        entry = {"recipient": recipient.recipient_name, "phone": recipient.recipient_phone}
        if not recipient.recipient_phone:
            entry.update(success=False, error="Recipient has no phone number")
            results.append(entry)
            continue

        message = format_escalation_message(
            recipient.recipient_name,
            project,
            payload.reason,
            payload.details,
            payload.next_step,
            max_chars=settings.escalation_sms_max_chars,
        )
        try:
            delivery_id = sender.send("sms", recipient.recipient_phone, message)
        except Exception as exc:
            logger.error(
                "Escalation notification failed",
                extra={
                    "context": {
                        "project_id": str(project.id),
                        "recipient": recipient.recipient_name,
                        "error": str(exc),
                    }
                },
            )
            entry.update(success=False, error=str(exc))
        else:
            sent += 1
            entry.update(success=True, delivery_id=delivery_id)
        results.append(entry)

    summary = {
        "notifications_sent": sent,
        "notifications_failed": len(results) - sent,
        "results": results,
    }
    logger.info(
        "Escalation processed",
        extra={
            "context": {
                "project_id": str(project.id),
                "notifications_sent": sent,
                "notifications_failed": summary["notifications_failed"],
            }
        },
    )

    if sent == 0:
        alert_error(
            settings,
            "Escalation could not be delivered",
            {"project": project.name, "recipients": len(results)},
        )
        return Result(
            ok=False,
            value=summary,
            error="All escalation notifications failed",
            error_code="delivery_failed",
        )
    return Result.success(summary)

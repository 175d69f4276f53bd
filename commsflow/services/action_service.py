from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.database import utcnow
from commsflow.logging_config import get_logger
from commsflow.models import ActionRecord, Project
from commsflow.schemas.action import (
    ActionType,
    ReminderPayload,
    dump_action_payload,
    normalize_action_payload,
)
from commsflow.schemas.decision import Decision, DecisionPayload
from commsflow.services.action_state import ActionStatus, approve, reject

logger = get_logger("action_service")

# Decisions that never produce a record
NO_RECORD_DECISIONS = {Decision.NO_ACTION, Decision.UNPARSABLE}

# Internal reads may run without sign-off; everything externally visible needs it
REQUIRES_APPROVAL = {
    ActionType.MESSAGE: True,
    ActionType.DATA_UPDATE: True,
    ActionType.SET_FUTURE_REMINDER: True,
    ActionType.ESCALATION: True,
    ActionType.HUMAN_IN_LOOP: True,
    ActionType.KNOWLEDGE_QUERY: False,
}


class ActionNotFoundError(Exception):
    pass


def compute_next_check_date(now: datetime, days: Optional[int], settings: Settings) -> datetime:
    if not days or days <= 0:
        days = settings.default_reminder_days
    return now + timedelta(days=days)


def _decision_fields(decision: DecisionPayload) -> dict:
    fields = decision.extra_fields()
    fields["reason"] = decision.reason
    if decision.days_until_check is not None:
        fields["days_until_check"] = decision.days_until_check
    if decision.check_reason:
        fields["check_reason"] = decision.check_reason
    return fields


def resolve_action_type(decision: DecisionPayload) -> tuple[ActionType, Optional[str]]:
    """Map a decision to the record type it creates.

    Returns the type plus the unrecognized action_type string, if any, which
    is routed to human review instead of being dropped.
    """
    if decision.decision == Decision.REQUEST_HUMAN_REVIEW:
        return ActionType.HUMAN_IN_LOOP, None
    if decision.decision == Decision.QUERY_KNOWLEDGE_BASE:
        return ActionType.KNOWLEDGE_QUERY, None
    if decision.decision == Decision.SET_FUTURE_REMINDER:
        return ActionType.SET_FUTURE_REMINDER, None

    if not decision.action_type:
        return ActionType.MESSAGE, None
    try:
        return ActionType(decision.action_type), None
    except ValueError:
        return ActionType.HUMAN_IN_LOOP, decision.action_type


def find_pending_duplicate(
    db: Session, project_id: UUID, communication_id: Optional[UUID], action_type: ActionType
) -> Optional[ActionRecord]:
    if communication_id is None:
        return None
    return (
        db.query(ActionRecord)
        .filter(
            ActionRecord.project_id == project_id,
            ActionRecord.communication_id == communication_id,
            ActionRecord.action_type == action_type.value,
            ActionRecord.status == ActionStatus.PENDING.value,
        )
        .first()
    )


def _apply_reminder(
    db: Session,
    project: Project,
    decision: DecisionPayload,
    *,
    communication_id: Optional[UUID],
    prompt_run_id: Optional[str],
    settings: Settings,
    now: datetime,
) -> ActionRecord:
    payload = normalize_action_payload(
        ActionType.SET_FUTURE_REMINDER, _decision_fields(decision), decision.action_payload
    )
    next_check = compute_next_check_date(now, payload.days_until_check, settings)
    project.next_check_date = next_check

    stored = dump_action_payload(payload)
    stored["next_check_date"] = next_check.isoformat()
    record = ActionRecord(
        project_id=project.id,
        communication_id=communication_id,
        prompt_run_id=prompt_run_id,
        action_type=ActionType.SET_FUTURE_REMINDER.value,
        action_payload=stored,
        decision_reason=decision.reason,
        requires_approval=False,
        status=ActionStatus.EXECUTED.value,
        execution_result={
            "success": True,
            "message": f"Next check scheduled for {next_check.date().isoformat()}",
            "details": {"next_check_date": next_check.isoformat()},
        },
        created_at=now,
        executed_at=now,
    )
    db.add(record)
    db.commit()
    logger.info(
        "Future reminder set",
        extra={"context": {"project_id": str(project.id), "next_check_date": next_check.isoformat()}},
    )
    return record


def create_record_from_decision(
    db: Session,
    project: Project,
    decision: DecisionPayload,
    settings: Settings,
    *,
    communication_id: Optional[UUID] = None,
    prompt_run_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[ActionRecord]:
    """Persist the action a decision asks for, if any.

    A reminder is applied immediately and stored as already executed. Every
    other record starts pending; a pending record for the same project,
    communication and type is returned instead of creating another.
    """
    now = now or utcnow()
    if decision.decision in NO_RECORD_DECISIONS:
        logger.info(
            "No action record for decision",
            extra={"context": {"project_id": str(project.id), "decision": decision.decision.value}},
        )
        return None

    action_type, unknown_type = resolve_action_type(decision)
    if action_type == ActionType.SET_FUTURE_REMINDER:
        return _apply_reminder(
            db,
            project,
            decision,
            communication_id=communication_id,
            prompt_run_id=prompt_run_id,
            settings=settings,
            now=now,
        )

    existing = find_pending_duplicate(db, project.id, communication_id, action_type)
    if existing is not None:
        logger.info(
            "Pending action already exists",
            extra={"context": {"action_id": str(existing.id), "action_type": action_type.value}},
        )
        return existing

    fields = _decision_fields(decision)
    if unknown_type:
        fields["description"] = f"Unsupported action type requested: {unknown_type}"
    payload = normalize_action_payload(action_type, fields, decision.action_payload)

    record = ActionRecord(
        project_id=project.id,
        communication_id=communication_id,
        prompt_run_id=prompt_run_id,
        action_type=action_type.value,
        action_payload=dump_action_payload(payload),
        decision_reason=decision.reason,
        requires_approval=REQUIRES_APPROVAL[action_type],
        status=ActionStatus.PENDING.value,
        created_at=now,
    )
    db.add(record)
    db.commit()
    logger.info(
        "Action record created",
        extra={
            "context": {
                "action_id": str(record.id),
                "project_id": str(project.id),
                "action_type": action_type.value,
                "requires_approval": record.requires_approval,
            }
        },
    )
    return record


def reminder_payload_from_record(record: ActionRecord) -> ReminderPayload:
    return normalize_action_payload(ActionType.SET_FUTURE_REMINDER, {}, record.action_payload)


def get_action(db: Session, action_id: UUID) -> ActionRecord:
    record = db.query(ActionRecord).filter(ActionRecord.id == action_id).first()
    if record is None:
        raise ActionNotFoundError(f"Action {action_id} not found")
    return record


def list_actions(
    db: Session,
    *,
    status: Optional[str] = None,
    project_id: Optional[UUID] = None,
    limit: int = 100,
) -> list[ActionRecord]:
    query = db.query(ActionRecord)
    if status:
        query = query.filter(ActionRecord.status == status)
    if project_id:
        query = query.filter(ActionRecord.project_id == project_id)
    return query.order_by(ActionRecord.created_at.desc()).limit(limit).all()


def approve_action(db: Session, action_id: UUID, reviewed_by: Optional[str] = None) -> ActionRecord:
    """pending -> approved. Raises InvalidTransitionError from any other state."""
    record = get_action(db, action_id)
    record.status = approve(ActionStatus(record.status)).value
    record.reviewed_by = reviewed_by
    record.reviewed_at = utcnow()
    db.commit()
    logger.info("Action approved", extra={"context": {"action_id": str(record.id), "reviewed_by": reviewed_by}})
    return record


def reject_action(db: Session, action_id: UUID, reviewed_by: Optional[str] = None) -> ActionRecord:
    record = get_action(db, action_id)
    record.status = reject(ActionStatus(record.status)).value
    record.reviewed_by = reviewed_by
    record.reviewed_at = utcnow()
    db.commit()
    logger.info("Action rejected", extra={"context": {"action_id": str(record.id), "reviewed_by": reviewed_by}})
    return record

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from commsflow.database import ensure_utc, utcnow
from commsflow.dependencies import Services
from commsflow.logging_config import get_logger
from commsflow.models import Project
from commsflow.schemas.decision import Decision
from commsflow.schemas.reminder import ReminderCheckItem
from commsflow.services.action_service import create_record_from_decision
from commsflow.services.decision_service import get_milestone_instructions, run_decision

logger = get_logger("reminder_service")

INACTIVE_CRM_STATUSES = {"archived", "void", "cancelled", "canceled"}


def get_due_projects(db: Session, now: datetime) -> list[Project]:
    """Projects whose next check falls before the start of tomorrow (UTC)."""
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (
        db.query(Project)
        .filter(Project.next_check_date.isnot(None), Project.next_check_date < tomorrow)
        .order_by(Project.next_check_date)
        .all()
    )


def is_project_active(project: Project) -> bool:
    if project.is_test_record:
        return False
    return (project.crm_status or "").strip().lower() not in INACTIVE_CRM_STATUSES


def check_project_reminders(
    db: Session, services: Services, *, now: Optional[datetime] = None
) -> list[ReminderCheckItem]:
    """Re-evaluate every project whose scheduled check is due.

    The scheduled date is cleared afterwards unless the decision set a new one.
    """
    now = now or utcnow()
    items = []

    for project in get_due_projects(db, now):
        scheduled = ensure_utc(project.next_check_date)

        if not is_project_active(project):
            project.next_check_date = None
            db.commit()
            items.append(ReminderCheckItem(project_id=project.id, status="inactive"))
            continue

        result = run_decision(
            db,
            project,
            None,
            services.decision_client,
            services.settings,
            milestone_instructions=get_milestone_instructions(db, project),
            is_reminder_check=True,
            now=now,
        )
        if result.skipped:
            items.append(ReminderCheckItem(project_id=project.id, status="skipped"))
            continue

        item = ReminderCheckItem(project_id=project.id, status="evaluated")
        if result.error:
            item.status = "error"
            item.error = result.error
        else:
            item.decision = result.payload.decision.value
            record = create_record_from_decision(db, project, result.payload, services.settings, now=now)
            if record is not None:
                item.action_record_id = record.id

        if result.payload is None or result.payload.decision != Decision.SET_FUTURE_REMINDER:
            if ensure_utc(project.next_check_date) == scheduled:
                project.next_check_date = None
        db.commit()
        items.append(item)

    logger.info("Reminder check finished", extra={"context": {"projects": len(items)}})
    return items

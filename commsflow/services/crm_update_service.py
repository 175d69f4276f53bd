from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from commsflow.dependencies import Services
from commsflow.logging_config import bind_logger, get_logger
from commsflow.models import Project
from commsflow.schemas.project_update import CRMProjectUpdate, CRMProjectUpdateResponse
from commsflow.services.action_service import create_record_from_decision
from commsflow.services.decision_service import run_decision
from commsflow.services.summary_service import update_project_summary

logger = get_logger("crm_update_service")


class ProjectNotFoundError(Exception):
    pass


def apply_project_fields(project: Project, update: CRMProjectUpdate) -> list[str]:
    changed = []
    for attr in ("address", "next_step", "crm_status"):
        value = getattr(update, attr)
        if value is not None and value != getattr(project, attr):
            setattr(project, attr, value)
            changed.append(attr)
    fields = update.crm_fields()
    if fields:
        project.crm_fields = {**(project.crm_fields or {}), **fields}
        changed.extend(sorted(fields))
    return changed


def apply_crm_project_update(
    db: Session,
    update: CRMProjectUpdate,
    services: Services,
    *,
    now: Optional[datetime] = None,
) -> CRMProjectUpdateResponse:
    """Store a CRM-side project change, refresh the summary and run a decision on it."""
    project = db.query(Project).filter(Project.crm_id == update.crm_id).first()
    if project is None:
        raise ProjectNotFoundError(f"No project with CRM id {update.crm_id}")
    log = bind_logger(logger, project_id=str(project.id), crm_id=update.crm_id)

    changed = apply_project_fields(project, update)
    db.commit()
    log.info("CRM project update stored", context={"changed": changed})

    new_data = {"source": "crm", **update.model_dump(mode="json", exclude_none=True)}
    response = CRMProjectUpdateResponse(project_id=project.id)
    response.summary_updated = update_project_summary(db, project, new_data, services.summary_client, now=now)

    result = run_decision(
        db,
        project,
        None,
        services.decision_client,
        services.settings,
        extra_context={"new_data": new_data},
        now=now,
    )
    if result.skipped:
        response.skipped = True
        return response
    if result.error:
        response.error = result.error
        return response

    response.decision = result.payload.decision.value
    record = create_record_from_decision(db, project, result.payload, services.settings, now=now)
    if record is not None:
        response.action_record_id = record.id
    log.info("CRM project update evaluated", context={"decision": response.decision})
    return response

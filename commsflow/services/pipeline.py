from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from commsflow.dependencies import Services
from commsflow.logging_config import ContextLogger, bind_logger, get_logger
from commsflow.models import Communication, Project, RawWebhook
from commsflow.schemas.webhook import PipelineResponse
from commsflow.services.action_service import create_record_from_decision
from commsflow.services.batch_service import add_to_batch, should_batch
from commsflow.services.correlator import correlate
from commsflow.services.decision_service import run_decision
from commsflow.services.session_service import attach_communication, counterpart_identifier
from commsflow.services.summary_service import communication_new_data, update_project_summary
from commsflow.services.webhook_intake import ingest_raw_webhook, mark_raw_failed

logger = get_logger("pipeline")

UNROUTED_ERROR = "No project correlation found for communication"


def _counterpart_contact_id(communication: Communication) -> Optional[UUID]:
    identifier = counterpart_identifier(communication)
    for participant in communication.participants or []:
        if participant.get("value") == identifier and participant.get("contact_id"):
            # participants are stored as JSON, so the id comes back as text
            return UUID(str(participant["contact_id"]))
    return None


def _process_project(
    db: Session,
    project: Project,
    communication: Communication,
    services: Services,
    response: PipelineResponse,
    log: ContextLogger,
    now: Optional[datetime],
) -> None:
    settings = services.settings
    update_project_summary(db, project, communication_new_data(communication), services.summary_client, now=now)

    if should_batch(db, communication, project.id, settings, now=now):
        add_to_batch(db, communication, project.id, settings, now=now)
        response.batched_project_ids.append(project.id)
        return

    decision = run_decision(db, project, communication, services.decision_client, settings, now=now)
    if decision.skipped:
        response.skipped_project_ids.append(project.id)
        return
    communication.processed_by_agent = True
    db.commit()
    if decision.error:
        response.errors.append(decision.error)
        return

    response.decisions.append(decision.payload.decision.value)
    record = create_record_from_decision(
        db,
        project,
        decision.payload,
        settings,
        communication_id=communication.id,
        now=now,
    )
    if record is not None:
        response.action_record_ids.append(record.id)
        log.info(
            "Action recorded for project",
            context={"project_id": str(project.id), "action_id": str(record.id)},
        )


def process_communication(
    db: Session,
    communication: Communication,
    services: Services,
    *,
    now: Optional[datetime] = None,
) -> PipelineResponse:
    """Correlate, attach to a session, then summarize and decide per project.

    Projects are handled one after another in correlation order. Each step
    commits its own rows, so a failure on one project leaves earlier work in
    place and the remaining projects still run.
    """
    log = bind_logger(logger, communication_id=str(communication.id))

    correlation = correlate(db, communication, services.settings)
    if not correlation.is_routed:
        db.commit()
        log.warning("Communication left unrouted")
        return PipelineResponse(status="error", communication_id=communication.id, error=UNROUTED_ERROR)

    contact_id = _counterpart_contact_id(communication)
    session = attach_communication(db, communication, contact_id=contact_id, project_id=correlation.project_id)
    db.commit()

    response = PipelineResponse(
        status="processed",
        communication_id=communication.id,
        project_ids=correlation.candidate_project_ids,
        is_multi_project=correlation.is_multi_project,
        session_id=session.id if session else None,
    )

    for project_id in correlation.candidate_project_ids:
        project = db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            response.errors.append(f"Project {project_id} disappeared")
            continue
        try:
            _process_project(db, project, communication, services, response, log, now)
        except Exception as exc:
            db.rollback()
            error = f"{type(exc).__name__}: {exc}"
            log.error(
                "Project processing failed",
                context={"project_id": str(project_id), "error": error},
                exc_info=True,
            )
            response.errors.append(error)

    log.info(
        "Communication processed",
        context={
            "projects": len(response.project_ids),
            "skipped": len(response.skipped_project_ids),
            "batched": len(response.batched_project_ids),
            "actions": len(response.action_record_ids),
            "is_multi_project": response.is_multi_project,
        },
    )
    return response


def handle_raw_webhook(db: Session, raw: RawWebhook, services: Services) -> Optional[PipelineResponse]:
    """Everything after the raw row is stored. Failures are written to the raw row."""
    try:
        communication = ingest_raw_webhook(db, raw)
        return process_communication(db, communication, services)
    except Exception as exc:
        logger.error(
            "Webhook processing failed",
            extra={"context": {"webhook_id": str(raw.id), "error": str(exc)}},
            exc_info=True,
        )
        mark_raw_failed(db, raw, f"{type(exc).__name__}: {exc}")
        return None

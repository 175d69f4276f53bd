from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.database import ensure_utc, utcnow
from commsflow.dependencies import Services
from commsflow.logging_config import get_logger
from commsflow.models import CommsBatch, Communication, Project
from commsflow.schemas.batch import BatchProcessItem, BatchStatus
from commsflow.schemas.communication import CommunicationType
from commsflow.services.action_service import create_record_from_decision
from commsflow.services.decision_service import communication_context, run_decision

logger = get_logger("batch_service")

BATCHED_TYPES = {CommunicationType.SMS.value}


def get_open_batch(db: Session, project_id: UUID) -> Optional[CommsBatch]:
    return (
        db.query(CommsBatch)
        .filter(CommsBatch.project_id == project_id, CommsBatch.status == BatchStatus.IN_PROGRESS.value)
        .order_by(CommsBatch.created_at.desc())
        .first()
    )


def batch_size(db: Session, batch: CommsBatch) -> int:
    return db.query(Communication).filter(Communication.batch_id == batch.id).count()


def should_batch(
    db: Session,
    communication: Communication,
    project_id: UUID,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Whether an SMS should wait for the project's batch instead of being decided now.

    A full open batch means decide now. With no open batch, the first SMS in
    the window is decided now and any later one starts a batch.
    """
    if not settings.sms_batching_enabled or communication.type not in BATCHED_TYPES:
        return False
    if communication.is_multi_project:
        return False
    now = now or utcnow()

    batch = get_open_batch(db, project_id)
    if batch is not None:
        size = batch_size(db, batch)
        if size >= settings.batch_max_size:
            logger.info(
                "Batch full, processing message now",
                extra={"context": {"batch_id": str(batch.id), "size": size}},
            )
            return False
        return True

    cutoff = now - timedelta(minutes=settings.batch_window_minutes)
    recent = (
        db.query(Communication)
        .filter(
            Communication.project_id == project_id,
            Communication.type.in_(BATCHED_TYPES),
            Communication.timestamp > cutoff,
            Communication.id != communication.id,
        )
        .count()
    )
    return recent > 0


def add_to_batch(
    db: Session,
    communication: Communication,
    project_id: UUID,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
) -> CommsBatch:
    now = now or utcnow()
    batch = get_open_batch(db, project_id)
    if batch is None:
        batch = CommsBatch(
            project_id=project_id,
            status=BatchStatus.IN_PROGRESS.value,
            scheduled_processing_time=now + timedelta(minutes=settings.batch_window_minutes),
            created_at=now,
        )
        db.add(batch)
        db.flush()
        logger.info(
            "Batch opened",
            extra={
                "context": {
                    "batch_id": str(batch.id),
                    "project_id": str(project_id),
                    "scheduled_processing_time": batch.scheduled_processing_time.isoformat(),
                }
            },
        )
    communication.batch_id = batch.id
    db.commit()
    logger.info(
        "Communication batched",
        extra={"context": {"communication_id": str(communication.id), "batch_id": str(batch.id)}},
    )
    return batch


def get_due_batches(db: Session, now: datetime) -> list[CommsBatch]:
    batches = (
        db.query(CommsBatch)
        .filter(
            CommsBatch.status == BatchStatus.IN_PROGRESS.value,
            CommsBatch.scheduled_processing_time <= now,
        )
        .order_by(CommsBatch.scheduled_processing_time)
        .with_for_update(skip_locked=True)
        .all()
    )
    for batch in batches:
        batch.status = BatchStatus.PROCESSING.value
    db.commit()
    return batches


def _process_batch(db: Session, batch: CommsBatch, services: Services, now: datetime) -> BatchProcessItem:
    item = BatchProcessItem(batch_id=batch.id, project_id=batch.project_id, status="completed")
    project = db.query(Project).filter(Project.id == batch.project_id).first()
    if project is None:
        raise LookupError(f"Project {batch.project_id} not found")

    communications = (
        db.query(Communication)
        .filter(Communication.batch_id == batch.id)
        .order_by(Communication.timestamp)
        .all()
    )
    item.message_count = len(communications)
    if communications:
        latest = communications[-1]
        result = run_decision(
            db,
            project,
            latest,
            services.decision_client,
            services.settings,
            extra_context={"batched_messages": [communication_context(c) for c in communications]},
            now=now,
        )
        if result.skipped:
            # Checked since the batch opened; wait for the window to reopen
            last_check = ensure_utc(project.last_action_check) or now
            batch.status = BatchStatus.IN_PROGRESS.value
            batch.scheduled_processing_time = last_check + timedelta(minutes=services.settings.decision_skip_minutes)
            db.commit()
            item.status = "rescheduled"
            return item
        if result.error:
            batch.status = BatchStatus.ERROR.value
            batch.error_message = result.error
            batch.processed_at = now
            db.commit()
            item.status = "error"
            item.error = result.error
            return item

        item.decision = result.payload.decision.value
        record = create_record_from_decision(
            db, project, result.payload, services.settings, communication_id=latest.id, now=now
        )
        if record is not None:
            item.action_record_id = record.id
        for communication in communications:
            communication.processed_by_agent = True

    batch.status = BatchStatus.COMPLETED.value
    batch.processed_at = now
    db.commit()
    return item


def process_due_batches(db: Session, services: Services, *, now: Optional[datetime] = None) -> list[BatchProcessItem]:
    """Decide once per due batch, with every batched message in the context.

    A batch that fails is marked error and the rest still run.
    """
    now = now or utcnow()
    items = []
    for batch in get_due_batches(db, now):
        batch_id, project_id = batch.id, batch.project_id
        try:
            items.append(_process_batch(db, batch, services, now))
        except Exception as exc:
            db.rollback()
            error = f"{type(exc).__name__}: {exc}"
            logger.error(
                "Batch processing failed",
                extra={"context": {"batch_id": str(batch_id), "error": error}},
                exc_info=True,
            )
            batch.status = BatchStatus.ERROR.value
            batch.error_message = error
            batch.processed_at = now
            db.commit()
            items.append(
                BatchProcessItem(batch_id=batch_id, project_id=project_id, status="error", error=error)
            )

    logger.info("Batch processing finished", extra={"context": {"batches": len(items)}})
    return items

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.database import utcnow
from commsflow.logging_config import get_logger
from commsflow.models import IntegrationJob
from commsflow.schemas.job import JobStatus, OperationType
from commsflow.services.alert_service import alert_error
from commsflow.services.crm_client import CRMAuthError, CRMClient

logger = get_logger("job_queue")

PUSH_OPERATIONS = {OperationType.WRITE, OperationType.UPDATE, OperationType.DELETE, OperationType.APPEND_NOTE}
CLAIMABLE = (JobStatus.PENDING.value, JobStatus.RETRY.value)


class UnsupportedOperationError(Exception):
    pass


def enqueue_job(
    db: Session,
    *,
    company_id: UUID,
    resource_type: str,
    operation_type: str,
    data: dict[str, Any],
    resource_id: Optional[str] = None,
) -> IntegrationJob:
    now = utcnow()
    job = IntegrationJob(
        company_id=company_id,
        resource_type=resource_type,
        resource_id=resource_id,
        operation_type=operation_type,
        payload=data,
        status=JobStatus.PENDING.value,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.flush()
    logger.info(
        "Integration job enqueued",
        extra={
            "context": {
                "job_id": str(job.id),
                "resource_type": resource_type,
                "operation_type": operation_type,
            }
        },
    )
    return job


def backoff_minutes(retry_count: int, cap_minutes: int = 60) -> int:
    """1, 2, 4, 8, ... minutes, never more than cap_minutes."""
    return min(2 ** max(retry_count - 1, 0), cap_minutes)


def claim_jobs(db: Session, *, limit: int = 10, now: Optional[datetime] = None) -> list[IntegrationJob]:
    """Claim due jobs oldest-first and mark them in_progress.

    Rows locked by another poller are skipped (PostgreSQL); SQLite ignores
    the lock clause.
    """
    now = now or utcnow()
    jobs = (
        db.query(IntegrationJob)
        .filter(
            IntegrationJob.status.in_(CLAIMABLE),
            or_(IntegrationJob.next_retry_at.is_(None), IntegrationJob.next_retry_at <= now),
        )
        .order_by(IntegrationJob.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.IN_PROGRESS.value
        job.updated_at = now
    db.commit()
    return jobs


def run_job(job: IntegrationJob, crm: CRMClient) -> Any:
    try:
        operation = OperationType(job.operation_type)
    except ValueError:
        raise UnsupportedOperationError(f"Unsupported operation type: {job.operation_type}")

    if operation == OperationType.READ:
        return crm.fetch(job.resource_type, job.resource_id, job.payload or {})
    if operation in PUSH_OPERATIONS:
        return crm.push(job.resource_type, operation.value, job.resource_id, job.payload or {})
    raise UnsupportedOperationError(f"Unsupported operation type: {job.operation_type}")


def mark_completed(db: Session, job: IntegrationJob, result: Any, now: datetime) -> None:
    job.status = JobStatus.COMPLETED.value
    job.result = result
    job.error_message = None
    job.next_retry_at = None
    job.processed_at = now
    job.updated_at = now
    db.commit()


def mark_failed_attempt(
    db: Session,
    job: IntegrationJob,
    error: str,
    settings: Settings,
    now: datetime,
    *,
    terminal: bool = False,
) -> None:
    """Schedule the next retry, or fail the job for good once retries run out."""
    job.retry_count = (job.retry_count or 0) + 1
    job.updated_at = now

    if not terminal and job.retry_count <= settings.job_max_retries:
        delay = backoff_minutes(job.retry_count, settings.job_backoff_cap_minutes)
        job.status = JobStatus.RETRY.value
        job.next_retry_at = now + timedelta(minutes=delay)
        job.error_message = error[:500]
        db.commit()
        logger.warning(
            "Integration job failed, retry scheduled",
            extra={"context": {"job_id": str(job.id), "retry_count": job.retry_count, "delay_minutes": delay}},
        )
        return

    job.status = JobStatus.FAILED.value
    job.next_retry_at = None
    job.processed_at = now
    if terminal:
        job.error_message = error[:500]
    else:
        job.error_message = f"Max retries ({settings.job_max_retries}) reached. Last error: {error}"[:500]
    db.commit()

    logger.error(
        "Integration job failed permanently",
        extra={"context": {"job_id": str(job.id), "retry_count": job.retry_count, "error": job.error_message}},
    )
    alert_error(
        settings,
        "Integration job failed permanently",
        {"job_id": str(job.id), "resource_type": job.resource_type, "error": job.error_message[:200]},
    )


def process_jobs(
    db: Session,
    crm: CRMClient,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """One poll: claim a batch and run each job to completion, retry or failure."""
    now = now or utcnow()
    jobs = claim_jobs(db, limit=settings.job_batch_size, now=now)
    results = {"claimed": len(jobs), "completed": 0, "retry_scheduled": 0, "failed": 0}

    for job in jobs:
        try:
            result = run_job(job, crm)
        except CRMAuthError as exc:
            mark_failed_attempt(db, job, str(exc), settings, now, terminal=True)
            results["failed"] += 1
            continue
        except Exception as exc:
            mark_failed_attempt(db, job, f"{type(exc).__name__}: {exc}", settings, now)
            if job.status == JobStatus.FAILED.value:
                results["failed"] += 1
            else:
                results["retry_scheduled"] += 1
            continue

        mark_completed(db, job, result, now)
        results["completed"] += 1

    if jobs:
        logger.info("Integration jobs processed", extra={"context": results})
    return results

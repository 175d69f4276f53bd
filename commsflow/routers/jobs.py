from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.models import IntegrationJob
from commsflow.schemas.job import EnqueueJobRequest, JobResponse, ProcessJobsResponse
from commsflow.services.job_queue import enqueue_job, process_jobs

router = APIRouter()


@router.post("/jobs", response_model=JobResponse)
def create_job(request: EnqueueJobRequest, db: Session = Depends(get_db)):
    job = enqueue_job(
        db,
        company_id=request.company_id,
        resource_type=request.resource_type.value,
        operation_type=request.operation_type.value,
        resource_id=request.resource_id,
        data=request.data,
    )
    db.commit()
    return job


@router.post("/jobs/process", response_model=ProcessJobsResponse)
def run_jobs(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """Poll once. Meant to be called by an external scheduler."""
    return ProcessJobsResponse(**process_jobs(db, services.crm_client, services.settings))


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: UUID, db: Session = Depends(get_db)):
    job = db.query(IntegrationJob).filter(IntegrationJob.id == job_id).first()
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job

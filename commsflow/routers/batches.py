from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.schemas.batch import BatchProcessResponse
from commsflow.services.batch_service import process_due_batches

router = APIRouter()


@router.post("/batches/process", response_model=BatchProcessResponse)
def process_batches(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """Decide on every SMS batch whose window has closed."""
    results = process_due_batches(db, services)
    return BatchProcessResponse(count=len(results), results=results)

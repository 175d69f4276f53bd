from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.models import Communication
from commsflow.schemas.webhook import PipelineResponse
from commsflow.services.pipeline import process_communication

router = APIRouter()


@router.post("/communications/{communication_id}/process", response_model=PipelineResponse)
def reprocess_communication(
    communication_id: UUID,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Run a stored communication through routing again, e.g. after contacts were linked."""
    communication = db.query(Communication).filter(Communication.id == communication_id).first()
    if communication is None:
        raise HTTPException(status_code=404, detail=f"Communication {communication_id} not found")
    return process_communication(db, communication, services)

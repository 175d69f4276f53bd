from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.schemas.reminder import ReminderCheckResponse
from commsflow.services.reminder_service import check_project_reminders

router = APIRouter()


@router.post("/reminders/check", response_model=ReminderCheckResponse)
def check_reminders(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """Re-evaluate projects whose scheduled check date is due."""
    results = check_project_reminders(db, services)
    return ReminderCheckResponse(count=len(results), results=results)

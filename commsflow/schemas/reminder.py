from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ReminderCheckItem(BaseModel):
    project_id: UUID
    status: str  # evaluated, skipped, inactive, error
    decision: Optional[str] = None
    action_record_id: Optional[UUID] = None
    error: Optional[str] = None


class ReminderCheckResponse(BaseModel):
    count: int
    results: list[ReminderCheckItem]

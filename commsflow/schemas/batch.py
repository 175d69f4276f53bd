from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class BatchStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class BatchProcessItem(BaseModel):
    batch_id: UUID
    project_id: UUID
    status: str  # completed, rescheduled, error
    message_count: int = 0
    decision: Optional[str] = None
    action_record_id: Optional[UUID] = None
    error: Optional[str] = None


class BatchProcessResponse(BaseModel):
    count: int
    results: list[BatchProcessItem]

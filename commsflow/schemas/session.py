from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: Optional[datetime] = None


class AppendMessageRequest(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SessionResponse(BaseModel):
    id: UUID
    channel_type: str
    channel_identifier: str
    company_id: UUID
    contact_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    last_activity: datetime
    conversation_history: list[HistoryEntry]

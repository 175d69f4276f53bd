from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CommunicationType(str, Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"
    CALL = "CALL"


class Direction(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class Participant(BaseModel):
    type: str  # phone, email
    value: str
    role: Optional[str] = None  # sender, recipient, caller, receiver
    contact_id: Optional[UUID] = None


class NormalizedCommunication(BaseModel):
    """Provider-independent shape produced by the normalizer."""

    type: CommunicationType = CommunicationType.SMS
    subtype: Optional[str] = None
    direction: Direction = Direction.INBOUND
    participants: list[Participant] = Field(default_factory=list)
    content: str = ""
    subject: Optional[str] = None
    timestamp: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    recording_url: Optional[str] = None
    external_id: Optional[str] = None
    provider: Optional[str] = None
    parse_error: Optional[str] = None  # set when the payload could only be read best-effort


class CorrelationResult(BaseModel):
    project_id: Optional[UUID] = None
    is_multi_project: bool = False
    company_id: Optional[UUID] = None
    contact_ids: list[UUID] = Field(default_factory=list)
    candidate_project_ids: list[UUID] = Field(default_factory=list)

    @property
    def is_routed(self) -> bool:
        return bool(self.candidate_project_ids)

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"


class OperationType(str, Enum):
    READ = "read"
    WRITE = "write"
    UPDATE = "update"
    DELETE = "delete"
    APPEND_NOTE = "append_note"


class ResourceType(str, Enum):
    PROJECT = "project"
    TASK = "task"
    NOTE = "note"
    CONTACT = "contact"


class EnqueueJobRequest(BaseModel):
    company_id: UUID = Field(validation_alias=AliasChoices("company_id", "companyId"))
    resource_type: ResourceType = Field(validation_alias=AliasChoices("resource_type", "resourceType"))
    operation_type: OperationType = Field(validation_alias=AliasChoices("operation_type", "operationType"))
    resource_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("resource_id", "resourceId"))
    data: dict[str, Any] = Field(default_factory=dict)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    resource_type: str
    resource_id: Optional[str] = None
    operation_type: str
    status: str
    retry_count: int
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None
    created_at: datetime


class ProcessJobsResponse(BaseModel):
    claimed: int = 0
    completed: int = 0
    retry_scheduled: int = 0
    failed: int = 0

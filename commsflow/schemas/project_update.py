from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SummaryUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    next_step: Optional[str] = None

    @field_validator("summary")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("summary is empty")
        return value


class CRMProjectUpdate(BaseModel):
    """Project change pushed by the CRM. Unknown keys land in crm_fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    crm_id: str = Field(validation_alias=AliasChoices("crm_id", "ID", "id"))
    next_step: Optional[str] = Field(default=None, validation_alias=AliasChoices("next_step", "Next_Step"))
    last_milestone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("last_milestone", "Last_Milestone")
    )
    address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("address", "property_address", "Property_Address")
    )
    crm_status: Optional[str] = Field(default=None, validation_alias=AliasChoices("crm_status", "status", "Status"))

    @field_validator("crm_id", mode="before")
    @classmethod
    def _id_text(cls, value):
        if value is None or str(value).strip() == "":
            raise ValueError("crm_id is required")
        return str(value).strip()

    def crm_fields(self) -> dict[str, Any]:
        fields = dict(self.model_extra or {})
        if self.last_milestone:
            fields["last_milestone"] = self.last_milestone
        return fields


class CRMProjectUpdateResponse(BaseModel):
    project_id: UUID
    summary_updated: bool = False
    skipped: bool = False
    decision: Optional[str] = None
    action_record_id: Optional[UUID] = None
    error: Optional[str] = None

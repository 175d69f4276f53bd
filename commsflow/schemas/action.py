from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class ActionType(str, Enum):
    MESSAGE = "message"
    DATA_UPDATE = "data_update"
    SET_FUTURE_REMINDER = "set_future_reminder"
    ESCALATION = "escalation"
    HUMAN_IN_LOOP = "human_in_loop"
    KNOWLEDGE_QUERY = "knowledge_query"


DEFAULT_MESSAGE_CONTENT = "Follow up on project status"
DEFAULT_RECIPIENT = "Project team"


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class MessagePayload(_PayloadBase):
    action_type: Literal["message"] = "message"
    message_content: str = Field(
        default=DEFAULT_MESSAGE_CONTENT,
        validation_alias=AliasChoices("message_text", "message", "message_content", "content"),
    )
    recipient: str = Field(
        default=DEFAULT_RECIPIENT,
        validation_alias=AliasChoices("recipient", "recipient_name", "to"),
    )
    recipient_phone: Optional[str] = None
    sender: Optional[str] = Field(default=None, validation_alias=AliasChoices("sender", "sender_name"))
    channel: str = "sms"


class DataUpdatePayload(_PayloadBase):
    action_type: Literal["data_update"] = "data_update"
    field: Optional[str] = Field(default=None, validation_alias=AliasChoices("data_field", "field"))
    value: Any = Field(default=None, validation_alias=AliasChoices("data_value", "value"))
    description: str = ""


class ReminderPayload(_PayloadBase):
    action_type: Literal["set_future_reminder"] = "set_future_reminder"
    days_until_check: Optional[int] = None
    check_reason: str = "Follow-up check"
    description: str = ""

    @field_validator("days_until_check", mode="before")
    @classmethod
    def _positive_days(cls, value):
        try:
            days = int(value)
        except (TypeError, ValueError):
            return None
        return days if days > 0 else None


class EscalationPayload(_PayloadBase):
    action_type: Literal["escalation"] = "escalation"
    reason: str = Field(default="Escalation requested", validation_alias=AliasChoices("escalation_reason", "reason"))
    details: str = Field(default="", validation_alias=AliasChoices("details", "description"))
    next_step: Optional[str] = None


class HumanReviewPayload(_PayloadBase):
    action_type: Literal["human_in_loop"] = "human_in_loop"
    reason: str = "Human review requested"
    description: str = "This project requires human intervention"
    priority: str = "medium"


class KnowledgeQueryPayload(_PayloadBase):
    action_type: Literal["knowledge_query"] = "knowledge_query"
    query: str = Field(default="", validation_alias=AliasChoices("query", "question"))
    context: str = ""
    limit: int = 5


ActionPayload = Annotated[
    Union[
        MessagePayload,
        DataUpdatePayload,
        ReminderPayload,
        EscalationPayload,
        HumanReviewPayload,
        KnowledgeQueryPayload,
    ],
    Field(discriminator="action_type"),
]

action_payload_adapter = TypeAdapter(ActionPayload)

# Each pass drops the fields pydantic rejected and validates again
_MAX_REPAIR_PASSES = 3


def _clean(data: Optional[dict]) -> dict:
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if v is not None and v != ""}


def normalize_action_payload(action_type: ActionType, top_level: dict, nested: Optional[dict] = None):
    """Map every known alias into one canonical payload for the action type.

    Top-level decision fields take precedence over the nested action_payload.
    Missing optional fields fall back to defaults instead of failing.
    """
    merged = {**_clean(nested), **_clean(top_level)}
    merged["action_type"] = ActionType(action_type).value
    for _ in range(_MAX_REPAIR_PASSES):
        try:
            return action_payload_adapter.validate_python(merged)
        except ValidationError as exc:
            bad_keys = _invalid_keys(exc, merged)
            if not bad_keys:
                break
            for key in bad_keys:
                merged.pop(key, None)
    return action_payload_adapter.validate_python({"action_type": merged["action_type"]})


def _invalid_keys(exc: ValidationError, merged: dict) -> set:
    # loc is (tag, field, ...); the field may be reported under any alias
    keys = set()
    for error in exc.errors():
        for part in error.get("loc", ())[1:]:
            if part in merged and part != "action_type":
                keys.add(part)
    return keys


def dump_action_payload(payload) -> dict:
    return payload.model_dump(mode="json", exclude={"action_type"})


class ActionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    communication_id: Optional[UUID] = None
    action_type: str
    action_payload: dict
    requires_approval: bool
    status: str
    decision_reason: Optional[str] = None
    execution_result: Optional[dict] = None
    reviewed_by: Optional[str] = None
    created_at: datetime
    executed_at: Optional[datetime] = None


class ActionListResponse(BaseModel):
    count: int
    actions: list[ActionRecordResponse]


class ReviewRequest(BaseModel):
    reviewed_by: Optional[str] = None
    execute: bool = True

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Decision(str, Enum):
    ACTION_NEEDED = "ACTION_NEEDED"
    NO_ACTION = "NO_ACTION"
    SET_FUTURE_REMINDER = "SET_FUTURE_REMINDER"
    REQUEST_HUMAN_REVIEW = "REQUEST_HUMAN_REVIEW"
    QUERY_KNOWLEDGE_BASE = "QUERY_KNOWLEDGE_BASE"
    UNPARSABLE = "UNPARSABLE"


class DecisionPayload(BaseModel):
    # Unknown top-level keys are kept so aliased action fields
    # (message_text, data_field, ...) survive until normalization.
    model_config = ConfigDict(extra="allow")

    decision: Decision
    reason: str = ""
    action_type: Optional[str] = None
    action_payload: dict[str, Any] = Field(default_factory=dict)
    days_until_check: Optional[int] = None
    check_reason: Optional[str] = None
    raw_response: Optional[str] = None

    @field_validator("decision", mode="before")
    @classmethod
    def _upper_decision(cls, value):
        if isinstance(value, str):
            return value.strip().upper().replace(" ", "_")
        return value

    @field_validator("action_type", mode="before")
    @classmethod
    def _lower_action_type(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    @field_validator("action_payload", mode="before")
    @classmethod
    def _payload_dict(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("days_until_check", mode="before")
    @classmethod
    def _positive_days(cls, value):
        try:
            days = int(value)
        except (TypeError, ValueError):
            return None
        return days if days > 0 else None

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_text(cls, value):
        return "" if value is None else str(value)

    @classmethod
    def unparsable(cls, reason: str, raw_response: Optional[str] = None) -> "DecisionPayload":
        return cls(decision=Decision.UNPARSABLE, reason=reason, raw_response=raw_response)

    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class DecisionResult(BaseModel):
    """Outcome of one decision attempt for one project."""

    project_id: Optional[str] = None
    skipped: bool = False
    payload: Optional[DecisionPayload] = None
    error: Optional[str] = None

    @classmethod
    def skip(cls, project_id) -> "DecisionResult":
        return cls(project_id=str(project_id), skipped=True)

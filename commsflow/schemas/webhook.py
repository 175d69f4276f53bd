import base64
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel


class WebhookAck(BaseModel):
    success: bool
    webhook_id: Optional[UUID] = None
    message: Optional[str] = None


class RawWebhookResponse(BaseModel):
    """Stored webhook. raw_body_base64 is the exact bytes; raw_body is set only when they are UTF-8."""

    id: UUID
    service_name: str
    external_id: Optional[str] = None
    content_type: Optional[str] = None
    raw_body: Optional[str] = None
    raw_body_base64: str
    raw_payload: Optional[Any] = None
    communication_id: Optional[UUID] = None
    processed: bool
    processing_error: Optional[str] = None
    received_at: datetime

    @classmethod
    def from_row(cls, raw) -> "RawWebhookResponse":
        body = bytes(raw.raw_body or b"")
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            text = None
        return cls(
            id=raw.id,
            service_name=raw.service_name,
            external_id=raw.external_id,
            content_type=raw.content_type,
            raw_body=text,
            raw_body_base64=base64.b64encode(body).decode("ascii"),
            raw_payload=raw.raw_payload,
            communication_id=raw.communication_id,
            processed=raw.processed,
            processing_error=raw.processing_error,
            received_at=raw.received_at,
        )


class PipelineResponse(BaseModel):
    status: str
    communication_id: Optional[UUID] = None
    project_ids: list[UUID] = []
    is_multi_project: bool = False
    session_id: Optional[UUID] = None
    action_record_ids: list[UUID] = []
    skipped_project_ids: list[UUID] = []
    batched_project_ids: list[UUID] = []
    decisions: list[str] = []
    errors: list[str] = []
    error: Optional[str] = None

import json
from typing import Optional
from urllib.parse import parse_qsl
from uuid import UUID

from sqlalchemy.orm import Session

from commsflow.logging_config import get_logger
from commsflow.models import Communication, Company, RawWebhook
from commsflow.schemas.communication import NormalizedCommunication
from commsflow.services.matching import last_ten_digits
from commsflow.services.normalizer import normalize

logger = get_logger("webhook_intake")

EXTERNAL_ID_KEYS = ("CallSid", "MessageSid", "SmsSid", "message_id", "id", "call_id", "sms_id")


def store_raw_webhook(
    db: Session,
    *,
    service_name: str,
    body: bytes,
    content_type: Optional[str] = None,
    company_id: Optional[UUID] = None,
) -> RawWebhook:
    """Persist the request body verbatim and commit before anything reads it."""
    raw = RawWebhook(
        service_name=service_name,
        content_type=content_type,
        raw_body=body or b"",
        company_id=company_id,
    )
    db.add(raw)
    db.commit()
    logger.info(
        "Raw webhook stored",
        extra={"context": {"webhook_id": str(raw.id), "service": service_name, "bytes": len(body or b"")}},
    )
    return raw


def content_charset(content_type: Optional[str]) -> Optional[str]:
    for param in (content_type or "").split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"').lower()
    return None


def decode_body(body: bytes, content_type: Optional[str] = None) -> str:
    """Text view of a stored body, for parsing only.

    Tries the declared charset, then UTF-8, then Latin-1, which accepts any
    byte sequence.
    """
    body = body or b""
    for encoding in (content_charset(content_type), "utf-8"):
        if not encoding:
            continue
        try:
            return body.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return body.decode("latin-1")


def parse_body(raw_body: str, content_type: Optional[str]) -> Optional[dict]:
    """Best-effort decode of JSON or form-encoded bodies. Returns None when neither fits."""
    text = (raw_body or "").strip()
    if not text:
        return None

    ctype = (content_type or "").lower()
    if "json" in ctype or text.startswith("{"):
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            return payload
        if payload is not None:
            return None

    if "=" in text:
        pairs = parse_qsl(text, keep_blank_values=True)
        if pairs:
            return dict(pairs)
    return None


def _external_id(payload: Optional[dict]) -> Optional[str]:
    if not payload:
        return None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    for key in EXTERNAL_ID_KEYS:
        if data.get(key):
            return str(data[key])
    return None


def resolve_company_id(db: Session, normalized: NormalizedCommunication) -> Optional[UUID]:
    """Match our own agent number against the participants."""
    suffixes = {last_ten_digits(p.value) for p in normalized.participants if p.type == "phone"}
    suffixes.discard("")
    if not suffixes:
        return None
    for company in db.query(Company).filter(Company.agent_phone_number.isnot(None)).all():
        if last_ten_digits(company.agent_phone_number) in suffixes:
            return company.id
    return None


def ingest_raw_webhook(db: Session, raw: RawWebhook) -> Communication:
    """Parse, normalize and persist a stored webhook as a Communication.

    Parse problems are recorded on the raw row; a communication is still
    created so the message is visible downstream.
    """
    payload = parse_body(decode_body(raw.raw_body, raw.content_type), raw.content_type)
    raw.raw_payload = payload
    raw.external_id = _external_id(payload)

    normalized = normalize(payload, raw.service_name)
    company_id = raw.company_id or resolve_company_id(db, normalized)

    communication = Communication(
        company_id=company_id,
        raw_webhook_id=raw.id,
        provider=normalized.provider,
        type=normalized.type.value,
        subtype=normalized.subtype,
        direction=normalized.direction.value,
        participants=[p.model_dump(mode="json", exclude_none=True) for p in normalized.participants],
        content=normalized.content,
        subject=normalized.subject,
        duration_seconds=normalized.duration_seconds,
        recording_url=normalized.recording_url,
        timestamp=normalized.timestamp,
    )
    db.add(communication)
    db.flush()

    raw.communication_id = communication.id
    raw.processed = normalized.parse_error is None
    raw.processing_error = normalized.parse_error
    db.commit()

    logger.info(
        "Communication normalized",
        extra={
            "context": {
                "webhook_id": str(raw.id),
                "communication_id": str(communication.id),
                "type": communication.type,
                "participants": len(communication.participants),
                "parse_error": normalized.parse_error,
            }
        },
    )
    return communication


def mark_raw_failed(db: Session, raw: RawWebhook, error: str) -> None:
    db.rollback()
    raw.processed = False
    raw.processing_error = error[:500]
    db.add(raw)
    db.commit()

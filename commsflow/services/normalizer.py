"""Turn provider webhook payloads into one canonical communication shape."""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from commsflow.logging_config import get_logger
from commsflow.schemas.communication import CommunicationType, Direction, NormalizedCommunication, Participant
from commsflow.services.matching import format_phone_number

logger = get_logger("normalizer")

TWILIO_CALL_STATUS = {
    "completed": "CALL_COMPLETED",
    "no-answer": "CALL_NO_ANSWER",
    "busy": "CALL_BUSY",
    "canceled": "CALL_CANCELED",
    "failed": "CALL_FAILED",
}

EMAIL_ADDRESS_RE = re.compile(r"[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)+")
HTML_TAG_RE = re.compile(r"<[^>]+>")


def _first(payload: dict, *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings (with or without Z) and unix seconds/milliseconds."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        seconds = float(value)
        if seconds > 10_000_000_000:
            seconds = seconds / 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _direction(value: Any) -> Direction:
    text = _text(value).lower()
    if text.startswith("outbound") or text in {"outgoing", "out", "sent"}:
        return Direction.OUTBOUND
    return Direction.INBOUND


def _phone(value: Any, role: str) -> Optional[Participant]:
    formatted = format_phone_number(_text(value))
    if not formatted:
        return None
    return Participant(type="phone", value=formatted, role=role)


def _emails(value: Any, role: str) -> list[Participant]:
    return [Participant(type="email", value=addr.lower(), role=role) for addr in EMAIL_ADDRESS_RE.findall(_text(value))]


def _participants(*items: Optional[Participant]) -> list[Participant]:
    return [p for p in items if p is not None]


def parse_twilio(payload: dict) -> NormalizedCommunication:
    call_sid = payload.get("CallSid")
    if call_sid or payload.get("CallStatus"):
        status = _text(payload.get("CallStatus")).lower()
        return NormalizedCommunication(
            type=CommunicationType.CALL,
            subtype=TWILIO_CALL_STATUS.get(status, "CALL_OTHER"),
            direction=_direction(payload.get("Direction")),
            participants=_participants(
                _phone(payload.get("From"), "caller"),
                _phone(payload.get("To"), "receiver"),
            ),
            content=_text(payload.get("TranscriptionText")),
            duration_seconds=_to_int(payload.get("CallDuration")),
            recording_url=payload.get("RecordingUrl"),
            external_id=call_sid,
            provider="twilio",
        )

    return NormalizedCommunication(
        type=CommunicationType.SMS,
        direction=_direction(payload.get("Direction")),
        participants=_participants(
            _phone(payload.get("From"), "sender"),
            _phone(payload.get("To"), "recipient"),
        ),
        content=_text(payload.get("Body")),
        external_id=_first(payload, "MessageSid", "SmsSid"),
        provider="twilio",
    )


def parse_justcall(payload: dict) -> NormalizedCommunication:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    kind = _text(_first(data, "type", "event_type")).lower()
    is_call = "call" in kind or "call_type" in data
    is_sms = "sms" in kind or "message" in kind or "message_type" in data

    direction = _direction(_first(data, "direction", "call_direction", "sms_direction"))
    timestamp = parse_timestamp(_first(data, "timestamp", "start_time", "date", "datetime"))
    external_id = _first(data, "id", "call_id", "sms_id")
    if external_id is not None:
        external_id = str(external_id)

    from_role, to_role = ("caller", "receiver") if is_call and not is_sms else ("sender", "recipient")
    participants = _participants(
        _phone(_first(data, "from", "contact_number"), from_role),
        _phone(_first(data, "to", "justcall_number"), to_role),
    )

    if is_call and not is_sms:
        return NormalizedCommunication(
            type=CommunicationType.CALL,
            subtype="CALL_" + (_text(data.get("call_type")).upper() or "OTHER"),
            direction=direction,
            participants=participants,
            content=_text(_first(data, "notes", "transcript", "transcription")),
            duration_seconds=_to_int(_first(data, "duration", "call_duration")),
            recording_url=_first(data, "recording_url", "recording"),
            timestamp=timestamp,
            external_id=external_id,
            provider="justcall",
        )

    return NormalizedCommunication(
        type=CommunicationType.SMS,
        direction=direction,
        participants=participants,
        content=_text(_first(data, "text", "body", "message", "content")),
        timestamp=timestamp,
        external_id=external_id,
        provider="justcall",
    )


def parse_email(payload: dict) -> NormalizedCommunication:
    body = _text(_first(payload, "text", "body_plain", "body", "content"))
    if not body:
        body = HTML_TAG_RE.sub(" ", _text(payload.get("html")))
        body = re.sub(r"\s+", " ", body).strip()

    return NormalizedCommunication(
        type=CommunicationType.EMAIL,
        direction=_direction(payload.get("direction")),
        participants=_emails(_first(payload, "from", "sender"), "sender")
        + _emails(_first(payload, "to", "recipient"), "recipient"),
        content=body,
        subject=_text(payload.get("subject")) or None,
        timestamp=parse_timestamp(_first(payload, "timestamp", "date")),
        external_id=_first(payload, "message_id", "Message-Id", "id"),
        provider="email",
    )


def parse_generic(payload: dict) -> NormalizedCommunication:
    """Last resort for unknown providers: pick whatever recognizable fields exist."""
    if any(key in payload for key in ("CallSid", "MessageSid", "SmsSid")):
        return parse_twilio(payload)
    if "subject" in payload or "html" in payload:
        return parse_email(payload)

    raw_type = _text(payload.get("type")).upper()
    comm_type = CommunicationType(raw_type) if raw_type in CommunicationType.__members__ else CommunicationType.SMS
    sender = _first(payload, "from", "sender", "phone")
    recipient = _first(payload, "to", "recipient")
    if comm_type == CommunicationType.EMAIL:
        participants = _emails(sender, "sender") + _emails(recipient, "recipient")
    else:
        participants = _participants(_phone(sender, "sender"), _phone(recipient, "recipient"))

    return NormalizedCommunication(
        type=comm_type,
        direction=_direction(payload.get("direction")),
        participants=participants,
        content=_text(_first(payload, "content", "message", "body", "text")),
        timestamp=parse_timestamp(_first(payload, "timestamp", "date", "created_at")),
        external_id=_first(payload, "id", "message_id"),
        provider="generic",
    )


PARSERS: dict[str, Callable[[dict], NormalizedCommunication]] = {
    "twilio": parse_twilio,
    "justcall": parse_justcall,
    "email": parse_email,
    "generic": parse_generic,
}


def _fallback(provider_hint: str, error: str) -> NormalizedCommunication:
    comm_type = CommunicationType.EMAIL if provider_hint == "email" else CommunicationType.SMS
    return NormalizedCommunication(
        type=comm_type,
        direction=Direction.INBOUND,
        content="",
        provider=provider_hint or "generic",
        parse_error=error,
    )


def normalize(raw_payload: Optional[dict], provider_hint: str) -> NormalizedCommunication:
    """Never raises: unreadable payloads come back with empty content and parse_error set."""
    hint = (provider_hint or "generic").strip().lower()
    if not isinstance(raw_payload, dict) or not raw_payload:
        logger.warning("Empty or non-object webhook payload", extra={"context": {"provider": hint}})
        return _fallback(hint, "Payload is empty or not an object")

    parser = PARSERS.get(hint, parse_generic)
    try:
        communication = parser(raw_payload)
    except Exception as exc:
        logger.warning(
            "Webhook payload could not be normalized",
            extra={"context": {"provider": hint, "error": str(exc)}},
        )
        return _fallback(hint, f"{type(exc).__name__}: {exc}")

    if communication.timestamp is None:
        communication.timestamp = datetime.now(timezone.utc)
    return communication

import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from commsflow.database import utcnow
from commsflow.logging_config import get_logger
from commsflow.models import ChatSession, ChatSessionMessage, Communication
from commsflow.schemas.communication import CommunicationType, Direction

logger = get_logger("session_service")

CHANNEL_TYPES = {"web", "sms", "email"}
HISTORY_ROLES = {"user", "assistant"}
APPEND_ATTEMPTS = 5


class SessionError(Exception):
    pass


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise SessionError(f"Atomic session insert is not supported on {dialect}")


def get_or_create_session(
    db: Session,
    *,
    channel_type: str,
    channel_identifier: str,
    company_id: UUID,
    contact_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> ChatSession:
    """Find or insert the session for (channel_type, channel_identifier, company_id).

    The insert is ON CONFLICT DO NOTHING against the unique key, so concurrent
    callers with identical keys converge on one row.
    """
    if channel_type not in CHANNEL_TYPES:
        raise SessionError(f"Unknown channel type: {channel_type}")
    if not channel_identifier:
        raise SessionError("channel_identifier is required")

    now = utcnow()
    insert = _insert_for(db)
    stmt = (
        insert(ChatSession)
        .values(
            id=uuid.uuid4(),
            channel_type=channel_type,
            channel_identifier=channel_identifier,
            company_id=company_id,
            contact_id=contact_id,
            project_id=project_id,
            last_activity=now,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["channel_type", "channel_identifier", "company_id"])
    )
    created = db.execute(stmt).rowcount > 0

    session = (
        db.query(ChatSession)
        .filter(
            ChatSession.channel_type == channel_type,
            ChatSession.channel_identifier == channel_identifier,
            ChatSession.company_id == company_id,
        )
        .one()
    )

    # Fill linkage learned later without overwriting what is already set
    if contact_id and not session.contact_id:
        session.contact_id = contact_id
    if project_id and not session.project_id:
        session.project_id = project_id
    db.flush()

    if created:
        logger.info(
            "Chat session created",
            extra={"context": {"session_id": str(session.id), "channel": channel_type}},
        )
    return session


def append_message(
    db: Session,
    session_id: UUID,
    *,
    role: str,
    content: str,
    communication_id: Optional[UUID] = None,
    at: Optional[datetime] = None,
) -> ChatSessionMessage:
    """Append one history entry with the next sequence number.

    Each entry is its own row; a concurrent append that grabs the same
    sequence loses on the unique key and retries with the next one.
    """
    if role not in HISTORY_ROLES:
        raise SessionError(f"Unknown history role: {role}")

    at = at or utcnow()
    for attempt in range(1, APPEND_ATTEMPTS + 1):
        next_sequence = db.execute(
            select(func.coalesce(func.max(ChatSessionMessage.sequence), 0) + 1).where(
                ChatSessionMessage.session_id == session_id
            )
        ).scalar_one()
        entry = ChatSessionMessage(
            session_id=session_id,
            sequence=next_sequence,
            role=role,
            content=content or "",
            communication_id=communication_id,
            created_at=at,
        )
        try:
            with db.begin_nested():
                db.add(entry)
        except IntegrityError:
            logger.info(
                "History sequence taken, retrying append",
                extra={"context": {"session_id": str(session_id), "attempt": attempt}},
            )
            continue

        db.query(ChatSession).filter(ChatSession.id == session_id).update({ChatSession.last_activity: at})
        db.flush()
        return entry

    raise SessionError(f"Could not append to session {session_id} after {APPEND_ATTEMPTS} attempts")


def get_history(db: Session, session_id: UUID, limit: Optional[int] = None) -> list[dict]:
    """Ordered history; with a limit, the most recent entries (still oldest first)."""
    query = db.query(ChatSessionMessage).filter(ChatSessionMessage.session_id == session_id)
    if limit:
        rows = query.order_by(ChatSessionMessage.sequence.desc()).limit(limit).all()
        rows.reverse()
    else:
        rows = query.order_by(ChatSessionMessage.sequence).all()
    return [row.as_history_entry() for row in rows]


def channel_for_communication(communication: Communication) -> Optional[str]:
    if communication.type == CommunicationType.SMS.value:
        return "sms"
    if communication.type == CommunicationType.EMAIL.value:
        return "email"
    return None  # calls have no chat session


def counterpart_identifier(communication: Communication) -> Optional[str]:
    """The external party: the sender of inbound traffic, the recipient of outbound."""
    inbound = communication.direction == Direction.INBOUND.value
    wanted = {"sender", "caller"} if inbound else {"recipient", "receiver"}
    participants = communication.participants or []
    for participant in participants:
        if participant.get("role") in wanted and participant.get("value"):
            return participant["value"]
    return participants[0].get("value") if participants else None


def attach_communication(
    db: Session,
    communication: Communication,
    *,
    contact_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> Optional[ChatSession]:
    """Find the session for a communication, record it in history and link both ways."""
    channel = channel_for_communication(communication)
    identifier = counterpart_identifier(communication)
    if not channel or not identifier or not communication.company_id:
        logger.info(
            "No session for communication",
            extra={"context": {"communication_id": str(communication.id), "type": communication.type}},
        )
        return None

    session = get_or_create_session(
        db,
        channel_type=channel,
        channel_identifier=identifier,
        company_id=communication.company_id,
        contact_id=contact_id,
        project_id=project_id,
    )
    role = "user" if communication.direction == Direction.INBOUND.value else "assistant"
    append_message(
        db,
        session.id,
        role=role,
        content=communication.content,
        communication_id=communication.id,
        at=communication.timestamp,
    )

    communication.session_id = session.id
    db.flush()
    return session

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from commsflow.database import Base, utcnow


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint("channel_type", "channel_identifier", "company_id", name="uq_chat_sessions_channel"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_type = Column(Text, nullable=False)  # web, sms, email
    channel_identifier = Column(Text, nullable=False)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id"))
    project_id = Column(Uuid, ForeignKey("projects.id"))
    last_activity = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messages = relationship(
        "ChatSessionMessage",
        back_populates="session",
        order_by="ChatSessionMessage.sequence",
    )

    @property
    def conversation_history(self) -> list[dict]:
        return [m.as_history_entry() for m in self.messages]


class ChatSessionMessage(Base):
    """One history entry; (session_id, sequence) is unique so appends never overwrite."""

    __tablename__ = "chat_session_messages"
    __table_args__ = (UniqueConstraint("session_id", "sequence", name="uq_chat_session_messages_seq"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("chat_sessions.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False, default="")
    communication_id = Column(Uuid)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    session = relationship("ChatSession", back_populates="messages")

    def as_history_entry(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

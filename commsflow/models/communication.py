import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid

from commsflow.database import Base, JSONType, utcnow


class Communication(Base):
    __tablename__ = "communications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"))
    raw_webhook_id = Column(Uuid, ForeignKey("raw_webhooks.id"))
    provider = Column(Text)
    type = Column(Text, nullable=False)  # SMS, EMAIL, CALL
    subtype = Column(Text)  # CALL_COMPLETED, CALL_NO_ANSWER, ...
    direction = Column(Text, nullable=False)  # INBOUND, OUTBOUND
    participants = Column(JSONType, nullable=False, default=list)
    content = Column(Text, nullable=False, default="")
    subject = Column(Text)
    duration_seconds = Column(Integer)
    recording_url = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    project_id = Column(Uuid, ForeignKey("projects.id"))
    session_id = Column(Uuid, ForeignKey("chat_sessions.id"))
    batch_id = Column(Uuid, ForeignKey("comms_batches.id"))
    is_multi_project = Column(Boolean, nullable=False, default=False)
    processed_by_agent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

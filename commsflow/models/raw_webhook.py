import uuid

from sqlalchemy import Boolean, Column, DateTime, LargeBinary, Text, Uuid

from commsflow.database import Base, JSONType, utcnow


class RawWebhook(Base):
    __tablename__ = "raw_webhooks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    service_name = Column(Text, nullable=False)  # twilio, justcall, email, generic
    external_id = Column(Text)  # CallSid / MessageSid / provider id
    content_type = Column(Text)
    raw_body = Column(LargeBinary, nullable=False, default=b"")  # exact request bytes
    raw_payload = Column(JSONType)  # parsed JSON or form fields, when parseable
    company_id = Column(Uuid)
    communication_id = Column(Uuid)
    processed = Column(Boolean, nullable=False, default=False)
    processing_error = Column(Text)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

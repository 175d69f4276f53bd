import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid

from commsflow.database import Base, JSONType, utcnow


class IntegrationJob(Base):
    __tablename__ = "integration_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    resource_type = Column(Text, nullable=False)  # project, task, note, contact
    resource_id = Column(Text)
    operation_type = Column(Text, nullable=False)  # read, write, update, delete, append_note
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="pending")
    retry_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True))
    error_message = Column(Text)
    result = Column(JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True))

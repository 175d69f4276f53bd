import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from commsflow.database import Base, utcnow


class CommsBatch(Base):
    """SMS messages for one project held back and decided on together."""

    __tablename__ = "comms_batches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    status = Column(Text, nullable=False, default="in_progress")  # in_progress, processing, completed, error
    scheduled_processing_time = Column(DateTime(timezone=True), nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True))

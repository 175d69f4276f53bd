import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid

from commsflow.database import Base, JSONType, utcnow


class ActionRecord(Base):
    __tablename__ = "action_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    communication_id = Column(Uuid, ForeignKey("communications.id"))
    prompt_run_id = Column(Text)
    action_type = Column(Text, nullable=False)
    action_payload = Column(JSONType, nullable=False, default=dict)
    decision_reason = Column(Text)
    requires_approval = Column(Boolean, nullable=False, default=True)
    status = Column(Text, nullable=False, default="pending")
    execution_result = Column(JSONType)
    reviewed_by = Column(Text)
    reviewed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    executed_at = Column(DateTime(timezone=True))

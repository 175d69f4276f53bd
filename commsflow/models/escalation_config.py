import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from commsflow.database import Base, JSONType


class EscalationConfig(Base):
    __tablename__ = "escalation_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    recipient_name = Column(Text)
    recipient_phone = Column(Text)
    recipient_email = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    notification_types = Column(JSONType, nullable=False, default=lambda: ["escalation"])

    company = relationship("Company", back_populates="escalation_configs")

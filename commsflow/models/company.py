import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from commsflow.database import Base, utcnow


class Company(Base):
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    agent_name = Column(Text)  # signature used on outbound messages
    agent_phone_number = Column(Text)  # our side of SMS/call threads
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    contacts = relationship("Contact", back_populates="company")
    projects = relationship("Project", back_populates="company")
    escalation_configs = relationship("EscalationConfig", back_populates="company")

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship, validates

from commsflow.database import Base, utcnow
from commsflow.services.matching import last_ten_digits


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    full_name = Column(Text)
    role = Column(Text)  # free text: homeowner, roofer, PM, ...
    phone_number = Column(Text)
    phone_suffix = Column(Text, index=True)  # last 10 digits of phone_number
    email = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    company = relationship("Company", back_populates="contacts")
    project_links = relationship("ProjectContact", back_populates="contact")

    @validates("phone_number")
    def _sync_phone_suffix(self, key, value):
        self.phone_suffix = last_ten_digits(value) or None
        return value

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from commsflow.database import Base, JSONType, utcnow


class ProjectTrack(Base):
    __tablename__ = "project_tracks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    roles = Column(Text)  # free-text role guidance passed to the decision context
    base_prompt = Column(Text)

    milestones = relationship("ProjectTrackMilestone", back_populates="track")


class ProjectTrackMilestone(Base):
    __tablename__ = "project_track_milestones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    track_id = Column(Uuid, ForeignKey("project_tracks.id"), nullable=False)
    step_title = Column(Text, nullable=False)
    prompt_instructions = Column(Text)

    track = relationship("ProjectTrack", back_populates="milestones")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    track_id = Column(Uuid, ForeignKey("project_tracks.id"))
    name = Column(Text, nullable=False)
    crm_id = Column(Text)  # id in the external CRM
    address = Column(Text)
    summary = Column(Text)
    next_step = Column(Text)
    crm_status = Column(Text)
    is_test_record = Column(Boolean, nullable=False, default=False)
    crm_fields = Column(JSONType, nullable=False, default=dict)
    last_action_check = Column(DateTime(timezone=True))
    next_check_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    company = relationship("Company", back_populates="projects")
    track = relationship("ProjectTrack")
    contact_links = relationship("ProjectContact", back_populates="project")


class ProjectContact(Base):
    __tablename__ = "project_contacts"

    project_id = Column(Uuid, ForeignKey("projects.id"), primary_key=True)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), primary_key=True)

    project = relationship("Project", back_populates="contact_links")
    contact = relationship("Contact", back_populates="project_links")

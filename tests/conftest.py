from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import commsflow.models  # noqa: F401
from commsflow.config import Settings
from commsflow.database import Base, build_session_factory
from commsflow.dependencies import Services
from commsflow.main import create_app
from commsflow.models import Company, Contact, EscalationConfig, Project, ProjectContact, ProjectTrack
from commsflow.schemas.decision import DecisionPayload
from commsflow.schemas.project_update import SummaryUpdate


@pytest.fixture
def engine():
    """In-memory SQLite shared by the test session and the app's request sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(_env_file=None, database_url="sqlite://", webhook_secret=None)


@pytest.fixture
def decision_client():
    client = Mock()
    client.decide.return_value = DecisionPayload(decision="NO_ACTION", reason="Nothing to do")
    return client


@pytest.fixture
def channel_sender():
    sender = Mock()
    sender.name = "twilio"
    sender.send.return_value = "SM123"
    return sender


@pytest.fixture
def crm_client():
    client = Mock()
    client.push.return_value = {}
    return client


@pytest.fixture
def knowledge_client():
    client = Mock()
    client.search.return_value = []
    return client


@pytest.fixture
def summary_client():
    client = Mock()
    client.summarize.return_value = SummaryUpdate(summary="Homeowner is waiting on a crew date")
    return client


@pytest.fixture
def services(settings, decision_client, channel_sender, crm_client, knowledge_client, summary_client):
    return Services(
        settings=settings,
        decision_client=decision_client,
        channel_sender=channel_sender,
        crm_client=crm_client,
        knowledge_client=knowledge_client,
        summary_client=summary_client,
    )


@pytest.fixture
def app(settings, session_factory, services):
    return create_app(settings, session_factory=session_factory, services=services)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def company(db):
    company = Company(name="Acme Roofing", agent_name="Acme Assistant", agent_phone_number="+1 (555) 000-0000")
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def make_contact(db, company):
    def _make(full_name, phone_number=None, role=None, email=None):
        contact = Contact(
            company_id=company.id,
            full_name=full_name,
            phone_number=phone_number,
            role=role,
            email=email,
        )
        db.add(contact)
        db.commit()
        return contact

    return _make


@pytest.fixture
def make_project(db, company):
    def _make(name="Smith Residence", contacts=(), **fields):
        project = Project(company_id=company.id, name=name, **fields)
        db.add(project)
        db.flush()
        for contact in contacts:
            db.add(ProjectContact(project_id=project.id, contact_id=contact.id))
        db.commit()
        return project

    return _make


@pytest.fixture
def track(db, company):
    track = ProjectTrack(company_id=company.id, name="Residential Roofing", roles="PM, roofer, homeowner")
    db.add(track)
    db.commit()
    return track


@pytest.fixture
def make_escalation_recipient(db, company):
    def _make(name, phone, is_active=True, notification_types=("escalation",)):
        config = EscalationConfig(
            company_id=company.id,
            recipient_name=name,
            recipient_phone=phone,
            is_active=is_active,
            notification_types=list(notification_types),
        )
        db.add(config)
        db.commit()
        return config

    return _make

import pytest

from commsflow.models import Communication
from commsflow.services.correlator import correlate


def _sms(db, company, sender, content="hello", recipient="+15550000000"):
    communication = Communication(
        company_id=company.id,
        type="SMS",
        direction="INBOUND",
        participants=[
            {"type": "phone", "value": sender, "role": "sender"},
            {"type": "phone", "value": recipient, "role": "recipient"},
        ],
        content=content,
    )
    db.add(communication)
    db.commit()
    return communication


class TestCorrelate:
    @pytest.mark.parametrize("sender", ["+15551234567", "15551234567", "(555) 123-4567", "555.123.4567"])
    def test_format_drift_matches_same_contact(self, db, company, settings, make_contact, make_project, sender):
        jane = make_contact("Jane Doe", "555-123-4567", role="homeowner")
        project = make_project(contacts=[jane])

        result = correlate(db, _sms(db, company, sender), settings)

        assert result.project_id == project.id
        assert result.is_multi_project is False
        assert result.contact_ids == [jane.id]

    def test_single_project_links_communication(self, db, company, settings, make_contact, make_project):
        jane = make_contact("Jane Doe", "+15551234567", role="homeowner")
        project = make_project(contacts=[jane])
        communication = _sms(db, company, "+15551234567")

        correlate(db, communication, settings)

        assert communication.project_id == project.id
        assert communication.participants[0]["contact_id"] == str(jane.id)
        assert "contact_id" not in communication.participants[1]

    def test_no_match_is_unrouted(self, db, company, settings, make_contact, make_project):
        make_project(contacts=[make_contact("Jane Doe", "+15551234567")])

        result = correlate(db, _sms(db, company, "+15559999999"), settings)

        assert result.is_routed is False
        assert result.project_id is None

    def test_contact_without_project_is_unrouted(self, db, company, settings, make_contact):
        make_contact("Jane Doe", "+15551234567")
        result = correlate(db, _sms(db, company, "+15551234567"), settings)
        assert result.is_routed is False

    def test_pm_and_roofer_thread_is_multi_project(self, db, company, settings, make_contact, make_project):
        pm = make_contact("Pat Manager", "+15551110000", role="PM")
        roofer = make_contact("Rick Roofer", "+15552220000", role="roofer")
        project = make_project(contacts=[pm, roofer])

        result = correlate(db, _sms(db, company, "+15551110000", recipient="+15552220000"), settings)

        assert result.is_multi_project is True
        assert result.project_id == project.id
        assert result.candidate_project_ids == [project.id]

    def test_role_classes_come_from_settings(self, db, company, settings, make_contact, make_project):
        pm = make_contact("Pat Manager", "+15551110000", role="site lead")
        roofer = make_contact("Rick Roofer", "+15552220000", role="roofer")
        make_project(contacts=[pm, roofer])
        communication = _sms(db, company, "+15551110000", recipient="+15552220000")

        assert correlate(db, communication, settings).is_multi_project is False

        settings.pm_roles = ["site_lead"]
        assert correlate(db, communication, settings).is_multi_project is True

    def test_several_projects_is_multi_project(self, db, company, settings, make_contact, make_project):
        roofer = make_contact("Rick Roofer", "+15552220000", role="roofer")
        first = make_project("First", contacts=[roofer])
        second = make_project("Second", contacts=[roofer])

        result = correlate(db, _sms(db, company, "+15552220000"), settings)

        assert result.is_multi_project is True
        assert result.project_id is None
        assert set(result.candidate_project_ids) == {first.id, second.id}

    def test_company_inferred_from_contact(self, db, company, settings, make_contact, make_project):
        make_project(contacts=[make_contact("Jane Doe", "+15551234567")])
        communication = _sms(db, company, "+15551234567")
        communication.company_id = None
        db.commit()

        assert correlate(db, communication, settings).is_routed is True
        assert communication.company_id == company.id

from datetime import datetime, timedelta, timezone

import pytest

from commsflow.database import ensure_utc
from commsflow.models import ChatSession, Communication
from commsflow.services.session_service import (
    SessionError,
    append_message,
    attach_communication,
    counterpart_identifier,
    get_history,
    get_or_create_session,
)


class TestGetOrCreateSession:
    def test_same_key_returns_same_session(self, db, company):
        first = get_or_create_session(db, channel_type="sms", channel_identifier="15551234567", company_id=company.id)
        second = get_or_create_session(db, channel_type="sms", channel_identifier="15551234567", company_id=company.id)
        db.commit()

        assert first.id == second.id
        assert db.query(ChatSession).count() == 1

    def test_different_channel_gets_new_session(self, db, company):
        sms = get_or_create_session(db, channel_type="sms", channel_identifier="x@y.com", company_id=company.id)
        email = get_or_create_session(db, channel_type="email", channel_identifier="x@y.com", company_id=company.id)
        assert sms.id != email.id

    def test_links_filled_later_but_not_overwritten(self, db, company, make_contact, make_project):
        jane = make_contact("Jane Doe", "+15551234567")
        project = make_project()
        other = make_project("Other")

        session = get_or_create_session(db, channel_type="sms", channel_identifier="15551234567", company_id=company.id)
        assert session.contact_id is None

        get_or_create_session(
            db,
            channel_type="sms",
            channel_identifier="15551234567",
            company_id=company.id,
            contact_id=jane.id,
            project_id=project.id,
        )
        get_or_create_session(
            db, channel_type="sms", channel_identifier="15551234567", company_id=company.id, project_id=other.id
        )
        assert session.contact_id == jane.id
        assert session.project_id == project.id

    def test_unknown_channel_rejected(self, db, company):
        with pytest.raises(SessionError):
            get_or_create_session(db, channel_type="fax", channel_identifier="1", company_id=company.id)


class TestAppendMessage:
    def test_history_is_ordered_and_append_only(self, db, company):
        session = get_or_create_session(db, channel_type="sms", channel_identifier="1555", company_id=company.id)
        append_message(db, session.id, role="user", content="first")
        append_message(db, session.id, role="assistant", content="second")
        append_message(db, session.id, role="user", content="third")
        db.commit()

        history = get_history(db, session.id)
        assert [h["content"] for h in history] == ["first", "second", "third"]
        assert [h["role"] for h in history] == ["user", "assistant", "user"]

    def test_sequences_increase(self, db, company):
        session = get_or_create_session(db, channel_type="sms", channel_identifier="1555", company_id=company.id)
        first = append_message(db, session.id, role="user", content="a")
        second = append_message(db, session.id, role="user", content="b")
        assert (first.sequence, second.sequence) == (1, 2)

    def test_updates_last_activity(self, db, company):
        session = get_or_create_session(db, channel_type="sms", channel_identifier="1555", company_id=company.id)
        at = datetime.now(timezone.utc) + timedelta(minutes=5)
        append_message(db, session.id, role="user", content="a", at=at)
        db.commit()
        db.refresh(session)
        assert ensure_utc(session.last_activity) == at

    def test_limit_returns_most_recent(self, db, company):
        session = get_or_create_session(db, channel_type="sms", channel_identifier="1555", company_id=company.id)
        for i in range(5):
            append_message(db, session.id, role="user", content=str(i))
        assert [h["content"] for h in get_history(db, session.id, limit=2)] == ["3", "4"]

    def test_invalid_role(self, db, company):
        session = get_or_create_session(db, channel_type="sms", channel_identifier="1555", company_id=company.id)
        with pytest.raises(SessionError):
            append_message(db, session.id, role="system", content="x")


class TestAttachCommunication:
    def _communication(self, db, company, comm_type="SMS", direction="INBOUND"):
        communication = Communication(
            company_id=company.id,
            type=comm_type,
            direction=direction,
            participants=[
                {"type": "phone", "value": "15551234567", "role": "sender"},
                {"type": "phone", "value": "15550000000", "role": "recipient"},
            ],
            content="Gutters look great",
        )
        db.add(communication)
        db.flush()
        return communication

    def test_inbound_sms_appends_user_entry(self, db, company):
        communication = self._communication(db, company)
        session = attach_communication(db, communication)

        assert session.channel_type == "sms"
        assert session.channel_identifier == "15551234567"
        assert communication.session_id == session.id
        assert communication.processed_by_agent is False
        assert get_history(db, session.id)[0]["role"] == "user"

    def test_outbound_uses_recipient(self, db, company):
        communication = self._communication(db, company, direction="OUTBOUND")
        assert counterpart_identifier(communication) == "15550000000"
        session = attach_communication(db, communication)
        assert get_history(db, session.id)[0]["role"] == "assistant"

    def test_calls_have_no_session(self, db, company):
        communication = self._communication(db, company, comm_type="CALL")
        assert attach_communication(db, communication) is None
        assert communication.session_id is None

from datetime import datetime, timedelta, timezone

import pytest

from commsflow.database import ensure_utc
from commsflow.models import ActionRecord, CommsBatch, Communication
from commsflow.schemas.decision import DecisionPayload
from commsflow.services.batch_service import add_to_batch, process_due_batches, should_batch

NOW = datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def project(make_project):
    return make_project("Smith Residence")


@pytest.fixture
def make_sms(db, company, project):
    def _make(content="Any update?", at=NOW, comm_type="SMS", **fields):
        communication = Communication(
            company_id=company.id,
            provider="twilio",
            type=comm_type,
            direction="INBOUND",
            participants=[{"type": "phone", "value": "15551112222", "role": "sender"}],
            content=content,
            timestamp=at,
            project_id=project.id,
            **fields,
        )
        db.add(communication)
        db.commit()
        return communication

    return _make


class TestShouldBatch:
    def test_first_message_processed_now(self, db, settings, project, make_sms):
        assert should_batch(db, make_sms(), project.id, settings, now=NOW) is False

    def test_follow_up_inside_window_starts_batch(self, db, settings, project, make_sms):
        make_sms("First", at=NOW - timedelta(minutes=10))
        assert should_batch(db, make_sms("Second"), project.id, settings, now=NOW) is True

    def test_message_outside_window_ignored(self, db, settings, project, make_sms):
        make_sms("Yesterday", at=NOW - timedelta(days=1))
        assert should_batch(db, make_sms(), project.id, settings, now=NOW) is False

    def test_open_batch_collects_until_full(self, db, settings, project, make_sms):
        settings.batch_max_size = 2
        first = make_sms("One")
        add_to_batch(db, first, project.id, settings, now=NOW)

        assert should_batch(db, make_sms("Two"), project.id, settings, now=NOW) is True
        add_to_batch(db, make_sms("Three"), project.id, settings, now=NOW)
        assert should_batch(db, make_sms("Four"), project.id, settings, now=NOW) is False

    @pytest.mark.parametrize("comm_type", ["CALL", "EMAIL"])
    def test_only_sms_batched(self, db, settings, project, make_sms, comm_type):
        make_sms("First", at=NOW - timedelta(minutes=1))
        assert should_batch(db, make_sms(comm_type=comm_type), project.id, settings, now=NOW) is False

    def test_multi_project_not_batched(self, db, settings, project, make_sms):
        make_sms("First", at=NOW - timedelta(minutes=1))
        communication = make_sms(is_multi_project=True)
        assert should_batch(db, communication, project.id, settings, now=NOW) is False

    def test_disabled(self, db, settings, project, make_sms):
        settings.sms_batching_enabled = False
        make_sms("First", at=NOW - timedelta(minutes=1))
        assert should_batch(db, make_sms(), project.id, settings, now=NOW) is False


class TestAddToBatch:
    def test_opens_one_batch_per_project(self, db, settings, project, make_sms):
        first = add_to_batch(db, make_sms("One"), project.id, settings, now=NOW)
        second = add_to_batch(db, make_sms("Two"), project.id, settings, now=NOW + timedelta(minutes=3))

        assert first.id == second.id
        assert first.status == "in_progress"
        assert ensure_utc(first.scheduled_processing_time) == NOW + timedelta(minutes=30)
        assert db.query(Communication).filter(Communication.batch_id == first.id).count() == 2


class TestProcessDueBatches:
    @pytest.fixture
    def open_batch(self, db, settings, project, make_sms):
        opened_at = NOW - timedelta(minutes=40)
        batch = add_to_batch(db, make_sms("Is the crew coming?", at=opened_at), project.id, settings, now=opened_at)
        later = opened_at + timedelta(minutes=5)
        add_to_batch(db, make_sms("Hello??", at=later), project.id, settings, now=later)
        return batch

    def test_one_decision_for_the_whole_batch(self, db, services, decision_client, open_batch):
        decision_client.decide.return_value = DecisionPayload(
            decision="ACTION_NEEDED", action_type="message", message_text="Crew arrives at 8"
        )

        results = process_due_batches(db, services, now=NOW)

        assert [r.status for r in results] == ["completed"]
        assert results[0].message_count == 2
        decision_client.decide.assert_called_once()
        context = decision_client.decide.call_args.args[0]
        assert [m["content"] for m in context["batched_messages"]] == ["Is the crew coming?", "Hello??"]
        assert context["new_data"]["content"] == "Hello??"

        record = db.query(ActionRecord).one()
        latest = db.query(Communication).filter(Communication.content == "Hello??").one()
        assert record.communication_id == latest.id
        assert all(c.processed_by_agent for c in db.query(Communication).all())
        db.refresh(open_batch)
        assert open_batch.status == "completed"
        assert ensure_utc(open_batch.processed_at) == NOW

    def test_batch_not_due_left_alone(self, db, services, decision_client, open_batch):
        assert process_due_batches(db, services, now=NOW - timedelta(minutes=20)) == []
        decision_client.decide.assert_not_called()

    def test_recently_checked_project_rescheduled(self, db, services, decision_client, project, open_batch):
        project.last_action_check = NOW - timedelta(minutes=5)
        db.commit()

        results = process_due_batches(db, services, now=NOW)

        assert results[0].status == "rescheduled"
        decision_client.decide.assert_not_called()
        db.refresh(open_batch)
        assert open_batch.status == "in_progress"
        assert ensure_utc(open_batch.scheduled_processing_time) == NOW + timedelta(minutes=25)

    def test_decision_error_marks_batch(self, db, services, decision_client, open_batch):
        decision_client.decide.side_effect = RuntimeError("model unavailable")

        results = process_due_batches(db, services, now=NOW)

        assert results[0].status == "error"
        assert results[0].error == "RuntimeError: model unavailable"
        db.refresh(open_batch)
        assert open_batch.status == "error"
        assert "model unavailable" in open_batch.error_message

    def test_endpoint(self, client, db, project, open_batch):
        response = client.post("/batches/process")

        assert response.status_code == 200
        assert response.json()["count"] == 1
        db.expire_all()
        assert db.query(CommsBatch).one().status == "completed"

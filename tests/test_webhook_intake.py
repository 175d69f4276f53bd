import base64
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from commsflow.config import Settings
from commsflow.main import create_app
from commsflow.models import Communication, RawWebhook
from commsflow.services.webhook_intake import decode_body, ingest_raw_webhook, parse_body, store_raw_webhook

TWILIO_FORM = "MessageSid=SM1&From=%2B15551234567&To=%2B15550000000&Body=Hello+there"
FORM_HEADERS = {"content-type": "application/x-www-form-urlencoded"}


class TestParseBody:
    def test_json(self):
        assert parse_body('{"Body": "hi"}', "application/json") == {"Body": "hi"}

    def test_json_without_content_type(self):
        assert parse_body('{"Body": "hi"}', None) == {"Body": "hi"}

    def test_form(self):
        assert parse_body(TWILIO_FORM, "application/x-www-form-urlencoded") == {
            "MessageSid": "SM1",
            "From": "+15551234567",
            "To": "+15550000000",
            "Body": "Hello there",
        }

    def test_empty(self):
        assert parse_body("", "application/json") is None
        assert parse_body("   ", None) is None

    def test_json_array_is_not_a_payload(self):
        assert parse_body("[1, 2]", "application/json") is None

    def test_plain_text(self):
        assert parse_body("just some words", "text/plain") is None


class TestDecodeBody:
    def test_utf8_by_default(self):
        assert decode_body("Body=café".encode()) == "Body=café"

    def test_declared_charset_wins(self):
        assert decode_body("Body=café".encode("cp1252"), "text/plain; charset=windows-1252") == "Body=café"

    def test_undecodable_falls_back_to_latin1(self):
        assert decode_body(b"Body=caf\xe9", "application/x-www-form-urlencoded") == "Body=café"

    def test_unknown_charset_ignored(self):
        assert decode_body(b"Body=hi", "text/plain; charset=klingon") == "Body=hi"


class TestStoreAndIngest:
    def test_raw_body_stored_verbatim(self, db):
        raw = store_raw_webhook(db, service_name="twilio", body=TWILIO_FORM.encode(), content_type="x")
        stored = db.query(RawWebhook).filter(RawWebhook.id == raw.id).one()
        assert stored.raw_body == TWILIO_FORM.encode()
        assert stored.processed is False

    def test_ingest_creates_communication(self, db):
        raw = store_raw_webhook(
            db,
            service_name="twilio",
            body=TWILIO_FORM.encode(),
            content_type="application/x-www-form-urlencoded",
        )
        communication = ingest_raw_webhook(db, raw)

        assert communication.type == "SMS"
        assert communication.content == "Hello there"
        assert communication.raw_webhook_id == raw.id
        assert raw.processed is True
        assert raw.external_id == "SM1"
        assert raw.communication_id == communication.id

    def test_ingest_resolves_company_by_agent_number(self, db, company):
        body = "MessageSid=SM1&From=%2B15551234567&To=%2B15550000000&Body=hi"
        raw = store_raw_webhook(
            db, service_name="twilio", body=body.encode(), content_type="application/x-www-form-urlencoded"
        )
        communication = ingest_raw_webhook(db, raw)
        assert communication.company_id == company.id

    def test_malformed_body_still_creates_empty_communication(self, db):
        raw = store_raw_webhook(db, service_name="justcall", body=b'{"text": ', content_type="application/json")
        communication = ingest_raw_webhook(db, raw)

        assert communication.content == ""
        assert raw.processed is False
        assert raw.processing_error
        assert raw.raw_body == b'{"text": '


class TestWebhookEndpoint:
    def test_form_webhook_acknowledged(self, client, db):
        response = client.post("/webhooks/twilio", content=TWILIO_FORM, headers=FORM_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["webhook_id"]
        assert db.query(Communication).count() == 1

    def test_raw_payload_retrievable_verbatim(self, client):
        body = '{"Body": "not closed'
        webhook_id = client.post(
            "/webhooks/twilio", content=body, headers={"content-type": "application/json"}
        ).json()["webhook_id"]

        response = client.get(f"/webhooks/{webhook_id}")
        assert response.status_code == 200
        assert response.json()["raw_body"] == body
        assert response.json()["processed"] is False

    def test_non_utf8_body_kept_byte_for_byte(self, client, db):
        body = b"MessageSid=SM9&From=%2B15551234567&To=%2B15550000000&Body=caf\xe9"
        webhook_id = client.post("/webhooks/twilio", content=body, headers=FORM_HEADERS).json()["webhook_id"]

        raw = client.get(f"/webhooks/{webhook_id}").json()

        assert raw["raw_body"] is None
        assert base64.b64decode(raw["raw_body_base64"]) == body
        assert raw["raw_payload"]["Body"] == "café"
        db.expire_all()
        assert db.query(Communication).one().content == "café"

    def test_empty_body_acknowledged(self, client):
        response = client.post("/webhooks/twilio", content=b"")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_processing_crash_still_acknowledged(self, client):
        with patch("commsflow.services.pipeline.ingest_raw_webhook", side_effect=RuntimeError("boom")):
            response = client.post("/webhooks/twilio", content=TWILIO_FORM, headers=FORM_HEADERS)

        assert response.status_code == 200
        webhook_id = response.json()["webhook_id"]
        raw = client.get(f"/webhooks/{webhook_id}").json()
        assert raw["raw_body"] == TWILIO_FORM
        assert raw["processing_error"] == "RuntimeError: boom"

    def test_unknown_provider_uses_generic_parser(self, client):
        webhook_id = client.post("/webhooks/acme", json={"from": "5551234567", "message": "hi"}).json()["webhook_id"]
        assert client.get(f"/webhooks/{webhook_id}").json()["service_name"] == "generic"

    def test_missing_webhook_404(self, client):
        response = client.get("/webhooks/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404


class TestWebhookSecret:
    @pytest.fixture
    def secured_client(self, session_factory, services):
        services.settings = Settings(_env_file=None, database_url="sqlite://", webhook_secret="s3cret")
        return TestClient(create_app(services.settings, session_factory=session_factory, services=services))

    def test_missing_secret_rejected_before_storing(self, secured_client, db):
        response = secured_client.post("/webhooks/twilio", content=TWILIO_FORM, headers=FORM_HEADERS)
        assert response.status_code == 401
        assert db.query(RawWebhook).count() == 0

    def test_header_secret_accepted(self, secured_client):
        response = secured_client.post(
            "/webhooks/twilio", content=TWILIO_FORM, headers={**FORM_HEADERS, "X-Webhook-Secret": "s3cret"}
        )
        assert response.status_code == 200

    def test_query_secret_accepted(self, secured_client):
        response = secured_client.post(
            "/webhooks/twilio?webhook_secret=s3cret", content=TWILIO_FORM, headers=FORM_HEADERS
        )
        assert response.status_code == 200

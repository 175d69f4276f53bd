from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from commsflow.config import Settings
from commsflow.services.alert_service import alert_error, alert_warning, send_alert


@pytest.fixture
def configured():
    return Settings(_env_file=None, alert_bot_token="test-token", alert_chat_id="test-chat")


class TestSendAlert:
    def test_returns_false_when_not_configured(self):
        settings = Settings(_env_file=None, alert_bot_token=None, alert_chat_id=None)
        assert send_alert(settings, "ERROR", "Test message") is False

    @patch("commsflow.services.alert_service.httpx.Client")
    def test_sends_alert_to_telegram(self, mock_client_class, configured):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)

        result = send_alert(configured, "ERROR", "Job failed", {"job_id": "123"})

        assert result is True
        url = mock_client.post.call_args[0][0]
        json_data = mock_client.post.call_args[1]["json"]
        assert "bottest-token" in url
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]
        assert "job_id: 123" in json_data["text"]

    @patch("commsflow.services.alert_service.httpx.Client")
    def test_uses_the_settings_it_is_given(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)
        other = Settings(_env_file=None, alert_bot_token="tenant-b", alert_chat_id="chat-b")

        assert send_alert(other, "WARNING", "Queue backlog") is True
        assert "bottenant-b" in mock_client.post.call_args[0][0]
        assert mock_client.post.call_args[1]["json"]["chat_id"] == "chat-b"

    @patch("commsflow.services.alert_service.httpx.Client")
    def test_returns_false_on_telegram_error(self, mock_client_class, configured):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=400)

        assert send_alert(configured, "ERROR", "Test message") is False

    @patch("commsflow.services.alert_service.httpx.Client")
    def test_returns_false_on_transport_error(self, mock_client_class, configured):
        mock_client_class.return_value.__enter__.side_effect = httpx.ConnectError("Network error")

        assert send_alert(configured, "ERROR", "Test message") is False


class TestHelpers:
    @patch("commsflow.services.alert_service.send_alert")
    def test_alert_error_level(self, mock_send, configured):
        alert_error(configured, "boom", {"a": 1})
        mock_send.assert_called_once_with(configured, "ERROR", "boom", {"a": 1})

    @patch("commsflow.services.alert_service.send_alert")
    def test_alert_warning_level(self, mock_send, configured):
        alert_warning(configured, "careful")
        mock_send.assert_called_once_with(configured, "WARNING", "careful", None)

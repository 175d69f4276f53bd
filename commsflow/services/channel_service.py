"""Outbound SMS senders. Each returns the provider's delivery id."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from commsflow.config import Settings
from commsflow.logging_config import get_logger
from commsflow.services.matching import format_phone_number

logger = get_logger("channel_service")


class ChannelSendError(Exception):
    pass


class ChannelSender(ABC):
    name = "channel"

    @abstractmethod
    def send(self, channel: str, recipient: str, content: str) -> str:
        """Deliver content to recipient over channel; raise ChannelSendError on failure."""
        pass


def _e164(phone: str) -> str:
    digits = format_phone_number(phone)
    if not digits:
        raise ChannelSendError(f"Invalid recipient phone number: {phone!r}")
    return f"+{digits}"


class TwilioSender(ChannelSender):
    name = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout_seconds: float = 15.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds

    def send(self, channel: str, recipient: str, content: str) -> str:
        if channel != "sms":
            raise ChannelSendError(f"Twilio sender does not support channel {channel}")

        url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    url,
                    auth=(self.account_sid, self.auth_token),
                    data={"To": _e164(recipient), "From": _e164(self.from_number), "Body": content},
                )
        except httpx.HTTPError as exc:
            raise ChannelSendError(f"Twilio transport error: {exc}") from exc

        if response.status_code not in (200, 201):
            logger.error(
                "Twilio send failed",
                extra={"context": {"status": response.status_code, "body": response.text[:300]}},
            )
            raise ChannelSendError(f"Twilio API error ({response.status_code}): {response.text[:300]}")

        sid = response.json().get("sid", "")
        logger.info("SMS sent via Twilio", extra={"context": {"sid": sid}})
        return sid


class JustCallSender(ChannelSender):
    name = "justcall"

    def __init__(self, api_key: str, api_secret: Optional[str], from_number: str, timeout_seconds: float = 15.0):
        self.api_key = api_key
        self.api_secret = api_secret or ""
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds

    def send(self, channel: str, recipient: str, content: str) -> str:
        if channel != "sms":
            raise ChannelSendError(f"JustCall sender does not support channel {channel}")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    "https://justcall.io/api/v1/texts",
                    headers={"Authorization": f"{self.api_key}:{self.api_secret}"},
                    json={
                        "from": self.from_number,
                        "to": _e164(recipient),
                        "body": content,
                        "autoresponse": False,
                    },
                )
        except httpx.HTTPError as exc:
            raise ChannelSendError(f"JustCall transport error: {exc}") from exc

        if response.status_code not in (200, 201):
            raise ChannelSendError(f"JustCall API error ({response.status_code}): {response.text[:300]}")

        data = response.json()
        message_id = str(data.get("id") or (data.get("data") or {}).get("id") or "")
        logger.info("SMS sent via JustCall", extra={"context": {"id": message_id}})
        return message_id


class UnconfiguredSender(ChannelSender):
    """Used when no provider credentials are configured; every send fails."""

    name = "unconfigured"

    def send(self, channel: str, recipient: str, content: str) -> str:
        raise ChannelSendError("No outbound channel provider is configured")


def build_channel_sender(settings: Settings) -> ChannelSender:
    provider = (settings.sms_provider or "").lower()
    if provider == "twilio" and settings.twilio_account_sid and settings.twilio_auth_token:
        return TwilioSender(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number or "",
            timeout_seconds=settings.channel_timeout_seconds,
        )
    if provider == "justcall" and settings.justcall_api_key:
        return JustCallSender(
            settings.justcall_api_key,
            settings.justcall_api_secret,
            settings.justcall_from_number or "",
            timeout_seconds=settings.channel_timeout_seconds,
        )
    logger.warning("Outbound SMS provider not configured", extra={"context": {"sms_provider": provider}})
    return UnconfiguredSender()

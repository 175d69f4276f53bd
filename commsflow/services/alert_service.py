"""Operator alerts for terminal failures, sent to a Telegram chat."""

from typing import Optional

import httpx

from commsflow.config import Settings
from commsflow.logging_config import get_logger

logger = get_logger("alert_service")

LEVEL_ICONS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def send_alert(settings: Settings, level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to Telegram. Returns True if delivered; never raises.

    Args:
        settings: carries the bot token and chat id
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    text = f"{LEVEL_ICONS.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{settings.alert_bot_token}/sendMessage",
                json={"chat_id": settings.alert_chat_id, "text": text, "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(settings: Settings, message: str, context: Optional[dict] = None) -> bool:
    return send_alert(settings, "ERROR", message, context)


def alert_warning(settings: Settings, message: str, context: Optional[dict] = None) -> bool:
    return send_alert(settings, "WARNING", message, context)

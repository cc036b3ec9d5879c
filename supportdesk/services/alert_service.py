"""Operator alerts delivered to a Telegram chat."""

from typing import Optional

import httpx

from supportdesk.config import settings
from supportdesk.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}* support desk\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to the operator chat.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict

    Returns:
        True if sent successfully
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                TELEGRAM_SEND_URL.format(token=settings.alert_bot_token),
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)

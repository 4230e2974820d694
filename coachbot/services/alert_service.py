"""Operator alerts (dead-lettered jobs) sent to a Telegram chat through a separate bot."""

from typing import Optional

import httpx

from coachbot.config import Settings, settings as default_settings
from coachbot.errors import TelegramAPIError
from coachbot.logging_config import get_logger
from coachbot.services.telegram_service import TelegramService

logger = get_logger("alert_service")

LEVEL_MARKS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}
# job fields first, the rest in insertion order
CONTEXT_ORDER = ("job_id", "queue", "chat_id", "attempts", "error")


def format_alert(level: str, message: str, context: Optional[dict] = None, max_length: int = 4000) -> str:
    lines = [f"{LEVEL_MARKS.get(level, '📢')} coachbot {level}", message]
    if context:
        keys = [key for key in CONTEXT_ORDER if key in context]
        keys += [key for key in context if key not in CONTEXT_ORDER]
        lines.append("")
        lines.extend(f"{key}: {context[key]}" for key in keys)
    text = "\n".join(lines)
    return text if len(text) <= max_length else text[: max_length - 3] + "..."


async def send_alert(
    level: str,
    message: str,
    context: Optional[dict] = None,
    *,
    telegram: Optional[TelegramService] = None,
    settings: Settings = default_settings,
) -> bool:
    """Deliver one alert; never raises. False when alerts are not configured or delivery failed."""
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    owns_client = telegram is None
    telegram = telegram or TelegramService(settings.alert_bot_token, api_base_url=settings.telegram_api_base_url)
    text = format_alert(level, message, context, max_length=settings.telegram_message_max_length)
    try:
        await telegram.send_message(settings.alert_chat_id, text)
        return True
    except (TelegramAPIError, httpx.HTTPError) as e:
        logger.error("Failed to send alert", extra={"context": {"level": level, "error": str(e)}})
        return False
    finally:
        if owns_client:
            await telegram.aclose()


async def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("ERROR", message, context)

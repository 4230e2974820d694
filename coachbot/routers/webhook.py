import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from coachbot.config import settings
from coachbot.database import get_db
from coachbot.dependencies import get_rate_limiter
from coachbot.logging_config import get_logger
from coachbot.schemas.inbound import inbound_from_update
from coachbot.services.ingest_service import accept_inbound
from coachbot.services.rate_limiter import WEBHOOK_SCOPE, RateLimiter, client_key_from_request

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


def is_webhook_authorized(header_value: Optional[str], secret: Optional[str]) -> bool:
    if not secret:
        return True
    if not header_value:
        return False
    return hmac.compare_digest(header_value.encode(), secret.encode())


async def parse_update_body(request: Request) -> Optional[dict]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Webhook body is not valid JSON: {e}")
        return None
    return body if isinstance(body, dict) else None


@router.post("/webhook")
@router.post("/telegram/webhook", include_in_schema=False)
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Accept a Telegram update: rate limit, authenticate, validate, dedupe, enqueue."""
    decision = await limiter.consume_scope(
        WEBHOOK_SCOPE,
        client_key_from_request(request),
        settings.webhook_rate_limit_max_requests,
        settings.webhook_rate_limit_window_seconds,
    )
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={"ok": False, "error": "rate_limited", "retryAfterSec": decision.retry_after_seconds},
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )

    if not is_webhook_authorized(x_telegram_bot_api_secret_token, settings.telegram_webhook_secret):
        logger.warning("Webhook secret mismatch", extra={"context": {"client": client_key_from_request(request)}})
        return {"ok": True, "skipped": True}

    body = await parse_update_body(request)
    message = inbound_from_update(body) if body is not None else None
    if message is None:
        return {"ok": True, "skipped": True}

    result = accept_inbound(db, message)
    if result.duplicate:
        return {"ok": True, "duplicate": True}
    return {"ok": True}

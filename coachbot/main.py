import asyncio
import os

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from coachbot.config import settings
from coachbot.database import get_db, init_schema
from coachbot.dependencies import get_redis_client
from coachbot.logging_config import get_logger, setup_logging
from coachbot.redis_client import close_redis
from coachbot.routers import admin, webhook
from coachbot.services.health_service import check_dependencies
from coachbot.services.telegram_service import TelegramService

setup_logging(settings.log_level)

app = FastAPI(
    title="Coachbot API",
    description="Telegram coaching bot: webhook ingress and operator endpoints",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)

logger = get_logger("main")
_worker_task: asyncio.Task | None = None
_worker_engine = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_embedded_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.embedded_worker_enabled


@app.exception_handler(HTTPException)
async def ok_envelope_exception_handler(request: Request, exc: HTTPException):
    """Admin and webhook errors carry an {ok: false, ...} body instead of {detail: ...}."""
    content = exc.detail if isinstance(exc.detail, dict) else {"ok": False, "error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def register_telegram_webhook() -> None:
    if not settings.app_url or not settings.telegram_bot_token:
        return
    url = f"{settings.app_url.rstrip('/')}/webhook"
    telegram = TelegramService(settings.telegram_bot_token, api_base_url=settings.telegram_api_base_url)
    try:
        await telegram.set_webhook(url, secret_token=settings.telegram_webhook_secret)
        logger.info("Telegram webhook registered", extra={"context": {"url": url}})
    except Exception as e:
        logger.error("Telegram webhook registration failed", extra={"context": {"url": url, "error": str(e)}})
    finally:
        await telegram.aclose()


@app.on_event("startup")
async def on_startup() -> None:
    global _worker_task, _worker_engine
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return
    init_schema()
    if _is_env_enabled(os.environ.get("REGISTER_WEBHOOK_ON_STARTUP"), default=True):
        await register_telegram_webhook()
    if _is_embedded_worker_enabled() and (_worker_task is None or _worker_task.done()):
        from coachbot.worker import create_worker_engine

        _worker_engine = create_worker_engine(settings, close_resources=False)
        _worker_task = asyncio.create_task(_worker_engine.run(install_signals=False))
        logger.info("Embedded worker started")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _worker_task, _worker_engine
    if _worker_engine is not None:
        _worker_engine.request_stop("api-shutdown")
    if _worker_task is not None:
        await _worker_task
    _worker_task = None
    _worker_engine = None
    await close_redis()


@app.get("/health")
async def health(db: Session = Depends(get_db), redis_client=Depends(get_redis_client)):
    result = await check_dependencies(db, redis_client)
    status_code = 200 if result["status"] == "ok" else 503
    return JSONResponse(status_code=status_code, content=result)

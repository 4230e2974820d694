from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from coachbot.config import Settings, settings as default_settings
from coachbot.logging_config import get_logger

logger = get_logger("scheduler")

DIGEST_JOB_ID = "daily_digest"


def build_digest_trigger(settings: Settings = default_settings) -> CronTrigger:
    return CronTrigger.from_crontab(settings.digest_cron, timezone=ZoneInfo(settings.digest_timezone))


def create_scheduler(
    digest_callable: Optional[Callable[[], Awaitable[object]]],
    settings: Settings = default_settings,
) -> AsyncIOScheduler:
    """AsyncIOScheduler with the daily digest registered (when enabled)."""
    scheduler = AsyncIOScheduler(timezone=ZoneInfo(settings.digest_timezone))
    if settings.digest_enabled and digest_callable is not None:
        scheduler.add_job(
            digest_callable,
            trigger=build_digest_trigger(settings),
            id=DIGEST_JOB_ID,
            name="Send daily digests",
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
            replace_existing=True,
        )
        logger.info(
            "Digest job scheduled",
            extra={"context": {"cron": settings.digest_cron, "timezone": settings.digest_timezone}},
        )
    return scheduler

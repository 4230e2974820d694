"""Daily digest: one summary per active chat per local day.

The DailySummary marker row is the source of truth. It is inserted only
after delivery, with insert-if-absent, so re-running a day never sends a
second digest to a chat that already has one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coachbot.config import Settings, settings as default_settings
from coachbot.database import ensure_utc, insert_for, utcnow
from coachbot.logging_config import get_logger
from coachbot.models import DailySummary, Report
from coachbot.services.generation_service import clamp_text, run_stage
from coachbot.services.llm.base import LLMProvider
from coachbot.services.report_service import list_active_chats, list_reports_for_window
from coachbot.services.telegram_service import TelegramService, send_message_with_retry

logger = get_logger("digest_service")

DIGEST_LOCK_PREFIX = "digest:lock"
DIGEST_SYSTEM_PROMPT = (
    "You summarize one day of a user's conversations with a cognitive coach. "
    "Write in Russian, at most 8 short bullet points: recurring themes, emotional tone, "
    "what the user decided or tried, and one focus suggestion for tomorrow."
)
TEMPLATE_TOPICS_LIMIT = 5
REPORT_EXCERPT_LENGTH = 300


@dataclass(frozen=True)
class DigestWindow:
    start: datetime
    end: datetime
    summary_date: date
    timezone: str


@dataclass
class DigestRunResult:
    summary_date: Optional[date] = None
    chats: int = 0
    sent: int = 0
    skipped_existing: int = 0
    failed: int = 0
    duplicates: int = 0
    fallbacks: int = 0
    locked: bool = False
    failed_chats: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "summaryDate": self.summary_date.isoformat() if self.summary_date else None,
            "chats": self.chats,
            "sent": self.sent,
            "skippedExisting": self.skipped_existing,
            "failed": self.failed,
            "duplicates": self.duplicates,
            "fallbacks": self.fallbacks,
            "locked": self.locked,
        }


def compute_digest_window(fire_time: datetime, tz_name: str) -> DigestWindow:
    """Trailing 24h ending at ``fire_time``; the date is the local date of the end."""
    end = ensure_utc(fire_time)
    start = end - timedelta(hours=24)
    summary_date = end.astimezone(ZoneInfo(tz_name)).date()
    return DigestWindow(start=start, end=end, summary_date=summary_date, timezone=tz_name)


def has_marker(db: Session, chat_id: int, summary_date: date) -> bool:
    return (
        db.scalar(
            select(DailySummary.id).where(
                DailySummary.chat_id == chat_id,
                DailySummary.summary_date == summary_date,
            )
        )
        is not None
    )


def insert_marker(
    db: Session,
    *,
    chat_id: int,
    user_id: int,
    window: DigestWindow,
    reports_count: int,
    summary_text: str,
) -> bool:
    """Insert-if-absent on (chat_id, summary_date). False means a marker already existed."""
    stmt = (
        insert_for(db, DailySummary)
        .values(
            chat_id=chat_id,
            user_id=user_id,
            summary_date=window.summary_date,
            timezone=window.timezone,
            reports_count=reports_count,
            window_start_at=window.start,
            window_end_at=window.end,
            summary_text=summary_text,
            sent_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["chat_id", "summary_date"])
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount > 0


def build_template_summary(reports: list[Report], summary_date: date) -> str:
    lines = [f"За {summary_date.isoformat()} было обращений: {len(reports)}.", "Темы дня:"]
    for report in reports[:TEMPLATE_TOPICS_LIMIT]:
        excerpt = " ".join(report.user_text.split())[:120]
        lines.append(f"• {excerpt}")
    if len(reports) > TEMPLATE_TOPICS_LIMIT:
        lines.append(f"…и ещё {len(reports) - TEMPLATE_TOPICS_LIMIT}.")
    lines.append("Завтра выбери одну тему из списка и сделай по ней один маленький шаг.")
    return "\n".join(lines)


def build_digest_messages(reports: list[Report]) -> list[dict]:
    blocks = []
    for index, report in enumerate(reports, start=1):
        blocks.append(
            f"{index}. [{report.coach_mode}] user: {report.user_text[:REPORT_EXCERPT_LENGTH]}\n"
            f"   coach: {report.reply[:REPORT_EXCERPT_LENGTH]}"
        )
    return [
        {"role": "system", "content": DIGEST_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(blocks)},
    ]


def render_digest(summary_date: date, summary: str) -> str:
    return f"Итоги дня {summary_date.strftime('%d.%m.%Y')}\n\n{summary}"


class DigestJob:
    def __init__(
        self,
        session_factory,
        telegram: TelegramService,
        llm: LLMProvider,
        *,
        redis_client: Optional[redis.Redis] = None,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.telegram = telegram
        self.llm = llm
        self.redis = redis_client
        self.settings = settings

    async def _acquire_lock(self, summary_date: date) -> Optional[bool]:
        """True acquired, False held elsewhere, None when Redis is unavailable."""
        if self.redis is None:
            return None
        key = f"{DIGEST_LOCK_PREFIX}:{summary_date.isoformat()}"
        try:
            acquired = await self.redis.set(key, "1", nx=True, ex=self.settings.digest_lock_ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Digest lock unavailable, relying on markers", extra={"context": {"error": str(e)}})
            return None
        return bool(acquired)

    async def _release_lock(self, summary_date: date) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(f"{DIGEST_LOCK_PREFIX}:{summary_date.isoformat()}")
        except (RedisError, OSError) as e:
            logger.warning("Failed to release digest lock", extra={"context": {"error": str(e)}})

    async def _summarize(self, reports: list[Report], window: DigestWindow) -> tuple[str, bool]:
        """(summary, fallback_used)"""
        messages = build_digest_messages(reports)

        async def call() -> str:
            response = await self.llm.generate(
                messages, model=self.settings.openrouter_model_digest, temperature=0.3, max_tokens=800
            )
            return response.content

        result = await run_stage(
            "digest",
            call,
            timeout_seconds=self.settings.digest_timeout_seconds,
            attempts=self.settings.llm_retry_attempts,
            base_delay_seconds=self.settings.llm_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            log=logger,
        )
        if result.ok:
            return result.value, False
        return build_template_summary(reports, window.summary_date), True

    async def _process_chat(
        self, db: Session, chat_id: int, user_id: int, window: DigestWindow, result: DigestRunResult
    ) -> None:
        if has_marker(db, chat_id, window.summary_date):
            result.skipped_existing += 1
            return

        reports = list_reports_for_window(
            db, chat_id, window.start, window.end, limit=self.settings.digest_max_reports_per_chat
        )
        if not reports:
            return

        summary, fallback = await self._summarize(reports, window)
        if fallback:
            result.fallbacks += 1
        text = clamp_text(render_digest(window.summary_date, summary), self.settings.telegram_message_max_length)

        await send_message_with_retry(
            self.telegram,
            chat_id,
            text,
            attempts=self.settings.telegram_retry_attempts,
            base_delay_seconds=self.settings.telegram_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
        )

        inserted = insert_marker(
            db,
            chat_id=chat_id,
            user_id=user_id,
            window=window,
            reports_count=len(reports),
            summary_text=text,
        )
        if inserted:
            result.sent += 1
            logger.info(
                "Digest sent",
                extra={"context": {"chat_id": chat_id, "summary_date": window.summary_date.isoformat(), "reports": len(reports)}},
            )
        else:
            result.duplicates += 1
            logger.warning(
                "Digest marker already existed after send, duplicate delivery",
                extra={"context": {"chat_id": chat_id, "summary_date": window.summary_date.isoformat()}},
            )

    async def run(self, fire_time: Optional[datetime] = None) -> DigestRunResult:
        window = compute_digest_window(fire_time or utcnow(), self.settings.digest_timezone)
        result = DigestRunResult(summary_date=window.summary_date)

        lock = await self._acquire_lock(window.summary_date)
        if lock is False:
            result.locked = True
            logger.info("Digest run already in progress elsewhere", extra={"context": result.as_dict()})
            return result

        db = self.session_factory()
        try:
            chats = list_active_chats(db, window.start, window.end)
            result.chats = len(chats)
            for chat_id, user_id in chats:
                try:
                    await self._process_chat(db, chat_id, user_id, window, result)
                except Exception as e:
                    # Left without a marker; a later run may retry this chat.
                    db.rollback()
                    result.failed += 1
                    result.failed_chats.append(chat_id)
                    logger.error(
                        "Digest failed for chat",
                        extra={"context": {"chat_id": chat_id, "error": str(e) or type(e).__name__}},
                        exc_info=True,
                    )
        finally:
            db.close()
            if lock:
                await self._release_lock(window.summary_date)

        logger.info("Digest run finished", extra={"context": result.as_dict()})
        return result


def get_digest_status(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    total = db.scalar(select(func.count()).select_from(DailySummary)) or 0
    last_24h = (
        db.scalar(
            select(func.count()).select_from(DailySummary).where(DailySummary.sent_at >= now - timedelta(hours=24))
        )
        or 0
    )
    last = db.scalars(select(DailySummary).order_by(DailySummary.sent_at.desc(), DailySummary.id.desc()).limit(1)).first()
    last_sent = None
    if last is not None:
        last_sent = {
            "chatId": last.chat_id,
            "summaryDate": last.summary_date.isoformat(),
            "sentAt": ensure_utc(last.sent_at).isoformat(),
            "reportsCount": last.reports_count,
        }
    return {"totalSent": total, "sentLast24h": last_24h, "lastSent": last_sent}

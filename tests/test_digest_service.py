from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from coachbot.errors import LLMProviderError
from coachbot.models import DailySummary, Report
from coachbot.services.digest_service import (
    DigestJob,
    build_template_summary,
    compute_digest_window,
    get_digest_status,
    render_digest,
)
from fakes import FakeLLM, FakeTelegram

# 21:00 Moscow time
FIRE_TIME = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


def _report(db, chat_id, created_at, text="Я всё откладываю", user_id=7):
    db.add(
        Report(
            chat_id=chat_id,
            user_id=user_id,
            update_id=int(created_at.timestamp()),
            coach_mode="reality_check",
            analyzer_model="a",
            reporter_model="r",
            user_text=text,
            analysis="analysis",
            reply="Давай начнём с малого.",
            created_at=created_at,
        )
    )
    db.commit()


def _markers(db):
    return db.scalar(select(func.count()).select_from(DailySummary))


class TestDigestWindow:
    def test_trailing_day_in_local_date(self):
        window = compute_digest_window(FIRE_TIME, "Europe/Moscow")
        assert window.end == FIRE_TIME
        assert window.start == FIRE_TIME - timedelta(hours=24)
        assert window.summary_date == date(2026, 3, 10)

    def test_local_date_can_differ_from_utc(self):
        late = datetime(2026, 3, 10, 22, 30, tzinfo=timezone.utc)
        assert compute_digest_window(late, "Europe/Moscow").summary_date == date(2026, 3, 11)


class TestDigestJob:
    @pytest.mark.asyncio
    async def test_one_digest_per_chat_per_day(self, session_factory, db_session, test_settings):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=2))
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1), text="Опять не начал")
        _report(db_session, 200, FIRE_TIME - timedelta(hours=3))
        telegram = FakeTelegram()
        job = DigestJob(session_factory, telegram, FakeLLM(default="• Тема: откладывание"), settings=test_settings)

        first = await job.run(FIRE_TIME)
        second = await job.run(FIRE_TIME)

        assert first.sent == 2
        assert second.sent == 0
        assert second.skipped_existing == 2
        assert len(telegram.sent) == 2
        assert telegram.sent[0]["text"].startswith("Итоги дня 10.03.2026")
        assert _markers(db_session) == 2

        marker = db_session.scalars(select(DailySummary).where(DailySummary.chat_id == 100)).one()
        assert marker.reports_count == 2
        assert marker.summary_date == date(2026, 3, 10)

    @pytest.mark.asyncio
    async def test_reports_outside_window_are_ignored(self, session_factory, db_session, test_settings):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=30))
        telegram = FakeTelegram()
        job = DigestJob(session_factory, telegram, FakeLLM(), settings=test_settings)

        result = await job.run(FIRE_TIME)

        assert result.chats == 0
        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back_to_template(self, session_factory, db_session, test_settings):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1))
        telegram = FakeTelegram()
        llm = FakeLLM(replies=[LLMProviderError("bad request", status_code=400)])
        job = DigestJob(session_factory, telegram, llm, settings=test_settings)

        result = await job.run(FIRE_TIME)

        assert result.sent == 1
        assert result.fallbacks == 1
        assert "было обращений: 1" in telegram.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_send_failure_leaves_no_marker(self, session_factory, db_session, test_settings, telegram_bad_request):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1))
        job = DigestJob(session_factory, FakeTelegram(fail_with=telegram_bad_request), FakeLLM(), settings=test_settings)

        result = await job.run(FIRE_TIME)

        assert result.failed == 1
        assert result.failed_chats == [100]
        assert _markers(db_session) == 0

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped_while_locked(self, session_factory, db_session, test_settings, fake_redis):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1))
        telegram = FakeTelegram()
        job = DigestJob(session_factory, telegram, FakeLLM(), redis_client=fake_redis, settings=test_settings)
        await fake_redis.set("digest:lock:2026-03-10", "1", nx=True)

        result = await job.run(FIRE_TIME)

        assert result.locked
        assert telegram.sent == []

    @pytest.mark.asyncio
    async def test_lock_is_released_after_run(self, session_factory, db_session, test_settings, fake_redis):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1))
        job = DigestJob(session_factory, FakeTelegram(), FakeLLM(), redis_client=fake_redis, settings=test_settings)

        result = await job.run(FIRE_TIME)

        assert result.sent == 1
        assert fake_redis.values == {}


class TestDigestStatus:
    @pytest.mark.asyncio
    async def test_status_after_run(self, session_factory, db_session, test_settings):
        _report(db_session, 100, FIRE_TIME - timedelta(hours=1))
        await DigestJob(session_factory, FakeTelegram(), FakeLLM(), settings=test_settings).run(FIRE_TIME)

        status = get_digest_status(db_session)

        assert status["totalSent"] == 1
        assert status["sentLast24h"] == 1
        assert status["lastSent"]["chatId"] == 100
        assert status["lastSent"]["summaryDate"] == "2026-03-10"
        assert status["lastSent"]["reportsCount"] == 1

    def test_empty_status(self, db_session):
        assert get_digest_status(db_session) == {"totalSent": 0, "sentLast24h": 0, "lastSent": None}


class TestTemplates:
    def test_template_lists_topics(self, db_session):
        _report(db_session, 100, FIRE_TIME, text="Первая тема")
        reports = db_session.scalars(select(Report)).all()

        summary = build_template_summary(reports, date(2026, 3, 10))

        assert "• Первая тема" in summary

    def test_render_digest_header(self):
        assert render_digest(date(2026, 3, 10), "текст") == "Итоги дня 10.03.2026\n\nтекст"

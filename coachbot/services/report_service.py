from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coachbot.models import Report


@dataclass
class StageLatencies:
    queue_wait_ms: Optional[int] = None
    input_resolution_ms: Optional[int] = None
    analyzer_duration_ms: Optional[int] = None
    reporter_duration_ms: Optional[int] = None
    send_duration_ms: Optional[int] = None
    total_duration_ms: Optional[int] = None


def append_report(
    db: Session,
    *,
    chat_id: int,
    user_id: int,
    update_id: int,
    coach_mode: str,
    analyzer_model: str,
    reporter_model: str,
    user_text: str,
    analysis: str,
    reply: str,
    latencies: Optional[StageLatencies] = None,
) -> Report:
    latencies = latencies or StageLatencies()
    report = Report(
        chat_id=chat_id,
        user_id=user_id,
        update_id=update_id,
        coach_mode=coach_mode,
        analyzer_model=analyzer_model,
        reporter_model=reporter_model,
        user_text=user_text,
        analysis=analysis,
        reply=reply,
        queue_wait_ms=latencies.queue_wait_ms,
        input_resolution_ms=latencies.input_resolution_ms,
        analyzer_duration_ms=latencies.analyzer_duration_ms,
        reporter_duration_ms=latencies.reporter_duration_ms,
        send_duration_ms=latencies.send_duration_ms,
        total_duration_ms=latencies.total_duration_ms,
    )
    db.add(report)
    return report


def list_active_chats(db: Session, window_start: datetime, window_end: datetime) -> list[tuple[int, int]]:
    """(chat_id, user_id) pairs with at least one report in [start, end)."""
    rows = db.execute(
        select(Report.chat_id, func.max(Report.user_id))
        .where(Report.created_at >= window_start, Report.created_at < window_end)
        .group_by(Report.chat_id)
        .order_by(Report.chat_id)
    ).all()
    return [(chat_id, user_id) for chat_id, user_id in rows]


def list_reports_for_window(
    db: Session,
    chat_id: int,
    window_start: datetime,
    window_end: datetime,
    *,
    limit: int = 200,
) -> list[Report]:
    return db.scalars(
        select(Report)
        .where(
            Report.chat_id == chat_id,
            Report.created_at >= window_start,
            Report.created_at < window_end,
        )
        .order_by(Report.created_at, Report.id)
        .limit(limit)
    ).all()

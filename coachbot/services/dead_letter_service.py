from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from coachbot.config import settings
from coachbot.database import ensure_utc, insert_for, utcnow
from coachbot.logging_config import get_logger
from coachbot.models import DeadLetter

logger = get_logger("dead_letter_service")


@dataclass
class DeadLetterEntry:
    job_id: uuid.UUID
    original_queue: str
    attempts_made: int
    error_message: str
    payload: dict[str, Any]
    failed_at: Optional[datetime] = None


def push_dead_letter(db: Session, entry: DeadLetterEntry) -> bool:
    """Insert-if-absent keyed by job id. The caller commits."""
    stmt = (
        insert_for(db, DeadLetter)
        .values(
            job_id=entry.job_id,
            original_queue=entry.original_queue,
            attempts_made=entry.attempts_made,
            failed_at=entry.failed_at or utcnow(),
            error_message=entry.error_message[:2000],
            payload=entry.payload,
        )
        .on_conflict_do_nothing(index_elements=["job_id"])
    )
    result = db.execute(stmt)
    pushed = result.rowcount > 0
    if pushed:
        logger.error(
            "Job moved to dead-letter queue",
            extra={
                "context": {
                    "job_id": str(entry.job_id),
                    "queue": entry.original_queue,
                    "attempts": entry.attempts_made,
                    "error": entry.error_message[:500],
                }
            },
        )
    return pushed


def list_dead_letters(db: Session, *, limit: int = 20) -> list[DeadLetter]:
    return db.scalars(select(DeadLetter).order_by(DeadLetter.failed_at.desc()).limit(limit)).all()


def count_dead_letters(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(DeadLetter)) or 0


def requeue_dead_letter(db: Session, job_id: uuid.UUID) -> Optional[uuid.UUID]:
    """Move a dead-lettered job back onto its original queue.

    Returns the new job id, or None when no entry exists. Concurrent calls
    are arbitrated by the DELETE row count, so only one of them enqueues.
    """
    from coachbot.services.queue_service import enqueue_job  # circular

    entry = db.get(DeadLetter, job_id)
    if entry is None:
        return None

    original_queue = entry.original_queue
    payload = dict(entry.payload)

    result = db.execute(delete(DeadLetter).where(DeadLetter.job_id == job_id))
    if result.rowcount == 0:
        db.rollback()
        return None

    new_job_id = enqueue_job(
        db,
        original_queue,
        payload,
        max_attempts=settings.job_max_attempts,
        backoff_base_seconds=settings.job_backoff_base_seconds,
    )
    db.commit()
    logger.info(
        "Dead-letter job requeued",
        extra={"context": {"job_id": str(job_id), "new_job_id": str(new_job_id), "queue": original_queue}},
    )
    return new_job_id


def dead_letter_snapshot(entry: DeadLetter) -> dict[str, Any]:
    failed_at = ensure_utc(entry.failed_at)
    return {
        "id": str(entry.job_id),
        "name": "dead-letter",
        "attemptsMade": entry.attempts_made,
        "failedReason": entry.error_message,
        "timestamp": int(failed_at.timestamp() * 1000) if failed_at else None,
        "data": {
            "originalQueue": entry.original_queue,
            "failedAt": failed_at.isoformat() if failed_at else None,
            "payload": entry.payload,
        },
    }

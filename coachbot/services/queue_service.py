"""Durable work queue on the ``jobs`` table.

Jobs move waiting -> active -> completed, or active -> delayed (backoff) ->
active ... -> failed. A failed job is copied to the dead-letter table in the
same transaction that marks it failed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from coachbot.database import ensure_utc, utcnow
from coachbot.logging_config import get_logger
from coachbot.models import Job, JobStatus
from coachbot.services.dead_letter_service import DeadLetterEntry, push_dead_letter

logger = get_logger("queue_service")

DEFAULT_JOB_NAME = "incoming-message"
CLAIMABLE_STATUSES = (JobStatus.WAITING.value, JobStatus.DELAYED.value)


@dataclass
class ClaimedJob:
    id: uuid.UUID
    queue_name: str
    name: str
    routing_key: str
    payload: dict[str, Any]
    attempts_made: int
    max_attempts: int
    enqueued_at: datetime
    started_at: datetime

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts


@dataclass
class NackOutcome:
    status: str
    attempts_made: int
    next_run_at: Optional[datetime] = None
    dead_lettered: bool = False


def routing_key_for(payload: dict[str, Any]) -> str:
    return str(payload.get("chat_id", "unknown"))


def enqueue_job(
    db: Session,
    queue_name: str,
    payload: dict[str, Any],
    *,
    routing_key: Optional[str] = None,
    name: str = DEFAULT_JOB_NAME,
    max_attempts: int = 3,
    backoff_base_seconds: float = 1.0,
    run_at: Optional[datetime] = None,
) -> uuid.UUID:
    """Add a job row. The caller commits."""
    now = utcnow()
    job = Job(
        id=uuid.uuid4(),
        queue_name=queue_name,
        name=name,
        routing_key=routing_key or routing_key_for(payload),
        payload=payload,
        status=JobStatus.WAITING.value,
        attempts_made=0,
        max_attempts=max_attempts,
        backoff_base_seconds=backoff_base_seconds,
        run_at=run_at or now,
        enqueued_at=now,
    )
    db.add(job)
    db.flush()
    return job.id


def claim_jobs(
    db: Session,
    queue_name: str,
    *,
    limit: int,
    exclude_keys: Iterable[str] = (),
    now: Optional[datetime] = None,
    page_size: int = 50,
) -> list[ClaimedJob]:
    """Claim up to ``limit`` due jobs, at most one per routing key.

    Routing keys with an active job (any process) or listed in
    ``exclude_keys`` (in flight in this process) are skipped in the query
    itself, and candidates are paged until ``limit`` jobs are claimed or no
    due rows remain, so a long backlog on one key cannot hide other keys.
    """
    if limit <= 0:
        return []
    now = now or utcnow()

    busy_keys = set(exclude_keys)
    busy_keys.update(
        db.scalars(
            select(Job.routing_key).where(
                Job.queue_name == queue_name,
                Job.status == JobStatus.ACTIVE.value,
            )
        ).all()
    )

    claimed: list[ClaimedJob] = []
    while len(claimed) < limit:
        query = select(Job).where(
            Job.queue_name == queue_name,
            Job.status.in_(CLAIMABLE_STATUSES),
            Job.run_at <= now,
        )
        if busy_keys:
            query = query.where(Job.routing_key.not_in(sorted(busy_keys)))
        page = db.scalars(
            query.order_by(Job.run_at, Job.enqueued_at).limit(page_size).with_for_update(skip_locked=True)
        ).all()
        if not page:
            break

        for job in page:
            if len(claimed) >= limit:
                break
            if job.routing_key in busy_keys:
                continue
            busy_keys.add(job.routing_key)
            job.status = JobStatus.ACTIVE.value
            job.attempts_made += 1
            job.started_at = now
            claimed.append(
                ClaimedJob(
                    id=job.id,
                    queue_name=job.queue_name,
                    name=job.name,
                    routing_key=job.routing_key,
                    payload=dict(job.payload),
                    attempts_made=job.attempts_made,
                    max_attempts=job.max_attempts,
                    enqueued_at=ensure_utc(job.enqueued_at),
                    started_at=now,
                )
            )
        db.flush()
    db.commit()
    return claimed


def ack_job(db: Session, job_id: uuid.UUID, *, now: Optional[datetime] = None) -> None:
    job = db.get(Job, job_id)
    if job is None:
        logger.warning("Ack for unknown job", extra={"context": {"job_id": str(job_id)}})
        return
    job.status = JobStatus.COMPLETED.value
    job.finished_at = now or utcnow()
    job.failed_reason = None
    db.commit()


def _fail_job(db: Session, job: Job, reason: str, now: datetime) -> bool:
    job.status = JobStatus.FAILED.value
    job.finished_at = now
    job.failed_reason = reason
    return push_dead_letter(
        db,
        DeadLetterEntry(
            job_id=job.id,
            original_queue=job.queue_name,
            attempts_made=job.attempts_made,
            error_message=reason,
            payload=dict(job.payload),
            failed_at=now,
        ),
    )


def nack_job(
    db: Session,
    job_id: uuid.UUID,
    error: str,
    *,
    permanent: bool = False,
    now: Optional[datetime] = None,
) -> NackOutcome:
    """Record a failed attempt.

    Below the attempt ceiling the job is delayed with exponential backoff;
    at the ceiling (or when ``permanent``) it fails and is dead-lettered.
    """
    now = now or utcnow()
    job = db.get(Job, job_id)
    if job is None:
        logger.warning("Nack for unknown job", extra={"context": {"job_id": str(job_id)}})
        return NackOutcome(status="missing", attempts_made=0)

    if permanent or job.attempts_made >= job.max_attempts:
        pushed = _fail_job(db, job, error, now)
        db.commit()
        return NackOutcome(status=JobStatus.FAILED.value, attempts_made=job.attempts_made, dead_lettered=pushed)

    delay = job.backoff_base_seconds * (2 ** (job.attempts_made - 1))
    next_run_at = now + timedelta(seconds=delay)
    job.status = JobStatus.DELAYED.value
    job.run_at = next_run_at
    job.failed_reason = error
    job.started_at = None
    db.commit()
    return NackOutcome(status=JobStatus.DELAYED.value, attempts_made=job.attempts_made, next_run_at=next_run_at)


def release_job(db: Session, job_id: uuid.UUID) -> None:
    """Return an interrupted active job to waiting without charging the attempt."""
    job = db.get(Job, job_id)
    if job is None or job.status != JobStatus.ACTIVE.value:
        return
    job.status = JobStatus.WAITING.value
    job.attempts_made = max(0, job.attempts_made - 1)
    job.started_at = None
    db.commit()


def recover_stalled_jobs(
    db: Session,
    queue_name: str,
    *,
    stale_after_seconds: int,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """Return active jobs abandoned by a dead worker to the queue."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    stalled = db.scalars(
        select(Job)
        .where(
            Job.queue_name == queue_name,
            Job.status == JobStatus.ACTIVE.value,
            Job.started_at < cutoff,
        )
        .with_for_update(skip_locked=True)
    ).all()

    requeued = 0
    dead_lettered = 0
    for job in stalled:
        if job.attempts_made >= job.max_attempts:
            if _fail_job(db, job, "job stalled", now):
                dead_lettered += 1
        else:
            job.status = JobStatus.WAITING.value
            job.run_at = now
            job.started_at = None
            requeued += 1
    db.commit()

    if stalled:
        logger.warning(
            "Recovered stalled jobs",
            extra={"context": {"queue": queue_name, "requeued": requeued, "dead_lettered": dead_lettered}},
        )
    return {"requeued": requeued, "dead_lettered": dead_lettered}


def prune_finished_jobs(db: Session, queue_name: str, *, keep_completed: int, keep_failed: int) -> int:
    """Keep only the newest N completed and N failed jobs."""
    removed = 0
    for status, keep in ((JobStatus.COMPLETED.value, keep_completed), (JobStatus.FAILED.value, keep_failed)):
        stale_ids = db.scalars(
            select(Job.id)
            .where(Job.queue_name == queue_name, Job.status == status)
            .order_by(Job.finished_at.desc(), Job.enqueued_at.desc())
            .offset(keep)
        ).all()
        if stale_ids:
            result = db.execute(delete(Job).where(Job.id.in_(stale_ids)))
            removed += result.rowcount
    db.commit()
    return removed


def get_queue_counts(db: Session, queue_name: str) -> dict[str, int]:
    counts = {status.value: 0 for status in JobStatus}
    rows = db.execute(
        select(Job.status, func.count()).where(Job.queue_name == queue_name).group_by(Job.status)
    ).all()
    for status, count in rows:
        counts[status] = count
    return counts


def list_jobs(db: Session, queue_name: str, status: str, *, limit: int = 20) -> list[Job]:
    order = Job.finished_at.desc() if status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value) else Job.run_at
    return db.scalars(
        select(Job).where(Job.queue_name == queue_name, Job.status == status).order_by(order).limit(limit)
    ).all()


def job_snapshot(job: Job) -> dict[str, Any]:
    enqueued_at = ensure_utc(job.enqueued_at)
    return {
        "id": str(job.id),
        "name": job.name,
        "attemptsMade": job.attempts_made,
        "failedReason": job.failed_reason,
        "timestamp": int(enqueued_at.timestamp() * 1000) if enqueued_at else None,
        "data": job.payload,
    }

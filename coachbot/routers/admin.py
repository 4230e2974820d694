"""Operator endpoints: queue health, failed jobs, dead letters, digest, funnel stats and feedback."""

import hmac
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from coachbot.config import settings
from coachbot.database import get_db
from coachbot.dependencies import get_rate_limiter
from coachbot.logging_config import get_logger
from coachbot.models import JobStatus
from coachbot.services.dead_letter_service import dead_letter_snapshot, list_dead_letters, requeue_dead_letter
from coachbot.services.digest_service import get_digest_status
from coachbot.services.feedback_service import feedback_snapshot, list_feedback_by_chat
from coachbot.services.flow_analytics_service import get_flow_summary
from coachbot.services.health_service import get_queue_health
from coachbot.services.queue_service import job_snapshot, list_jobs
from coachbot.services.rate_limiter import ADMIN_SCOPE, RateLimiter, client_key_from_request

logger = get_logger("admin")

router = APIRouter(tags=["admin"])


def is_admin_authorized(header_value: Optional[str], admin_key: Optional[str]) -> bool:
    if not admin_key or not header_value:
        return False
    return hmac.compare_digest(header_value.encode(), admin_key.encode())


async def require_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(default=None),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """Rate limit first (429), then check the admin key (401)."""
    decision = await limiter.consume_scope(
        ADMIN_SCOPE,
        client_key_from_request(request),
        settings.admin_rate_limit_max_requests,
        settings.admin_rate_limit_window_seconds,
    )
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail={"ok": False, "error": "rate_limited", "retryAfterSec": decision.retry_after_seconds},
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )
    if not is_admin_authorized(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail={"ok": False})


@router.get("/queue/health", dependencies=[Depends(require_admin)])
def queue_health(db: Session = Depends(get_db)):
    return {"ok": True, "queues": get_queue_health(db, settings.queue_name)}


@router.get("/queue/failed", dependencies=[Depends(require_admin)])
def queue_failed(limit: int = Query(default=20, ge=1, le=100), db: Session = Depends(get_db)):
    jobs = list_jobs(db, settings.queue_name, JobStatus.FAILED.value, limit=limit)
    return {"ok": True, "jobs": [job_snapshot(job) for job in jobs]}


@router.get("/queue/dlq", dependencies=[Depends(require_admin)])
def queue_dlq(limit: int = Query(default=20, ge=1, le=100), db: Session = Depends(get_db)):
    entries = list_dead_letters(db, limit=limit)
    return {"ok": True, "jobs": [dead_letter_snapshot(entry) for entry in entries]}


@router.post("/queue/dlq/requeue/{job_id}", dependencies=[Depends(require_admin)])
def queue_dlq_requeue(job_id: str, db: Session = Depends(get_db)):
    try:
        parsed = uuid.UUID(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail={"ok": False})

    new_job_id = requeue_dead_letter(db, parsed)
    if new_job_id is None:
        raise HTTPException(status_code=404, detail={"ok": False})
    logger.info("Dead letter requeued by operator", extra={"context": {"job_id": job_id, "new_job_id": str(new_job_id)}})
    return {"ok": True, "jobId": job_id, "newJobId": str(new_job_id)}


@router.get("/digest/status", dependencies=[Depends(require_admin)])
def digest_status(db: Session = Depends(get_db)):
    return {"ok": True, **get_digest_status(db)}


@router.get("/flows/summary", dependencies=[Depends(require_admin)])
def flows_summary(db: Session = Depends(get_db)):
    return {"ok": True, "flows": get_flow_summary(db)}


@router.get("/feedback", dependencies=[Depends(require_admin)])
def feedback_by_chat(
    chat_id: int = Query(...),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    entries = list_feedback_by_chat(db, chat_id, limit=limit)
    return {"ok": True, "feedback": [feedback_snapshot(entry) for entry in entries]}

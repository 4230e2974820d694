import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from coachbot.config import settings
from coachbot.logging_config import get_logger
from coachbot.schemas.inbound import InboundMessage
from coachbot.services.idempotency_service import mark_processed
from coachbot.services.queue_service import enqueue_job

logger = get_logger("ingest_service")


@dataclass
class IngestResult:
    accepted: bool
    duplicate: bool = False
    job_id: Optional[uuid.UUID] = None


def accept_inbound(db: Session, message: InboundMessage) -> IngestResult:
    """Mark the update processed and enqueue its job in one transaction.

    A duplicate ``update_id`` enqueues nothing.
    """
    try:
        if not mark_processed(db, message.update_id):
            db.rollback()
            logger.info("Duplicate update skipped", extra={"context": {"update_id": message.update_id}})
            return IngestResult(accepted=False, duplicate=True)

        job_id = enqueue_job(
            db,
            settings.queue_name,
            message.model_dump(mode="json", exclude_none=True),
            routing_key=str(message.chat_id),
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Update enqueued",
        extra={
            "context": {
                "update_id": message.update_id,
                "chat_id": message.chat_id,
                "job_id": str(job_id),
                "has_media": message.media is not None,
            }
        },
    )
    return IngestResult(accepted=True, job_id=job_id)

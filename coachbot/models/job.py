import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, Float, Index, Integer, Text, Uuid

from coachbot.database import Base, JSONType, utcnow


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    queue_name = Column(Text, nullable=False)
    name = Column(Text, nullable=False, default="incoming-message")
    routing_key = Column(Text, nullable=False)  # chat id; one active job per key
    payload = Column(JSONType, nullable=False)
    status = Column(Text, nullable=False, default=JobStatus.WAITING.value)
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_base_seconds = Column(Float, nullable=False, default=1.0)
    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    enqueued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    failed_reason = Column(Text)

    __table_args__ = (
        Index("idx_jobs_queue_status_run_at", "queue_name", "status", "run_at"),
        Index("idx_jobs_routing_key_status", "routing_key", "status"),
    )

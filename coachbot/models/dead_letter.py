from sqlalchemy import Column, DateTime, Index, Integer, Text, Uuid

from coachbot.database import Base, JSONType, utcnow


class DeadLetter(Base):
    __tablename__ = "dead_letters"

    # Same id as the failed job: a job can be dead-lettered only once.
    job_id = Column(Uuid, primary_key=True)
    original_queue = Column(Text, nullable=False)
    attempts_made = Column(Integer, nullable=False)
    failed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    error_message = Column(Text, nullable=False)
    payload = Column(JSONType, nullable=False)

    __table_args__ = (Index("idx_dead_letters_failed_at", "failed_at"),)

from sqlalchemy import BigInteger, Column, DateTime

from coachbot.database import Base, utcnow


class ProcessedUpdate(Base):
    __tablename__ = "processed_updates"

    update_id = Column(BigInteger, primary_key=True, autoincrement=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

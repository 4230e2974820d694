from sqlalchemy import BigInteger, Column, Date, DateTime, Index, Integer, Text, UniqueConstraint

from coachbot.database import Base, BigIntPK, utcnow


class DailySummary(Base):
    """Digest sent marker: existence proves the digest for chat/day was delivered."""

    __tablename__ = "daily_summaries"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    summary_date = Column(Date, nullable=False)
    timezone = Column(Text, nullable=False)
    reports_count = Column(Integer, nullable=False)
    window_start_at = Column(DateTime(timezone=True), nullable=False)
    window_end_at = Column(DateTime(timezone=True), nullable=False)
    summary_text = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("chat_id", "summary_date", name="uq_daily_summaries_chat_date"),
        Index("idx_daily_summaries_sent_at", "sent_at"),
    )

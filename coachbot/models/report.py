from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, Text

from coachbot.database import Base, BigIntPK, utcnow


class Report(Base):
    __tablename__ = "reports"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    update_id = Column(BigInteger, nullable=False)
    coach_mode = Column(Text, nullable=False)
    analyzer_model = Column(Text, nullable=False)
    reporter_model = Column(Text, nullable=False)
    user_text = Column(Text, nullable=False)
    analysis = Column(Text, nullable=False)
    reply = Column(Text, nullable=False)
    queue_wait_ms = Column(Integer)
    input_resolution_ms = Column(Integer)
    analyzer_duration_ms = Column(Integer)
    reporter_duration_ms = Column(Integer)
    send_duration_ms = Column(Integer)
    total_duration_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_reports_chat_created_at", "chat_id", "created_at", "id"),)

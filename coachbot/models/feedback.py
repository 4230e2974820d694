from sqlalchemy import BigInteger, Column, DateTime, Index, Text

from coachbot.database import Base, BigIntPK, utcnow


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    username = Column(Text)
    update_id = Column(BigInteger, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_feedback_chat_created_at", "chat_id", "created_at", "id"),)

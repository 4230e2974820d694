from sqlalchemy import BigInteger, Boolean, Column, DateTime, Text

from coachbot.database import Base, utcnow


class UserConversationState(Base):
    __tablename__ = "user_conversation_state"

    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    awaiting_feedback = Column(Boolean, nullable=False, default=False)
    awaiting_mode_recommendation = Column(Boolean, nullable=False, default=False)
    coach_mode = Column(Text, nullable=False, default="reality_check")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

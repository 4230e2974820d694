from sqlalchemy import BigInteger, Column, DateTime, Index, Text

from coachbot.database import Base, BigIntPK, utcnow


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    username = Column(Text)
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_chat_messages_chat_created_at", "chat_id", "created_at", "id"),)

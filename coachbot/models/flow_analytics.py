from sqlalchemy import BigInteger, Column, DateTime, Index, Text

from coachbot.database import Base, BigIntPK, utcnow


class FlowCounter(Base):
    __tablename__ = "flow_counters"

    counter_key = Column(Text, primary_key=True)
    counter_value = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class FlowEvent(Base):
    """Append-only; rows are never updated."""

    __tablename__ = "flow_events"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    counter_key = Column(Text, nullable=False)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    update_id = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_flow_events_key_created_at", "counter_key", "created_at"),)

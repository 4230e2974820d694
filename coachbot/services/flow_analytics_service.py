"""Funnel analytics: rolled-up counters plus an append-only event log."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from coachbot.database import insert_for, utcnow
from coachbot.models import FlowCounter, FlowEvent
from coachbot.services.state_machine import FunnelEvent


def record_flow_event(db: Session, event: FunnelEvent, *, chat_id: int, user_id: int, update_id: int) -> None:
    """Increment the counter and append the event. Does not commit."""
    now = utcnow()
    stmt = insert_for(db, FlowCounter).values(counter_key=event.value, counter_value=1, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=["counter_key"],
        set_={"counter_value": FlowCounter.counter_value + 1, "updated_at": now},
    )
    db.execute(stmt)
    db.add(FlowEvent(counter_key=event.value, chat_id=chat_id, user_id=user_id, update_id=update_id, created_at=now))


def get_counter(db: Session, event: FunnelEvent) -> int:
    value = db.scalar(select(FlowCounter.counter_value).where(FlowCounter.counter_key == event.value))
    return value or 0


def get_flow_summary(db: Session) -> dict[str, dict[str, int]]:
    """{"feedback": {"started": n, ...}, "mode_recommendation": {...}} with zeros filled in."""
    values = dict(db.execute(select(FlowCounter.counter_key, FlowCounter.counter_value)).all())
    summary: dict[str, dict[str, int]] = {}
    for event in FunnelEvent:
        flow, step = event.value.split(".", 1)
        summary.setdefault(flow, {})[step] = values.get(event.value, 0)
    return summary

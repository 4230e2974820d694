from __future__ import annotations

from sqlalchemy.orm import Session

from coachbot.database import insert_for, utcnow
from coachbot.models import ProcessedUpdate


def mark_processed(db: Session, update_id: int) -> bool:
    """Record ``update_id`` as accepted.

    True only for the first insert. The caller owns the transaction so the
    ledger row and the job row are committed together.
    """
    stmt = (
        insert_for(db, ProcessedUpdate)
        .values(update_id=update_id, processed_at=utcnow())
        .on_conflict_do_nothing(index_elements=["update_id"])
    )
    result = db.execute(stmt)
    return result.rowcount > 0

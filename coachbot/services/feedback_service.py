from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from coachbot.database import ensure_utc
from coachbot.models import Feedback


def append_feedback(
    db: Session,
    *,
    chat_id: int,
    user_id: int,
    update_id: int,
    message: str,
    username: Optional[str] = None,
) -> Feedback:
    feedback = Feedback(chat_id=chat_id, user_id=user_id, username=username, update_id=update_id, message=message)
    db.add(feedback)
    return feedback


def list_feedback_by_chat(db: Session, chat_id: int, limit: int = 20) -> list[Feedback]:
    return db.scalars(
        select(Feedback)
        .where(Feedback.chat_id == chat_id)
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .limit(limit)
    ).all()


def feedback_snapshot(feedback: Feedback) -> dict[str, Any]:
    created_at = ensure_utc(feedback.created_at)
    return {
        "id": feedback.id,
        "chatId": feedback.chat_id,
        "userId": feedback.user_id,
        "username": feedback.username,
        "updateId": feedback.update_id,
        "message": feedback.message,
        "createdAt": created_at.isoformat() if created_at else None,
    }

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from coachbot.models import ChatMessage


def append_message(
    db: Session,
    *,
    chat_id: int,
    user_id: int,
    role: str,
    content: str,
    username: Optional[str] = None,
) -> ChatMessage:
    message = ChatMessage(chat_id=chat_id, user_id=user_id, username=username, role=role, content=content)
    db.add(message)
    return message


def get_recent_history(db: Session, chat_id: int, limit: int = 12) -> list[dict]:
    """Last ``limit`` messages for the chat, oldest first, as LLM chat messages."""
    rows = db.scalars(
        select(ChatMessage)
        .where(ChatMessage.chat_id == chat_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    ).all()
    return [{"role": row.role, "content": row.content} for row in reversed(rows)]

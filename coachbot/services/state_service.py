from sqlalchemy.orm import Session

from coachbot.database import insert_for, utcnow
from coachbot.logging_config import get_logger
from coachbot.models import UserConversationState
from coachbot.services.coach_modes import baseline_mode_key, get_mode
from coachbot.services.state_machine import FlowState, flags_for_state, state_from_flags

logger = get_logger("state_service")


def get_or_create_state(db: Session, user_id: int) -> UserConversationState:
    """Load the user's row, creating it on first contact.

    The insert is committed before returning; no row lock may be held across
    the caller's awaits.
    """
    now = utcnow()
    stmt = (
        insert_for(db, UserConversationState)
        .values(
            user_id=user_id,
            awaiting_feedback=False,
            awaiting_mode_recommendation=False,
            coach_mode=baseline_mode_key(),
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    db.execute(stmt)
    db.commit()
    return db.get(UserConversationState, user_id)


def current_flow_state(row: UserConversationState) -> FlowState:
    return state_from_flags(row.awaiting_feedback, row.awaiting_mode_recommendation)


def apply_flow_state(row: UserConversationState, state: FlowState) -> None:
    awaiting_feedback, awaiting_mode_recommendation = flags_for_state(state)
    if (row.awaiting_feedback, row.awaiting_mode_recommendation) != (awaiting_feedback, awaiting_mode_recommendation):
        logger.debug(
            "Flow state change",
            extra={"context": {"user_id": row.user_id, "from": current_flow_state(row).value, "to": state.value}},
        )
    row.awaiting_feedback = awaiting_feedback
    row.awaiting_mode_recommendation = awaiting_mode_recommendation


def set_coach_mode(row: UserConversationState, mode_key: str) -> str:
    mode = get_mode(mode_key)
    row.coach_mode = mode.key
    return mode.key

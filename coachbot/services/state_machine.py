from dataclasses import dataclass
from enum import Enum
from typing import Optional

from coachbot.services.intent_service import Intent


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_FEEDBACK = "awaiting_feedback"
    AWAITING_MODE_RECOMMENDATION = "awaiting_mode_recommendation"


class Action(str, Enum):
    GENERATE_REPLY = "generate_reply"
    SEND_WELCOME = "send_welcome"
    SEND_HELP = "send_help"
    SEND_MODE_MENU = "send_mode_menu"
    SEND_MODE_INFO = "send_mode_info"
    SWITCH_MODE = "switch_mode"
    SEND_UNKNOWN_MODE = "send_unknown_mode"
    NOTHING_TO_CANCEL = "nothing_to_cancel"
    PROMPT_FEEDBACK = "prompt_feedback"
    SAVE_FEEDBACK = "save_feedback"
    CANCEL_FEEDBACK = "cancel_feedback"
    PROMPT_SITUATION = "prompt_situation"
    RECOMMEND_MODE = "recommend_mode"
    CANCEL_RECOMMENDATION = "cancel_recommendation"


class FunnelEvent(str, Enum):
    FEEDBACK_STARTED = "feedback.started"
    FEEDBACK_SAVED = "feedback.saved"
    FEEDBACK_CANCELLED = "feedback.cancelled"
    MODE_RECOMMENDATION_STARTED = "mode_recommendation.started"
    MODE_RECOMMENDATION_COMPLETED = "mode_recommendation.completed"
    MODE_RECOMMENDATION_CANCELLED = "mode_recommendation.cancelled"


@dataclass(frozen=True)
class Transition:
    next_state: FlowState
    action: Action
    funnel_event: Optional[FunnelEvent] = None


IDLE = FlowState.IDLE
AWAITING_FEEDBACK = FlowState.AWAITING_FEEDBACK
AWAITING_MODE_RECOMMENDATION = FlowState.AWAITING_MODE_RECOMMENDATION

TRANSITIONS: dict[tuple[FlowState, Intent], Transition] = {
    (IDLE, Intent.START_FEEDBACK): Transition(AWAITING_FEEDBACK, Action.PROMPT_FEEDBACK, FunnelEvent.FEEDBACK_STARTED),
    (IDLE, Intent.START_MODE_RECOMMENDATION): Transition(
        AWAITING_MODE_RECOMMENDATION, Action.PROMPT_SITUATION, FunnelEvent.MODE_RECOMMENDATION_STARTED
    ),
    (IDLE, Intent.START): Transition(IDLE, Action.SEND_WELCOME),
    (IDLE, Intent.HELP): Transition(IDLE, Action.SEND_HELP),
    (IDLE, Intent.MODE_MENU): Transition(IDLE, Action.SEND_MODE_MENU),
    (IDLE, Intent.MODE_INFO): Transition(IDLE, Action.SEND_MODE_INFO),
    (IDLE, Intent.MODE_SELECT): Transition(IDLE, Action.SWITCH_MODE),
    (IDLE, Intent.MODE_UNKNOWN): Transition(IDLE, Action.SEND_UNKNOWN_MODE),
    (IDLE, Intent.CANCEL): Transition(IDLE, Action.NOTHING_TO_CANCEL),
    (AWAITING_FEEDBACK, Intent.CANCEL): Transition(IDLE, Action.CANCEL_FEEDBACK, FunnelEvent.FEEDBACK_CANCELLED),
    (AWAITING_MODE_RECOMMENDATION, Intent.CANCEL): Transition(
        IDLE, Action.CANCEL_RECOMMENDATION, FunnelEvent.MODE_RECOMMENDATION_CANCELLED
    ),
}

# Applied when (state, intent) has no explicit row: awaiting states capture any text.
STATE_DEFAULTS: dict[FlowState, Transition] = {
    IDLE: Transition(IDLE, Action.GENERATE_REPLY),
    AWAITING_FEEDBACK: Transition(IDLE, Action.SAVE_FEEDBACK, FunnelEvent.FEEDBACK_SAVED),
    AWAITING_MODE_RECOMMENDATION: Transition(
        IDLE, Action.RECOMMEND_MODE, FunnelEvent.MODE_RECOMMENDATION_COMPLETED
    ),
}

# Empty input while awaiting keeps the state and asks again.
REPROMPTS: dict[FlowState, Transition] = {
    AWAITING_FEEDBACK: Transition(AWAITING_FEEDBACK, Action.PROMPT_FEEDBACK),
    AWAITING_MODE_RECOMMENDATION: Transition(AWAITING_MODE_RECOMMENDATION, Action.PROMPT_SITUATION),
}


def state_from_flags(awaiting_feedback: bool, awaiting_mode_recommendation: bool) -> FlowState:
    if awaiting_feedback:
        return AWAITING_FEEDBACK
    if awaiting_mode_recommendation:
        return AWAITING_MODE_RECOMMENDATION
    return IDLE


def flags_for_state(state: FlowState) -> tuple[bool, bool]:
    """(awaiting_feedback, awaiting_mode_recommendation); never both true."""
    return state == AWAITING_FEEDBACK, state == AWAITING_MODE_RECOMMENDATION


def resolve_transition(state: FlowState, intent: Intent, text: Optional[str]) -> Transition:
    if state != IDLE and intent != Intent.CANCEL and not (text or "").strip():
        return REPROMPTS[state]
    return TRANSITIONS.get((state, intent), STATE_DEFAULTS[state])

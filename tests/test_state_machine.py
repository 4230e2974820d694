import pytest

from coachbot.services.intent_service import Intent
from coachbot.services.state_machine import (
    Action,
    FlowState,
    FunnelEvent,
    flags_for_state,
    resolve_transition,
    state_from_flags,
)


class TestResolveTransition:
    def test_idle_generic_generates_reply(self):
        transition = resolve_transition(FlowState.IDLE, Intent.GENERIC, "мне тяжело")
        assert transition.action == Action.GENERATE_REPLY
        assert transition.next_state == FlowState.IDLE
        assert transition.funnel_event is None

    def test_feedback_flow(self):
        start = resolve_transition(FlowState.IDLE, Intent.START_FEEDBACK, "/feedback")
        assert start.next_state == FlowState.AWAITING_FEEDBACK
        assert start.funnel_event == FunnelEvent.FEEDBACK_STARTED

        save = resolve_transition(FlowState.AWAITING_FEEDBACK, Intent.GENERIC, "Отличный бот")
        assert save.action == Action.SAVE_FEEDBACK
        assert save.next_state == FlowState.IDLE
        assert save.funnel_event == FunnelEvent.FEEDBACK_SAVED

    def test_awaiting_state_captures_commands_as_text(self):
        transition = resolve_transition(FlowState.AWAITING_FEEDBACK, Intent.HELP, "/help")
        assert transition.action == Action.SAVE_FEEDBACK

    def test_cancel_from_each_state(self):
        assert resolve_transition(FlowState.IDLE, Intent.CANCEL, "/cancel").action == Action.NOTHING_TO_CANCEL
        feedback = resolve_transition(FlowState.AWAITING_FEEDBACK, Intent.CANCEL, "/cancel")
        assert feedback.funnel_event == FunnelEvent.FEEDBACK_CANCELLED
        recommendation = resolve_transition(FlowState.AWAITING_MODE_RECOMMENDATION, Intent.CANCEL, "отмена")
        assert recommendation.action == Action.CANCEL_RECOMMENDATION
        assert recommendation.next_state == FlowState.IDLE

    def test_recommendation_completes(self):
        transition = resolve_transition(FlowState.AWAITING_MODE_RECOMMENDATION, Intent.GENERIC, "мне страшно")
        assert transition.action == Action.RECOMMEND_MODE
        assert transition.funnel_event == FunnelEvent.MODE_RECOMMENDATION_COMPLETED

    @pytest.mark.parametrize("state", [FlowState.AWAITING_FEEDBACK, FlowState.AWAITING_MODE_RECOMMENDATION])
    def test_empty_text_reprompts_and_keeps_state(self, state):
        transition = resolve_transition(state, Intent.GENERIC, "   ")
        assert transition.next_state == state
        assert transition.funnel_event is None


class TestFlags:
    @pytest.mark.parametrize("state", list(FlowState))
    def test_round_trip(self, state):
        assert state_from_flags(*flags_for_state(state)) == state

    def test_never_both_flags(self):
        for state in FlowState:
            assert flags_for_state(state) != (True, True)

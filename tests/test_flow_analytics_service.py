from sqlalchemy import select

from coachbot.models import FlowEvent
from coachbot.services.flow_analytics_service import get_counter, get_flow_summary, record_flow_event
from coachbot.services.state_machine import FunnelEvent


class TestFlowAnalytics:
    def test_counter_and_event_log(self, db_session):
        for update_id in (1, 2):
            record_flow_event(db_session, FunnelEvent.FEEDBACK_STARTED, chat_id=100, user_id=7, update_id=update_id)
        record_flow_event(db_session, FunnelEvent.FEEDBACK_SAVED, chat_id=100, user_id=7, update_id=3)
        db_session.commit()

        assert get_counter(db_session, FunnelEvent.FEEDBACK_STARTED) == 2
        assert get_counter(db_session, FunnelEvent.FEEDBACK_SAVED) == 1
        assert get_counter(db_session, FunnelEvent.MODE_RECOMMENDATION_STARTED) == 0
        events = db_session.scalars(select(FlowEvent).order_by(FlowEvent.id)).all()
        assert [(e.counter_key, e.update_id) for e in events] == [
            ("feedback.started", 1),
            ("feedback.started", 2),
            ("feedback.saved", 3),
        ]

    def test_summary_fills_zeros(self, db_session):
        assert get_flow_summary(db_session) == {
            "feedback": {"started": 0, "saved": 0, "cancelled": 0},
            "mode_recommendation": {"started": 0, "completed": 0, "cancelled": 0},
        }

from coachbot.models.chat_message import ChatMessage
from coachbot.models.daily_summary import DailySummary
from coachbot.models.dead_letter import DeadLetter
from coachbot.models.feedback import Feedback
from coachbot.models.flow_analytics import FlowCounter, FlowEvent
from coachbot.models.job import Job, JobStatus
from coachbot.models.processed_update import ProcessedUpdate
from coachbot.models.report import Report
from coachbot.models.user_state import UserConversationState

__all__ = [
    "ProcessedUpdate",
    "Job",
    "JobStatus",
    "DeadLetter",
    "UserConversationState",
    "ChatMessage",
    "Report",
    "Feedback",
    "FlowCounter",
    "FlowEvent",
    "DailySummary",
]

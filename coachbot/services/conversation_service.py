"""Per-job conversation processing.

One inbound message runs through: input resolution (voice -> text), intent
classification, the flow state machine, the chosen action (which may call
the LLM), delivery, and finally a single commit of everything the job
produced. Nothing is persisted before the reply has been delivered.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from coachbot.config import Settings, settings as default_settings
from coachbot.database import ensure_utc, utcnow
from coachbot.logging_config import JobLoggerAdapter, get_logger
from coachbot.metrics import WorkerMetrics
from coachbot.models import UserConversationState
from coachbot.schemas.inbound import InboundMessage
from coachbot.services import (
    coach_modes,
    feedback_service,
    flow_analytics_service,
    generation_service,
    history_service,
    report_service,
    state_service,
)
from coachbot.services.intent_service import classify_intent, selected_mode_key
from coachbot.services.llm.base import LLMProvider, TranscriptionProvider
from coachbot.services.state_machine import Action, Transition, resolve_transition
from coachbot.services.telegram_service import TelegramService, send_message_with_retry
from coachbot.services.transcription_service import resolve_media_text

logger = get_logger("conversation_service")

WELCOME_TEXT = (
    "Привет! Я коуч, который помогает трезво смотреть на ситуации и находить следующий шаг.\n"
    "Просто опиши, что происходит.\n\n"
    "/mode — выбрать режим, /modes — описание режимов, /recommend — подобрать режим, "
    "/feedback — оставить отзыв, /help — помощь."
)
HELP_TEXT = (
    "Команды:\n"
    "/mode — меню режимов\n"
    "/mode <режим> — переключить режим\n"
    "/modes — описание режимов\n"
    "/recommend — подобрать режим по описанию ситуации\n"
    "/feedback — оставить отзыв\n"
    "/cancel — отменить текущее действие"
)
FEEDBACK_PROMPT = "Напиши отзыв одним сообщением. /cancel — отменить."
FEEDBACK_THANKS = "Спасибо! Отзыв сохранён."
FEEDBACK_CANCELLED = "Отзыв отменён."
SITUATION_PROMPT = "Опиши ситуацию в паре предложений, и я подберу подходящий режим. /cancel — отменить."
RECOMMENDATION_CANCELLED = "Подбор режима отменён."
NOTHING_TO_CANCEL = "Сейчас нечего отменять."


@dataclass
class ConversationContext:
    """Collaborators shared by every job a worker runs."""

    telegram: TelegramService
    llm: LLMProvider
    transcriber: Optional[TranscriptionProvider] = None
    metrics: WorkerMetrics = field(default_factory=WorkerMetrics)
    settings: Settings = field(default_factory=lambda: default_settings)


@dataclass
class Reply:
    text: str
    reply_markup: Optional[dict] = None
    fallback: bool = False


@dataclass
class ProcessOutcome:
    action: str
    intent: Optional[str]
    next_state: str
    reply_text: str
    fallback_used: bool = False


@dataclass
class _GenerationTrace:
    analysis: str
    analyzer_ms: int
    reporter_ms: int


class ConversationProcessor:
    def __init__(
        self,
        db: Session,
        ctx: ConversationContext,
        message: InboundMessage,
        *,
        log: Optional[JobLoggerAdapter] = None,
        enqueued_at: Optional[datetime] = None,
    ):
        self.db = db
        self.ctx = ctx
        self.settings = ctx.settings
        self.message = message
        self.log = log or JobLoggerAdapter(logger, {"chat_id": message.chat_id, "user_id": message.user_id})
        self.enqueued_at = ensure_utc(enqueued_at)
        self.started = time.monotonic()
        self.queue_wait_ms: Optional[int] = None
        if self.enqueued_at is not None:
            self.queue_wait_ms = max(0, int((utcnow() - self.enqueued_at).total_seconds() * 1000))
        self.input_ms: Optional[int] = None
        self.trace: Optional[_GenerationTrace] = None

    # retry hooks feed the worker metrics
    def _on_llm_retry(self, exc: BaseException, attempt: int, wait_seconds: float) -> None:
        self.ctx.metrics.llm_retries += 1
        self.log.warning(
            "Retrying LLM call",
            context={"attempt": attempt, "wait_seconds": wait_seconds, "error": str(exc) or type(exc).__name__},
        )

    def _on_telegram_retry(self, exc: BaseException, attempt: int, wait_seconds: float) -> None:
        self.ctx.metrics.telegram_retries += 1
        self.log.warning(
            "Retrying Telegram send",
            context={"attempt": attempt, "wait_seconds": wait_seconds, "error": str(exc) or type(exc).__name__},
        )

    def _on_transcription_retry(self, exc: BaseException, attempt: int, wait_seconds: float) -> None:
        self.log.warning(
            "Retrying transcription",
            context={"attempt": attempt, "wait_seconds": wait_seconds, "error": str(exc) or type(exc).__name__},
        )

    async def _deliver(self, reply: Reply) -> int:
        started = time.monotonic()
        await send_message_with_retry(
            self.ctx.telegram,
            self.message.chat_id,
            generation_service.clamp_text(reply.text, self.settings.telegram_message_max_length),
            reply_markup=reply.reply_markup,
            attempts=self.settings.telegram_retry_attempts,
            base_delay_seconds=self.settings.telegram_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            on_retry=self._on_telegram_retry,
        )
        return generation_service.elapsed_ms_since(started)

    async def _resolve_text(self) -> tuple[Optional[str], bool]:
        """(text, ok). ok=False means the transcription notice must be sent."""
        if self.message.text:
            return self.message.text, True
        if self.message.media is None or self.ctx.transcriber is None:
            return None, False

        result = await resolve_media_text(
            self.ctx.telegram,
            self.ctx.transcriber,
            self.message.media,
            max_bytes=self.settings.transcription_max_bytes,
            timeout_seconds=self.settings.transcription_timeout_seconds,
            attempts=self.settings.transcription_retry_attempts,
            base_delay_seconds=self.settings.transcription_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            on_retry=self._on_transcription_retry,
            log=self.log,
        )
        self.input_ms = result.elapsed_ms
        if not result.ok:
            return None, False
        return result.value, True

    async def run(self) -> ProcessOutcome:
        state_row = state_service.get_or_create_state(self.db, self.message.user_id)
        state = state_service.current_flow_state(state_row)

        text, ok = await self._resolve_text()
        if not ok:
            self.ctx.metrics.fallbacks += 1
            await self._deliver(Reply(self.settings.transcription_failed_reply, fallback=True))
            self.db.commit()
            return ProcessOutcome(
                action="transcription_failed",
                intent=None,
                next_state=state.value,
                reply_text=self.settings.transcription_failed_reply,
                fallback_used=True,
            )

        intent = classify_intent(text)
        transition = resolve_transition(state, intent, text)
        self.log.info(
            "Flow transition",
            context={
                "state": state.value,
                "intent": intent.value,
                "action": transition.action.value,
                "next_state": transition.next_state.value,
            },
        )

        reply = await self._build_reply(transition, state_row, text or "")
        if reply.fallback:
            self.ctx.metrics.fallbacks += 1
        send_ms = await self._deliver(reply)

        self._persist(transition, state_row, text or "", reply, send_ms)
        self.db.commit()

        return ProcessOutcome(
            action=transition.action.value,
            intent=intent.value,
            next_state=transition.next_state.value,
            reply_text=reply.text,
            fallback_used=reply.fallback,
        )

    async def _build_reply(self, transition: Transition, state_row: UserConversationState, text: str) -> Reply:
        action = transition.action
        if action == Action.GENERATE_REPLY:
            return await self._generate(state_row, text)
        if action == Action.SEND_WELCOME:
            return Reply(WELCOME_TEXT)
        if action == Action.SEND_HELP:
            return Reply(HELP_TEXT)
        if action == Action.SEND_MODE_MENU:
            return Reply(coach_modes.render_mode_menu(state_row.coach_mode), coach_modes.build_mode_keyboard())
        if action == Action.SEND_MODE_INFO:
            return Reply(coach_modes.render_mode_descriptions(), coach_modes.build_mode_keyboard())
        if action == Action.SWITCH_MODE:
            mode = coach_modes.get_mode(selected_mode_key(text))
            return Reply(coach_modes.render_mode_switched(mode), {"remove_keyboard": True})
        if action == Action.SEND_UNKNOWN_MODE:
            return Reply(coach_modes.render_unknown_mode(), coach_modes.build_mode_keyboard())
        if action == Action.NOTHING_TO_CANCEL:
            return Reply(NOTHING_TO_CANCEL)
        if action == Action.PROMPT_FEEDBACK:
            return Reply(FEEDBACK_PROMPT)
        if action == Action.SAVE_FEEDBACK:
            return Reply(FEEDBACK_THANKS)
        if action == Action.CANCEL_FEEDBACK:
            return Reply(FEEDBACK_CANCELLED)
        if action == Action.PROMPT_SITUATION:
            return Reply(SITUATION_PROMPT)
        if action == Action.RECOMMEND_MODE:
            recommendation = coach_modes.recommend_mode(text)
            self.log.info(
                "Mode recommended",
                context={"mode": recommendation.mode.key, "score": recommendation.score},
            )
            return Reply(coach_modes.render_recommendation(recommendation))
        if action == Action.CANCEL_RECOMMENDATION:
            return Reply(RECOMMENDATION_CANCELLED)
        raise ValueError(f"Unhandled action: {action}")

    async def _generate(self, state_row: UserConversationState, text: str) -> Reply:
        mode = coach_modes.get_mode(state_row.coach_mode)
        history = history_service.get_recent_history(
            self.db, self.message.chat_id, limit=self.settings.history_limit
        )
        history.append({"role": "user", "content": text})

        analysis_result = await generation_service.analyze(
            self.ctx.llm,
            mode,
            history,
            model=self.settings.openrouter_model_analyzer,
            timeout_seconds=self.settings.analyzer_timeout_seconds,
            attempts=self.settings.llm_retry_attempts,
            base_delay_seconds=self.settings.llm_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            on_retry=self._on_llm_retry,
            log=self.log,
        )
        analysis = analysis_result.unwrap_or(self.settings.analysis_unavailable_text)
        if not analysis_result.ok:
            self.ctx.metrics.fallbacks += 1

        reply_result = await generation_service.report(
            self.ctx.llm,
            mode,
            history,
            analysis,
            model=self.settings.openrouter_model_reporter,
            timeout_seconds=self.settings.reporter_timeout_seconds,
            attempts=self.settings.llm_retry_attempts,
            base_delay_seconds=self.settings.llm_retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            on_retry=self._on_llm_retry,
            log=self.log,
        )
        self.trace = _GenerationTrace(
            analysis=analysis,
            analyzer_ms=analysis_result.elapsed_ms,
            reporter_ms=reply_result.elapsed_ms,
        )

        if reply_result.ok:
            return Reply(reply_result.value)
        if reply_result.timed_out:
            return Reply(self.settings.timeout_fallback_reply, fallback=True)
        return Reply(self.settings.fallback_reply, fallback=True)

    def _persist(
        self,
        transition: Transition,
        state_row: UserConversationState,
        text: str,
        reply: Reply,
        send_ms: int,
    ) -> None:
        message = self.message
        state_service.apply_flow_state(state_row, transition.next_state)

        if transition.action == Action.SWITCH_MODE:
            mode_key = state_service.set_coach_mode(state_row, selected_mode_key(text))
            self.log.info("Coach mode switched", context={"mode": mode_key})
            # the analyzer sees the switch in later turns
            history_service.append_message(
                self.db,
                chat_id=message.chat_id,
                user_id=message.user_id,
                username=message.username,
                role="assistant",
                content=reply.text,
            )

        if transition.action == Action.SAVE_FEEDBACK:
            feedback_service.append_feedback(
                self.db,
                chat_id=message.chat_id,
                user_id=message.user_id,
                username=message.username,
                update_id=message.update_id,
                message=text.strip(),
            )

        if transition.funnel_event is not None:
            flow_analytics_service.record_flow_event(
                self.db,
                transition.funnel_event,
                chat_id=message.chat_id,
                user_id=message.user_id,
                update_id=message.update_id,
            )

        if transition.action == Action.GENERATE_REPLY and self.trace is not None:
            delivered = generation_service.clamp_text(reply.text, self.settings.telegram_message_max_length)
            history_service.append_message(
                self.db,
                chat_id=message.chat_id,
                user_id=message.user_id,
                username=message.username,
                role="user",
                content=text,
            )
            history_service.append_message(
                self.db,
                chat_id=message.chat_id,
                user_id=message.user_id,
                username=message.username,
                role="assistant",
                content=delivered,
            )
            report_service.append_report(
                self.db,
                chat_id=message.chat_id,
                user_id=message.user_id,
                update_id=message.update_id,
                coach_mode=state_row.coach_mode,
                analyzer_model=self.settings.openrouter_model_analyzer,
                reporter_model=self.settings.openrouter_model_reporter,
                user_text=text,
                analysis=self.trace.analysis,
                reply=delivered,
                latencies=report_service.StageLatencies(
                    queue_wait_ms=self.queue_wait_ms,
                    input_resolution_ms=self.input_ms,
                    analyzer_duration_ms=self.trace.analyzer_ms,
                    reporter_duration_ms=self.trace.reporter_ms,
                    send_duration_ms=send_ms,
                    total_duration_ms=generation_service.elapsed_ms_since(self.started),
                ),
            )


async def process_inbound_message(
    db: Session,
    ctx: ConversationContext,
    payload: dict[str, Any] | InboundMessage,
    *,
    log: Optional[JobLoggerAdapter] = None,
    enqueued_at: Optional[datetime] = None,
) -> ProcessOutcome:
    message = payload if isinstance(payload, InboundMessage) else InboundMessage.model_validate(payload)
    processor = ConversationProcessor(db, ctx, message, log=log, enqueued_at=enqueued_at)
    return await processor.run()


__all__ = [
    "ConversationContext",
    "ConversationProcessor",
    "ProcessOutcome",
    "process_inbound_message",
]

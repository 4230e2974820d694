"""Worker engine: claims jobs from the queue and runs them in bounded slots.

Run as a standalone process with ``python -m coachbot.worker`` (or the
``coachbot-worker`` script), or embedded in the API process.
"""

import asyncio
import signal
import uuid
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from coachbot.config import Settings, settings as default_settings
from coachbot.errors import InvalidJobPayloadError
from coachbot.logging_config import JobLoggerAdapter, get_logger, setup_logging
from coachbot.metrics import WorkerMetrics
from coachbot.schemas.inbound import InboundMessage
from coachbot.services import alert_service
from coachbot.services.conversation_service import ConversationContext, process_inbound_message
from coachbot.services.digest_service import DigestJob
from coachbot.services.llm import OpenAITranscriptionProvider, OpenRouterProvider
from coachbot.services.queue_service import (
    ClaimedJob,
    ack_job,
    claim_jobs,
    nack_job,
    prune_finished_jobs,
    recover_stalled_jobs,
    release_job,
)
from coachbot.services.telegram_service import TelegramService

logger = get_logger("worker")

AlertCallable = Callable[[str, Optional[dict]], Awaitable[bool]]


def format_error(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    return f"{type(exc).__name__}: {message}"[:2000]


def build_context(settings: Settings = default_settings, metrics: Optional[WorkerMetrics] = None) -> ConversationContext:
    transcriber = None
    if settings.transcription_api_key:
        transcriber = OpenAITranscriptionProvider(
            api_key=settings.transcription_api_key,
            base_url=settings.transcription_base_url,
            model=settings.transcription_model,
            language=settings.transcription_language,
        )
    return ConversationContext(
        telegram=TelegramService(settings.telegram_bot_token, api_base_url=settings.telegram_api_base_url),
        llm=OpenRouterProvider(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            default_model=settings.openrouter_model_reporter,
        ),
        transcriber=transcriber,
        metrics=metrics or WorkerMetrics(),
        settings=settings,
    )


class WorkerEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        ctx: ConversationContext,
        *,
        settings: Settings = default_settings,
        scheduler=None,
        alert: AlertCallable = alert_service.alert_error,
        on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.session_factory = session_factory
        self.ctx = ctx
        self.settings = settings
        self.queue_name = settings.queue_name
        self.concurrency = max(1, settings.worker_concurrency)
        self.metrics = ctx.metrics
        self.scheduler = scheduler
        self.alert = alert
        self.on_shutdown = on_shutdown
        self.in_flight: dict[uuid.UUID, asyncio.Task] = {}
        self.in_flight_keys: set[str] = set()
        self._stopping = asyncio.Event()
        self._background: list[asyncio.Task] = []
        self._closed = False

    @property
    def free_slots(self) -> int:
        return self.concurrency - len(self.in_flight)

    def request_stop(self, signame: str = "manual") -> None:
        if not self._stopping.is_set():
            logger.info("Worker stop requested", extra={"context": {"signal": signame}})
            self._stopping.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers not supported on this platform")

    def claim(self, now=None) -> list[ClaimedJob]:
        if self.free_slots <= 0:
            return []
        db = self.session_factory()
        try:
            return claim_jobs(
                db,
                self.queue_name,
                limit=self.free_slots,
                exclude_keys=set(self.in_flight_keys),
                now=now,
            )
        finally:
            db.close()

    def spawn(self, job: ClaimedJob) -> asyncio.Task:
        self.in_flight_keys.add(job.routing_key)
        task = asyncio.create_task(self.execute(job), name=f"job-{job.id}")
        self.in_flight[job.id] = task

        def _done(finished: asyncio.Task) -> None:
            self.in_flight.pop(job.id, None)
            self.in_flight_keys.discard(job.routing_key)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    "Job bookkeeping failed",
                    extra={"context": {"job_id": str(job.id), "error": format_error(finished.exception())}},
                )

        task.add_done_callback(_done)
        return task

    async def execute(self, job: ClaimedJob) -> None:
        log = JobLoggerAdapter(
            logger,
            {
                "job_id": str(job.id),
                "queue": job.queue_name,
                "chat_id": job.payload.get("chat_id"),
                "user_id": job.payload.get("user_id"),
                "attempt": job.attempts_made,
            },
        )
        self.metrics.processed += 1
        if job.attempts_made > 1:
            self.metrics.retried_jobs += 1
        log.info("Job started")

        db = self.session_factory()
        try:
            try:
                try:
                    message = InboundMessage.model_validate(job.payload)
                except ValidationError as e:
                    raise InvalidJobPayloadError(f"invalid payload: {e.error_count()} errors") from e
                await process_inbound_message(db, self.ctx, message, log=log, enqueued_at=job.enqueued_at)
            except asyncio.CancelledError:
                db.rollback()
                release_job(db, job.id)
                log.warning("Job interrupted by shutdown, released")
                raise
            except Exception as e:
                db.rollback()
                self.metrics.failed += 1
                permanent = isinstance(e, InvalidJobPayloadError)
                outcome = nack_job(db, job.id, format_error(e), permanent=permanent)
                log.error(
                    "Job failed",
                    context={
                        "error": format_error(e),
                        "permanent": permanent,
                        "outcome": outcome.status,
                        "next_run_at": outcome.next_run_at.isoformat() if outcome.next_run_at else None,
                    },
                    exc_info=True,
                )
                if outcome.dead_lettered:
                    self.metrics.dlq_pushed += 1
                    await self.alert(
                        "Job moved to dead-letter queue",
                        {
                            "job_id": str(job.id),
                            "queue": job.queue_name,
                            "attempts": outcome.attempts_made,
                            "error": format_error(e)[:300],
                        },
                    )
            else:
                ack_job(db, job.id)
                self.metrics.succeeded += 1
                log.info("Job succeeded")
        finally:
            db.close()

    async def drain_once(self, now=None) -> int:
        """Claim what is due and run it to completion. Returns jobs run."""
        jobs = self.claim(now=now)
        tasks = [self.spawn(job) for job in jobs]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(jobs)

    async def _metrics_loop(self) -> None:
        while not self._stopping.is_set():
            await asyncio.sleep(self.settings.metrics_snapshot_interval_seconds)
            self.metrics.log_snapshot()

    async def _maintenance_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                self.run_maintenance()
            except Exception as e:
                logger.error("Queue maintenance failed", extra={"context": {"error": format_error(e)}})
            await asyncio.sleep(self.settings.worker_maintenance_interval_seconds)

    def run_maintenance(self, now=None) -> dict:
        db = self.session_factory()
        try:
            recovered = recover_stalled_jobs(
                db,
                self.queue_name,
                stale_after_seconds=self.settings.worker_stale_after_seconds,
                now=now,
            )
            self.metrics.dlq_pushed += recovered["dead_lettered"]
            pruned = prune_finished_jobs(
                db,
                self.queue_name,
                keep_completed=self.settings.keep_completed_jobs,
                keep_failed=self.settings.keep_failed_jobs,
            )
        finally:
            db.close()
        return {**recovered, "pruned": pruned}

    async def _wait_for_stop(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def run(self, install_signals: bool = True) -> None:
        if install_signals:
            self.install_signal_handlers()
        self._background = [
            asyncio.create_task(self._metrics_loop(), name="worker-metrics"),
            asyncio.create_task(self._maintenance_loop(), name="worker-maintenance"),
        ]
        if self.scheduler is not None:
            self.scheduler.start()
        logger.info(
            "Worker started and waiting for jobs",
            extra={"context": {"queue": self.queue_name, "concurrency": self.concurrency}},
        )

        try:
            while not self._stopping.is_set():
                jobs = []
                try:
                    jobs = self.claim()
                except Exception as e:
                    logger.error("Claim failed", extra={"context": {"error": format_error(e)}})
                for job in jobs:
                    self.spawn(job)
                if not jobs:
                    await self._wait_for_stop(self.settings.worker_poll_interval_seconds)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stopping.set()

        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        pending = list(self.in_flight.values())
        if pending:
            logger.info("Waiting for in-flight jobs", extra={"context": {"count": len(pending)}})
            _, still_running = await asyncio.wait(pending, timeout=self.settings.shutdown_timeout_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning("Cancelled in-flight jobs at shutdown", extra={"context": {"count": len(still_running)}})

        self.metrics.log_snapshot("shutdown")

        await self.ctx.telegram.aclose()
        await self.ctx.llm.aclose()
        if self.ctx.transcriber is not None:
            await self.ctx.transcriber.aclose()
        if self.on_shutdown is not None:
            await self.on_shutdown()
        logger.info("Worker stopped")


def create_worker_engine(
    settings: Settings = default_settings,
    *,
    with_scheduler: bool = True,
    close_resources: bool = True,
) -> WorkerEngine:
    from coachbot.database import SessionLocal, engine
    from coachbot.redis_client import close_redis, get_redis
    from coachbot.scheduler import create_scheduler

    ctx = build_context(settings)
    scheduler = None
    if with_scheduler and settings.digest_enabled:
        digest = DigestJob(SessionLocal, ctx.telegram, ctx.llm, redis_client=get_redis(), settings=settings)
        scheduler = create_scheduler(digest.run, settings)

    async def _close_resources() -> None:
        await close_redis()
        engine.dispose()

    return WorkerEngine(
        SessionLocal,
        ctx,
        settings=settings,
        scheduler=scheduler,
        on_shutdown=_close_resources if close_resources else None,
    )


async def run_worker(settings: Settings = default_settings) -> None:
    from coachbot.database import init_schema

    init_schema()
    engine = create_worker_engine(settings)
    await engine.run()


def main() -> None:
    setup_logging(default_settings.log_level, process_role="worker")
    asyncio.run(run_worker(default_settings))


if __name__ == "__main__":
    main()

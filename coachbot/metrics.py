from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from coachbot.logging_config import get_logger

logger = get_logger("metrics")


@dataclass
class WorkerMetrics:
    """In-process counters for one worker engine; reset only by restarting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried_jobs: int = 0
    llm_retries: int = 0
    telegram_retries: int = 0
    fallbacks: int = 0
    dlq_pushed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data

    def log_snapshot(self, reason: str = "interval") -> None:
        logger.info("Worker metrics snapshot", extra={"context": {"reason": reason, **self.snapshot()}})

from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coachbot.database import ping_database
from coachbot.logging_config import get_logger
from coachbot.models import JobStatus
from coachbot.services.dead_letter_service import count_dead_letters
from coachbot.services.queue_service import get_queue_counts

logger = get_logger("health_service")


async def check_dependencies(db: Session, redis_client: Optional[redis.Redis]) -> dict:
    """Ping DB and Redis. status is "ok" only when both answer."""
    checks = {"database": "ok", "redis": "ok"}
    try:
        ping_database(db)
    except SQLAlchemyError as e:
        checks["database"] = "error"
        logger.error("Database health check failed", extra={"context": {"error": str(e)}})

    if redis_client is None:
        checks["redis"] = "error"
    else:
        try:
            await redis_client.ping()
        except (RedisError, OSError) as e:
            checks["redis"] = "error"
            logger.error("Redis health check failed", extra={"context": {"error": str(e)}})

    healthy = all(value == "ok" for value in checks.values())
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


def get_queue_health(db: Session, queue_name: str) -> dict:
    """Depth per state for the main queue and the dead-letter queue."""
    dlq_counts = {status.value: 0 for status in JobStatus}
    # Dead letters wait for an operator, so they are reported as waiting.
    dlq_counts[JobStatus.WAITING.value] = count_dead_letters(db)
    return {"main": get_queue_counts(db, queue_name), "dlq": dlq_counts}

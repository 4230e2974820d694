"""Two-stage reply generation: analyzer, then reporter.

Both stages are non-critical: each returns a Result and the caller decides
which placeholder or fallback text to use.
"""

import time
from typing import Awaitable, Callable, Optional, TypeVar

from coachbot.logging_config import get_logger
from coachbot.services.coach_modes import CoachMode
from coachbot.services.llm.base import LLMProvider
from coachbot.services.result import Result
from coachbot.services.retry import classify_error, is_timeout_error, retry_async, with_timeout

logger = get_logger("generation_service")

T = TypeVar("T")

OnRetry = Optional[Callable[[BaseException, int, float], None]]


def clamp_text(text: str, max_length: int = 4000) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def elapsed_ms_since(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def run_stage(
    stage: str,
    operation: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float,
    attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float = 10.0,
    on_retry: OnRetry = None,
    log=logger,
) -> Result[T]:
    """Run a timed, locally retried external call and capture the outcome."""
    started = time.monotonic()
    try:
        value = await retry_async(
            lambda: with_timeout(operation, timeout_seconds),
            attempts=attempts,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            on_retry=on_retry,
        )
    except Exception as e:
        code = "timeout" if is_timeout_error(e) else classify_error(e).value
        log.warning(
            f"{stage} stage failed",
            extra={"context": {"stage": stage, "error_code": code, "error": str(e) or type(e).__name__}},
        )
        return Result.failure(str(e) or type(e).__name__, code, elapsed_ms=elapsed_ms_since(started))
    return Result.success(value, elapsed_ms=elapsed_ms_since(started))


def build_analyzer_messages(mode: CoachMode, history: list[dict]) -> list[dict]:
    return [{"role": "system", "content": mode.analyzer_prompt}, *history]


def build_reporter_messages(mode: CoachMode, history: list[dict], analysis: str) -> list[dict]:
    system = f"{mode.reporter_prompt}\n\nAnalysis of the conversation:\n{analysis}"
    return [{"role": "system", "content": system}, *history]


async def analyze(
    llm: LLMProvider,
    mode: CoachMode,
    history: list[dict],
    *,
    model: str,
    timeout_seconds: float,
    attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float = 10.0,
    on_retry: OnRetry = None,
    log=logger,
) -> Result[str]:
    messages = build_analyzer_messages(mode, history)

    async def call() -> str:
        response = await llm.generate(messages, model=model, temperature=0.2, max_tokens=600)
        return response.content

    return await run_stage(
        "analyzer",
        call,
        timeout_seconds=timeout_seconds,
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
        max_delay_seconds=max_delay_seconds,
        on_retry=on_retry,
        log=log,
    )


async def report(
    llm: LLMProvider,
    mode: CoachMode,
    history: list[dict],
    analysis: str,
    *,
    model: str,
    timeout_seconds: float,
    attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float = 10.0,
    on_retry: OnRetry = None,
    log=logger,
) -> Result[str]:
    messages = build_reporter_messages(mode, history, analysis)

    async def call() -> str:
        response = await llm.generate(messages, model=model, temperature=0.7, max_tokens=1200)
        return response.content

    return await run_stage(
        "reporter",
        call,
        timeout_seconds=timeout_seconds,
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
        max_delay_seconds=max_delay_seconds,
        on_retry=on_retry,
        log=log,
    )

from typing import Callable, Optional

from coachbot.errors import TranscriptionError
from coachbot.logging_config import get_logger
from coachbot.schemas.inbound import InboundMedia
from coachbot.services.generation_service import run_stage
from coachbot.services.llm.base import TranscriptionProvider
from coachbot.services.result import Result
from coachbot.services.telegram_service import TelegramService

logger = get_logger("transcription_service")

DEFAULT_FILENAMES = {"voice": "voice.ogg", "audio": "audio.mp3"}


async def fetch_and_transcribe(
    telegram: TelegramService,
    transcriber: TranscriptionProvider,
    media: InboundMedia,
    *,
    max_bytes: int,
) -> str:
    file_info = await telegram.get_file(media.file_ref)
    file_path = file_info.get("file_path")
    if not file_path:
        raise TranscriptionError("telegram returned no file_path")
    file_size = file_info.get("file_size") or 0
    if file_size > max_bytes:
        raise TranscriptionError(f"audio too large: {file_size} bytes", status_code=413)

    audio_bytes = await telegram.download_file(file_path)
    filename = file_path.rsplit("/", 1)[-1] or DEFAULT_FILENAMES.get(media.kind, "audio")
    return await transcriber.transcribe_audio(
        audio_bytes=audio_bytes,
        filename=filename,
        mime_type=media.mime_type,
    )


async def resolve_media_text(
    telegram: TelegramService,
    transcriber: TranscriptionProvider,
    media: InboundMedia,
    *,
    max_bytes: int,
    timeout_seconds: float,
    attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float = 10.0,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    log=logger,
) -> Result[str]:
    """Voice/audio to text. A failed Result means the user gets a notice instead."""
    return await run_stage(
        "transcription",
        lambda: fetch_and_transcribe(telegram, transcriber, media, max_bytes=max_bytes),
        timeout_seconds=timeout_seconds,
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
        max_delay_seconds=max_delay_seconds,
        on_retry=on_retry,
        log=log,
    )

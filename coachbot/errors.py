from typing import Optional


class UpstreamError(Exception):
    """Non-successful response from an external provider."""

    service = "upstream"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        prefix = f"{self.service} error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(f"{prefix}: {message}")


class TelegramAPIError(UpstreamError):
    service = "telegram"


class LLMProviderError(UpstreamError):
    service = "llm"


class TranscriptionError(UpstreamError):
    service = "transcription"


class InvalidJobPayloadError(Exception):
    """Job payload cannot be processed; retrying will not help."""

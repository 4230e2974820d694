from typing import List, Optional

import httpx

from coachbot.errors import LLMProviderError, TranscriptionError
from coachbot.logging_config import get_logger
from coachbot.services.llm.base import LLMProvider, LLMResponse, TranscriptionProvider

logger = get_logger("llm.openrouter")


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenRouterProvider(LLMProvider):
    """OpenRouter (OpenAI-compatible) chat completions provider."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        default_model: str = "openai/gpt-4o-mini",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.completions_url = f"{base_url.rstrip('/')}/chat/completions"
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0))

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"OpenRouter request: model={model}, messages_count={len(messages)}")

        response = await self._client.post(
            self.completions_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )

        if response.status_code != 200:
            logger.warning(
                "OpenRouter error response",
                extra={"context": {"status": response.status_code, "model": model, "body": response.text[:500]}},
            )
            raise LLMProviderError(
                response.text[:500],
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )

        data = response.json()
        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message", {})
            content = (message.get("content") or "").strip()

        # An empty completion is terminal: retrying the same prompt rarely helps.
        if not content:
            raise LLMProviderError("empty completion")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAITranscriptionProvider(TranscriptionProvider):
    """OpenAI-compatible /audio/transcriptions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        language: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.language = language
        self.audio_url = f"{base_url.rstrip('/')}/audio/transcriptions"
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0))

    async def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
    ) -> str:
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        files = {"file": (filename or "audio", audio_bytes, mime_type or "application/octet-stream")}
        data = {"model": self.model, "response_format": "text"}
        if self.language:
            data["language"] = self.language

        response = await self._client.post(
            self.audio_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            files=files,
            data=data,
        )

        if response.status_code != 200:
            logger.warning(
                "Transcription error response",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            raise TranscriptionError(
                response.text[:500],
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )

        transcript = (response.text or "").strip()
        if not transcript:
            raise TranscriptionError("empty transcript")
        return transcript

    async def aclose(self) -> None:
        await self._client.aclose()

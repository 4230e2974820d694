import json

import httpx
import pytest

from coachbot.errors import LLMProviderError, TelegramAPIError, TranscriptionError
from coachbot.services.llm import OpenAITranscriptionProvider, OpenRouterProvider
from coachbot.services.retry import ErrorCategory, classify_error
from coachbot.services.telegram_service import TelegramService


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOpenRouterProvider:
    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"model": "m", "choices": [{"message": {"content": " привет "}}]})

        provider = OpenRouterProvider("key", base_url="https://llm.test/api/v1", client=_client(handler))
        response = await provider.generate([{"role": "user", "content": "hi"}], model="m", max_tokens=50)

        assert response.content == "привет"
        assert seen["url"] == "https://llm.test/api/v1/chat/completions"
        assert seen["body"]["max_tokens"] == 50
        assert seen["auth"] == "Bearer key"

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self):
        def handler(request):
            return httpx.Response(429, headers={"retry-after": "2"}, text="slow down")

        provider = OpenRouterProvider("key", client=_client(handler))

        with pytest.raises(LLMProviderError) as exc_info:
            await provider.generate([{"role": "user", "content": "hi"}])

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 2.0
        assert classify_error(exc_info.value) == ErrorCategory.RETRYABLE_RATE_LIMIT

    @pytest.mark.asyncio
    async def test_empty_completion_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})

        provider = OpenRouterProvider("key", client=_client(handler))

        with pytest.raises(LLMProviderError):
            await provider.generate([{"role": "user", "content": "hi"}])


class TestTranscriptionProvider:
    @pytest.mark.asyncio
    async def test_transcribe(self):
        def handler(request):
            assert request.url.path.endswith("/audio/transcriptions")
            return httpx.Response(200, text="мне страшно\n")

        provider = OpenAITranscriptionProvider("key", language="ru", client=_client(handler))

        assert await provider.transcribe_audio(audio_bytes=b"OggS", filename="v.ogg") == "мне страшно"

    @pytest.mark.asyncio
    async def test_server_error(self):
        provider = OpenAITranscriptionProvider("key", client=_client(lambda request: httpx.Response(502)))

        with pytest.raises(TranscriptionError) as exc_info:
            await provider.transcribe_audio(audio_bytes=b"OggS", filename="v.ogg")
        assert exc_info.value.status_code == 502


class TestTelegramService:
    @pytest.mark.asyncio
    async def test_send_message(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        telegram = TelegramService("123:abc", api_base_url="https://tg.test", client=_client(handler))
        await telegram.send_message(100, "hi", reply_markup={"remove_keyboard": True})

        assert seen["url"] == "https://tg.test/bot123:abc/sendMessage"
        assert seen["body"] == {"chat_id": 100, "text": "hi", "reply_markup": {"remove_keyboard": True}}

    @pytest.mark.asyncio
    async def test_flood_control_error(self):
        def handler(request):
            return httpx.Response(
                429,
                json={"ok": False, "error_code": 429, "description": "Too Many Requests", "parameters": {"retry_after": 5}},
            )

        telegram = TelegramService("t", client=_client(handler))

        with pytest.raises(TelegramAPIError) as exc_info:
            await telegram.send_message(100, "hi")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 5

from typing import Callable, Optional

import httpx

from coachbot.errors import TelegramAPIError
from coachbot.logging_config import get_logger
from coachbot.services.retry import retry_async

logger = get_logger("telegram_service")


class TelegramService:
    """Async client for the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = "https://api.telegram.org",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self.base_url = f"{self.api_base_url}/bot{bot_token}"
        self.file_base_url = f"{self.api_base_url}/file/bot{bot_token}"
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    async def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Call a Bot API method; raise TelegramAPIError unless the reply is ok."""
        response = await self._client.post(f"{self.base_url}/{method}", json=data or {})
        try:
            body = response.json()
        except ValueError:
            body = {"ok": False, "description": response.text[:300]}

        if response.status_code != 200 or not body.get("ok"):
            parameters = body.get("parameters") or {}
            raise TelegramAPIError(
                f"{method}: {body.get('description', 'request failed')}",
                status_code=body.get("error_code", response.status_code),
                retry_after=parameters.get("retry_after"),
            )
        return body

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Send message to Telegram chat."""
        data = {"chat_id": chat_id, "text": text}
        if reply_markup:
            data["reply_markup"] = reply_markup
        if parse_mode:
            data["parse_mode"] = parse_mode
        return await self._make_request("sendMessage", data)

    async def get_file(self, file_id: str) -> dict:
        body = await self._make_request("getFile", {"file_id": file_id})
        return body.get("result") or {}

    async def download_file(self, file_path: str) -> bytes:
        response = await self._client.get(f"{self.file_base_url}/{file_path}")
        if response.status_code != 200:
            raise TelegramAPIError(f"file download failed: {file_path}", status_code=response.status_code)
        return response.content

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> dict:
        data = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            data["secret_token"] = secret_token
        return await self._make_request("setWebhook", data)

    async def aclose(self) -> None:
        await self._client.aclose()


async def send_message_with_retry(
    telegram: TelegramService,
    chat_id: int | str,
    text: str,
    *,
    reply_markup: Optional[dict] = None,
    attempts: int = 3,
    base_delay_seconds: float = 0.5,
    max_delay_seconds: float = 10.0,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
) -> dict:
    """Delivery is critical: exhausted retries raise to fail the job attempt."""
    return await retry_async(
        lambda: telegram.send_message(chat_id, text, reply_markup=reply_markup),
        attempts=attempts,
        base_delay_seconds=base_delay_seconds,
        max_delay_seconds=max_delay_seconds,
        on_retry=on_retry,
    )

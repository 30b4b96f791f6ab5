import logging
from typing import Optional

import httpx

# Telegram rejects messages above 4096 chars
MAX_MESSAGE_LEN = 3800


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        chat_id: str | int,
        logger: logging.Logger | None = None,
        client: Optional[httpx.AsyncClient] = None,
        prefix: str = "",
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.prefix = prefix
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def send_message(self, text: str) -> None:
        if not text:
            return

        if self.prefix:
            text = f"[{self.prefix}] {text}"
        if len(text) > MAX_MESSAGE_LEN:
            text = text[:MAX_MESSAGE_LEN - 50] + "\n\n[... message truncated ...]"

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
        }

        resp = await self._client.post(url, json=payload)
        if resp.status_code >= 400:
            try:
                data = resp.json()
            except ValueError:
                data = {"raw": resp.text}

            # Logged, not raised: a failed notification never fails an order
            self._logger.error(
                "Telegram error %s: %s",
                resp.status_code,
                data,
            )
            return

    async def close(self) -> None:
        await self._client.aclose()

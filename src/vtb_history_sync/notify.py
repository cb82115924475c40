from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from .config import TelegramConfig


logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
# Bot API hard limit for sendMessage text.
MAX_MESSAGE_CHARS = 4096


class TelegramNotifier:
    """
    One-way progress/error channel. Every send is best-effort: failures are logged and swallowed so
    a notification problem never masks the error being reported.
    """

    def __init__(
        self,
        bot_token: str = "",
        chat_id: str = "",
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._transport = transport
        self._timeout = timeout_seconds

    @classmethod
    def from_config(cls, cfg: TelegramConfig) -> "TelegramNotifier":
        return cls(cfg.bot_token, cfg.chat_id)

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _url(self, method: str) -> str:
        return f"{API_BASE}/bot{self.bot_token}/{method}"

    async def _post(self, method: str, *, data: dict, files: Optional[dict] = None) -> bool:
        if not self.enabled:
            logger.debug("Telegram not configured; skipping %s.", method)
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url(method), data=data, files=files)
            if resp.status_code >= 400:
                logger.warning("Telegram %s failed: HTTP %s %s", method, resp.status_code, resp.text[:200])
                return False
            return True
        except httpx.HTTPError:
            # The URL embeds the bot token; keep it out of the log.
            logger.warning("Telegram %s failed (network error).", method)
            return False

    async def send_text(self, message: str) -> bool:
        text = message if len(message) <= MAX_MESSAGE_CHARS else message[: MAX_MESSAGE_CHARS - 1] + "…"
        return await self._post("sendMessage", data={"chat_id": self.chat_id, "text": text})

    async def send_document(self, path: str | Path, caption: Optional[str] = None) -> bool:
        method = "sendDocument"
        if not self.enabled:
            logger.debug("Telegram not configured; skipping %s.", method)
            return False
        p = Path(path)
        try:
            content = p.read_bytes()
        except OSError:
            logger.warning("Cannot read %s for Telegram %s.", p, method, exc_info=True)
            return False
        data = {"chat_id": self.chat_id}
        if caption:
            data["caption"] = caption[:1024]
        return await self._post(method, data=data, files={"document": (p.name, content)})

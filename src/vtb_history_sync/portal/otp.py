from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Optional

import httpx


logger = logging.getLogger(__name__)


class OtpTimeoutError(TimeoutError):
    """
    Raised when the code endpoint never served a code matching the configured pattern.
    """


def mask_code(code: str) -> str:
    return f"{code[:2]}****{code[-2:]}" if len(code) >= 4 else "***"


def extract_code(body: str, pattern: re.Pattern[str]) -> Optional[str]:
    text = (body or "").strip()
    if not text:
        return None
    m = pattern.search(text)
    if not m:
        return None
    return m.group(1) if m.groups() else m.group(0)


class HttpCodeSource:
    """
    SMS codes relayed to a small HTTP endpoint: GET returns the latest code as plain text,
    DELETE clears it once it has been typed so the next login never reuses it.
    """

    def __init__(
        self,
        *,
        get_url: str,
        delete_url: str = "",
        code_regex: str = r"^\d{4,8}$",
        timeout_seconds: float = 180.0,
        poll_interval_seconds: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.get_url = get_url
        self.delete_url = delete_url
        self.pattern = re.compile(code_regex)
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(10.0),
            headers={"Cache-Control": "no-store"},
            transport=self._transport,
        )

    async def fetch_code(self) -> str:
        if not self.get_url:
            raise RuntimeError("The portal asked for an SMS code but VTB_GET_CODE_URL is not configured.")

        deadline = time.monotonic() + self.timeout_seconds
        async with self._client() as client:
            while time.monotonic() < deadline:
                try:
                    resp = await client.get(self.get_url)
                    code = extract_code(resp.text, self.pattern) if resp.status_code == 200 else None
                    if code:
                        logger.info("Fetched SMS code from code source (code=%s)", mask_code(code))
                        return code
                except httpx.HTTPError:
                    # Transient network trouble is the same as "no code yet".
                    logger.debug("Code source poll failed; retrying.", exc_info=True)

                await asyncio.sleep(self.poll_interval_seconds)

        raise OtpTimeoutError(f"Timed out waiting for SMS code after {self.timeout_seconds:.0f}s")

    async def consume_code(self) -> None:
        """
        Best-effort acknowledgement; a failed DELETE only means the stale code may be seen once more.
        """
        if not self.delete_url:
            return
        try:
            async with self._client() as client:
                resp = await client.delete(self.delete_url)
            if resp.status_code >= 400:
                logger.warning("Code source DELETE returned HTTP %s", resp.status_code)
        except httpx.HTTPError:
            logger.warning("Failed to consume SMS code at code source.", exc_info=True)

    async def probe(self) -> int:
        """
        Preflight: return the HTTP status of a single GET against the code endpoint.
        """
        async with self._client() as client:
            resp = await client.get(self.get_url)
        return resp.status_code

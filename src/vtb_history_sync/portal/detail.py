from __future__ import annotations

import logging
import re
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

from ..models import OperationRecord
from ..util.dates import parse_ru_datetime
from ..util.money import has_currency_marker, parse_amount
from ..util.polling import poll, wait_until
from .registry import RowDescriptor
from .timings import CollectorTimings


logger = logging.getLogger(__name__)

_CATEGORY_RE = re.compile(r"категория\s*:\s*([^\n]+)", re.I)
_TIME_ONLY_RE = re.compile(r"^\d{1,2}:\d{2}$")


class DetailPayload(BaseModel):
    """
    What the in-page script returns for an opened operation. Anything missing or of the wrong type
    is defaulted here, so the parser only ever sees strings and lists of strings.
    """

    title: str = ""
    paragraphs: list[str] = Field(default_factory=list)
    details: list[str] = Field(default_factory=list)
    page_text: str = ""

    @field_validator("title", "page_text", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("paragraphs", "details", mode="before")
    @classmethod
    def _coerce_str_list(cls, v: Any) -> list[str]:
        if not isinstance(v, (list, tuple)):
            return []
        return [" ".join(x.split()) for x in v if isinstance(x, str) and x.strip()]

    @classmethod
    def from_raw(cls, raw: Any) -> "DetailPayload":
        if not isinstance(raw, dict):
            return cls()
        data = dict(raw)
        if "pageText" in data and "page_text" not in data:
            data["page_text"] = data.pop("pageText")
        return cls.model_validate(data)


def pair_details(paragraphs: list[str]) -> dict[str, str]:
    """
    Pair consecutive label/value paragraphs: [l1, v1, l2, v2, ...].

    Labels are lower-cased and trimmed. A pair whose label equals its value is boilerplate that got
    mis-paired and is skipped.
    """
    out: dict[str, str] = {}
    for i in range(0, len(paragraphs) - 1, 2):
        label = paragraphs[i].strip().lower()
        value = paragraphs[i + 1].strip()
        if not label or label == value.lower():
            continue
        out.setdefault(label, value)
    return out


def _looks_like_time(text: str) -> bool:
    return bool(_TIME_ONLY_RE.match(text.strip())) or parse_ru_datetime(text) is not None


def _pick_category(payload: DetailPayload) -> str:
    m = _CATEGORY_RE.search(payload.page_text)
    if m and m.group(1).strip():
        return m.group(1).strip()
    for p in payload.paragraphs:
        if has_currency_marker(p) or _looks_like_time(p):
            continue
        return p
    return ""


def parse_detail(payload: DetailPayload) -> Optional[OperationRecord]:
    """
    Turn a detail payload into an OperationRecord. Returns None when the header is missing.
    """
    title = payload.title.strip()
    if not title:
        return None

    amount_text = next((p for p in payload.paragraphs + payload.details if has_currency_marker(p)), "")
    when = parse_ru_datetime(payload.page_text) or parse_ru_datetime(" ".join(payload.paragraphs))

    return OperationRecord(
        raw_date=when.display if when else "",
        op_date=when.op_date if when else None,
        op_datetime=when.value if when else None,
        op_datetime_text=when.display if when else "",
        text=title,
        category=_pick_category(payload),
        amount=parse_amount(amount_text),
        details=pair_details(payload.details),
    )


class DetailPage(Protocol):
    async def click_row(self, row: RowDescriptor) -> bool: ...
    async def detail_header_text(self) -> str: ...
    async def read_detail(self) -> DetailPayload: ...
    async def go_back(self) -> None: ...
    async def list_ready(self) -> bool: ...


class DetailExtractor:
    """
    Opens one row, reads its detail view and always returns to the list.
    """

    def __init__(self, page: DetailPage, *, timings: Optional[CollectorTimings] = None) -> None:
        self.page = page
        self.timings = timings or CollectorTimings()

    async def extract(self, row: RowDescriptor) -> Optional[OperationRecord]:
        # The list page may carry a header under the same selector; only a new one means the detail opened.
        list_header = await self.page.detail_header_text()

        async def opened_header() -> str:
            header = await self.page.detail_header_text()
            return header if header != list_header else ""

        if not await self.page.click_row(row):
            logger.warning("Could not open row %r; leaving it for a later pass.", _short(row.text))
            return None

        try:
            header = await poll(
                opened_header,
                timeout=self.timings.detail_header_timeout,
                interval=self.timings.detail_header_interval,
                describe="detail header",
            )
            if not header:
                logger.warning("Detail header did not appear for row %r; leaving it for a later pass.", _short(row.text))
                return None

            payload = await self.page.read_detail()
            record = parse_detail(payload)
            if record is None:
                logger.warning("Detail view for row %r had no title; skipping.", _short(row.text))
            return record
        finally:
            await self._return_to_list()

    async def _return_to_list(self) -> None:
        try:
            await self.page.go_back()
        except Exception:
            logger.debug("History back failed; waiting for the list anyway.", exc_info=True)

        ready = await wait_until(
            self.page.list_ready,
            timeout=self.timings.list_settle_timeout,
            interval=self.timings.list_settle_interval,
            describe="list ready after back",
        )
        if not ready:
            logger.warning("List did not become ready within %.1fs after returning from detail.", self.timings.list_settle_timeout)


def _short(text: str, limit: int = 60) -> str:
    first = (text or "").split("\n", 1)[0]
    return first if len(first) <= limit else first[: limit - 1] + "…"

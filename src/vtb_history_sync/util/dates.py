from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser


RU_MONTHS = {
    "января": 1,
    "февраля": 2,
    "марта": 3,
    "апреля": 4,
    "мая": 5,
    "июня": 6,
    "июля": 7,
    "августа": 8,
    "сентября": 9,
    "октября": 10,
    "ноября": 11,
    "декабря": 12,
}

_MONTH_ALT = "|".join(RU_MONTHS)

# "5 марта 2024 г., 14:32" / "5 марта 2024, 14:32" / "05 марта 2024 в 14:32"
FULL_DATETIME_RE = re.compile(
    rf"\b(\d{{1,2}})\s+({_MONTH_ALT})\s+(\d{{4}})(?:\s*г\.?)?\s*(?:,|в)?\s*(\d{{1,2}}):(\d{{2}})",
    re.I,
)
DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})\s+({_MONTH_ALT})\b", re.I)


@dataclass(frozen=True)
class RuDateTime:
    """
    Result of parsing a Russian-language operation timestamp.

    `display` is always the human fragment we matched (e.g. "5 марта" or "5 марта 2024 г., 14:32");
    `value` is only set when day, month, year, hour and minute were all present.
    """

    display: str
    value: Optional[datetime] = None

    @property
    def op_date(self) -> Optional[date]:
        return self.value.date() if self.value else None


def parse_ru_datetime(text: str) -> Optional[RuDateTime]:
    s = " ".join((text or "").split())
    if not s:
        return None

    m = FULL_DATETIME_RE.search(s)
    if m:
        day, month_name, year, hour, minute = m.groups()
        try:
            value = datetime(
                int(year),
                RU_MONTHS[month_name.lower()],
                int(day),
                int(hour),
                int(minute),
            )
        except ValueError:
            value = None
        return RuDateTime(display=m.group(0).strip(), value=value)

    m = DAY_MONTH_RE.search(s)
    if m:
        return RuDateTime(display=m.group(0).strip())
    return None


def parse_iso_date(value: str) -> date:
    """
    Parse user-supplied filter dates like "2024-03-05" or "2024-03-05T10:00".
    """
    if value is None:
        raise ValueError("parse_iso_date: value is None")
    s = value.strip()
    if not s:
        raise ValueError("parse_iso_date: empty string")
    return date_parser.isoparse(s).date()

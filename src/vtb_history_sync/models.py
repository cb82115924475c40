from __future__ import annotations

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


def _amount_key(amount: Decimal) -> str:
    return f"{amount:.2f}"


class LegacyIdentity(BaseModel):
    """
    Identity of an operation as older runs stored it: display date + text + amount + timestamp text.
    """

    model_config = ConfigDict(frozen=True)

    raw_date: str
    text: str
    amount: Decimal
    op_datetime_text: str = ""

    def key(self) -> tuple[str, str, str, str]:
        return (self.raw_date, self.text, _amount_key(self.amount), self.op_datetime_text)


class KnownIdentity(BaseModel):
    """
    What the store already holds, read once at the start of a run and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    latest: Optional[LegacyIdentity] = None
    recent_rrns: frozenset[str] = Field(default_factory=frozenset)

    @property
    def empty(self) -> bool:
        return self.latest is None and not self.recent_rrns


class OperationRecord(BaseModel):
    """
    One parsed transaction from the history detail view.
    """

    model_config = ConfigDict(frozen=True)

    raw_date: str
    op_date: Optional[date] = None
    op_datetime: Optional[datetime] = None
    op_datetime_text: str = ""
    text: str
    category: str = ""
    amount: Decimal
    currency_code: str = "RUB"
    details: dict[str, str] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        # Digest over (text, amount, timestamp text, sorted detail pairs) only; everything else is derived.
        payload = [
            self.text,
            _amount_key(self.amount),
            self.op_datetime_text,
            sorted([k, v] for k, v in self.details.items()),
        ]
        raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @property
    def rrn(self) -> Optional[str]:
        for label, value in self.details.items():
            if "rrn" in label.lower():
                v = value.strip()
                if v:
                    return v
        return None

    def legacy_identity(self) -> LegacyIdentity:
        return LegacyIdentity(
            raw_date=self.raw_date,
            text=self.text,
            amount=self.amount,
            op_datetime_text=self.op_datetime_text,
        )

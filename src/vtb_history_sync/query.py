from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .store import OperationStore
from .util.dates import parse_iso_date
from .util.money import amount_to_cents, cents_to_amount


# Calendar date of an operation; rows without a parsed date are only reachable unfiltered.
_OP_DAY = "coalesce(op_date, substr(op_datetime, 1, 10))"

_PERIOD_SQL = {
    "day": f"{_OP_DAY}",
    "week": f"date({_OP_DAY}, '-6 days', 'weekday 1')",
    "month": f"strftime('%Y-%m-01', {_OP_DAY})",
    "year": f"strftime('%Y-01-01', {_OP_DAY})",
}


def _coerce_date(v: object) -> Optional[date]:
    if v is None or isinstance(v, date):
        return v
    if isinstance(v, str):
        return parse_iso_date(v) if v.strip() else None
    raise ValueError("expected an ISO date string")


def _blank_to_none(v: object) -> object:
    if isinstance(v, str) and not v.strip():
        return None
    return v.strip() if isinstance(v, str) else v


class OperationsQuery(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    text_ilike: Optional[str] = None
    category_ilike: Optional[str] = None
    bank: Optional[str] = None

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _dates(cls, v: object) -> Optional[date]:
        return _coerce_date(v)

    @field_validator("text_ilike", "category_ilike", "bank", mode="before")
    @classmethod
    def _strings(cls, v: object) -> object:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _check_ranges(self) -> "OperationsQuery":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        if self.amount_min is not None and self.amount_max is not None and self.amount_min > self.amount_max:
            raise ValueError("amount_min must not be greater than amount_max")
        return self


class SummaryQuery(BaseModel):
    granularity: Literal["day", "week", "month", "year"] = "day"
    limit: int = Field(default=200, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    bank: Optional[str] = None

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _dates(cls, v: object) -> Optional[date]:
        return _coerce_date(v)

    @field_validator("bank", mode="before")
    @classmethod
    def _strings(cls, v: object) -> object:
        return _blank_to_none(v)


class StoredOperation(BaseModel):
    id: int
    bank: str
    raw_date: str
    op_date: Optional[date] = None
    op_datetime: Optional[str] = None
    text: str
    bank_category: str = ""
    amount: Decimal
    currency_code: str = "RUB"
    rrn: Optional[str] = None
    details: dict[str, str] = Field(default_factory=dict)
    created_at: str


class PeriodSummary(BaseModel):
    granularity: str
    period_start: date
    tx_count: int
    net_total: Decimal
    income_count: int
    income_total: Decimal
    expense_count: int
    expense_total: Decimal


def get_operations(store: OperationStore, query: Optional[OperationsQuery] = None) -> list[StoredOperation]:
    """
    Newest operations first, filtered. Text filters are case-insensitive substring matches.
    """
    q = query or OperationsQuery()
    params: list[object] = []
    where: list[str] = []

    if q.date_from:
        where.append(f"{_OP_DAY} >= ?")
        params.append(q.date_from.isoformat())
    if q.date_to:
        where.append(f"{_OP_DAY} <= ?")
        params.append(q.date_to.isoformat())
    if q.amount_min is not None:
        where.append("amount_cents >= ?")
        params.append(amount_to_cents(q.amount_min))
    if q.amount_max is not None:
        where.append("amount_cents <= ?")
        params.append(amount_to_cents(q.amount_max))
    if q.text_ilike:
        where.append("instr(casefold(text), ?) > 0")
        params.append(q.text_ilike.casefold())
    if q.category_ilike:
        where.append("instr(casefold(bank_category), ?) > 0")
        params.append(q.category_ilike.casefold())
    if q.bank:
        where.append("bank = ?")
        params.append(q.bank)

    clause = f" WHERE {' AND '.join(where)}" if where else ""
    sql = (
        "SELECT id, bank, raw_date, op_date, op_datetime, text, bank_category, amount_cents, currency_code, "
        f"rrn, details, created_at FROM operations{clause} "
        "ORDER BY coalesce(op_datetime, op_date) IS NULL, coalesce(op_datetime, op_date) DESC, id DESC "
        "LIMIT ? OFFSET ?;"
    )
    params.extend([q.limit, q.offset])

    out: list[StoredOperation] = []
    for row in store.conn.execute(sql, params).fetchall():
        out.append(
            StoredOperation(
                id=row["id"],
                bank=row["bank"],
                raw_date=row["raw_date"],
                op_date=row["op_date"],
                op_datetime=row["op_datetime"],
                text=row["text"],
                bank_category=row["bank_category"] or "",
                amount=cents_to_amount(row["amount_cents"]),
                currency_code=row["currency_code"],
                rrn=row["rrn"],
                details=json.loads(row["details"] or "{}"),
                created_at=row["created_at"],
            )
        )
    return out


def get_summary(store: OperationStore, query: Optional[SummaryQuery] = None) -> list[PeriodSummary]:
    """
    Per-period totals, newest period first. Income is amount > 0, expense is amount < 0
    (expense_total is negative).
    """
    q = query or SummaryQuery()
    period = _PERIOD_SQL[q.granularity]
    params: list[object] = []
    where = [f"{_OP_DAY} IS NOT NULL"]

    if q.bank:
        where.append("bank = ?")
        params.append(q.bank)

    having: list[str] = []
    if q.date_from:
        having.append("period_start >= ?")
        params.append(q.date_from.isoformat())
    if q.date_to:
        having.append("period_start <= ?")
        params.append(q.date_to.isoformat())

    sql = f"""
        SELECT
          {period} AS period_start,
          COUNT(*) AS tx_count,
          COALESCE(SUM(amount_cents), 0) AS net_cents,
          SUM(CASE WHEN amount_cents > 0 THEN 1 ELSE 0 END) AS income_count,
          COALESCE(SUM(CASE WHEN amount_cents > 0 THEN amount_cents ELSE 0 END), 0) AS income_cents,
          SUM(CASE WHEN amount_cents < 0 THEN 1 ELSE 0 END) AS expense_count,
          COALESCE(SUM(CASE WHEN amount_cents < 0 THEN amount_cents ELSE 0 END), 0) AS expense_cents
        FROM operations
        WHERE {' AND '.join(where)}
        GROUP BY period_start
        {('HAVING ' + ' AND '.join(having)) if having else ''}
        ORDER BY period_start DESC
        LIMIT ? OFFSET ?;
    """
    params.extend([q.limit, q.offset])

    return [
        PeriodSummary(
            granularity=q.granularity,
            period_start=row["period_start"],
            tx_count=row["tx_count"],
            net_total=cents_to_amount(row["net_cents"]),
            income_count=row["income_count"],
            income_total=cents_to_amount(row["income_cents"]),
            expense_count=row["expense_count"],
            expense_total=cents_to_amount(row["expense_cents"]),
        )
        for row in store.conn.execute(sql, params).fetchall()
    ]

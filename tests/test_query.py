from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from vtb_history_sync.models import OperationRecord
from vtb_history_sync.query import OperationsQuery, SummaryQuery, get_operations, get_summary
from vtb_history_sync.store import OperationStore


def _op(d: date, text: str, amount: str, category: str = "Покупки") -> OperationRecord:
    when = datetime(d.year, d.month, d.day, 12, 0)
    return OperationRecord(
        raw_date=d.isoformat(),
        op_date=d,
        op_datetime=when,
        op_datetime_text=when.isoformat(),
        text=text,
        category=category,
        amount=Decimal(amount),
    )


@pytest.fixture()
def store(tmp_path: Path):
    s = OperationStore(str(tmp_path / "operations.db"))
    s.insert_operations(
        [
            _op(date(2024, 3, 4), "Пятёрочка", "-350", "Супермаркеты"),  # Monday
            _op(date(2024, 3, 5), "Зарплата", "100000", "Поступления"),
            _op(date(2024, 3, 10), "Кафе Ромашка", "-1200.50", "Рестораны"),  # Sunday
            _op(date(2024, 3, 11), "Пятёрочка", "-99.90", "Супермаркеты"),
            _op(date(2024, 4, 1), "Такси", "-450", "Транспорт"),
        ]
    )
    try:
        yield s
    finally:
        s.close()


def test_operations_newest_first(store: OperationStore) -> None:
    rows = get_operations(store)
    assert [r.text for r in rows] == ["Такси", "Пятёрочка", "Кафе Ромашка", "Зарплата", "Пятёрочка"]
    assert rows[0].amount == Decimal("-450.00")
    assert rows[0].bank == "vtb"


def test_operations_filters(store: OperationStore) -> None:
    q = OperationsQuery(date_from="2024-03-05", date_to="2024-03-31", amount_max=Decimal("0"))
    assert [r.text for r in get_operations(store, q)] == ["Пятёрочка", "Кафе Ромашка"]

    q = OperationsQuery(text_ilike="пятёр")
    assert len(get_operations(store, q)) == 2

    q = OperationsQuery(category_ilike="рестор", amount_min=Decimal("-2000"))
    assert [r.text for r in get_operations(store, q)] == ["Кафе Ромашка"]


def test_operations_paging(store: OperationStore) -> None:
    rows = get_operations(store, OperationsQuery(limit=2, offset=1))
    assert [r.text for r in rows] == ["Пятёрочка", "Кафе Ромашка"]


def test_operations_query_validation() -> None:
    with pytest.raises(ValidationError):
        OperationsQuery(limit=0)
    with pytest.raises(ValidationError):
        OperationsQuery(limit=501)
    with pytest.raises(ValidationError):
        OperationsQuery(date_from="2024-04-01", date_to="2024-03-01")
    assert OperationsQuery(text_ilike="  ").text_ilike is None


def test_summary_by_month(store: OperationStore) -> None:
    rows = get_summary(store, SummaryQuery(granularity="month"))
    assert [r.period_start for r in rows] == [date(2024, 4, 1), date(2024, 3, 1)]

    march = rows[1]
    assert march.tx_count == 4
    assert march.income_count == 1
    assert march.income_total == Decimal("100000.00")
    assert march.expense_count == 3
    assert march.expense_total == Decimal("-1650.40")
    assert march.net_total == Decimal("98349.60")


def test_summary_weeks_start_on_monday(store: OperationStore) -> None:
    rows = get_summary(store, SummaryQuery(granularity="week", date_to="2024-03-31"))
    assert [(r.period_start, r.tx_count) for r in rows] == [
        (date(2024, 3, 11), 1),
        (date(2024, 3, 4), 3),
    ]


def test_summary_query_validation() -> None:
    with pytest.raises(ValidationError):
        SummaryQuery(granularity="hour")
    with pytest.raises(ValidationError):
        SummaryQuery(limit=1001)

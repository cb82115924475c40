from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from vtb_history_sync.models import KnownIdentity, LegacyIdentity, OperationRecord


def _record(**overrides) -> OperationRecord:
    base = dict(
        raw_date="5 марта 2024 г., 14:32",
        op_date=date(2024, 3, 5),
        op_datetime=datetime(2024, 3, 5, 14, 32),
        op_datetime_text="5 марта 2024 г., 14:32",
        text="Пятёрочка",
        category="Супермаркеты",
        amount=Decimal("-350.00"),
        details={"rrn": "412345678901", "карта": "*1234"},
    )
    base.update(overrides)
    return OperationRecord(**base)


def test_content_hash_is_deterministic_and_order_independent() -> None:
    a = _record(details={"rrn": "412345678901", "карта": "*1234"})
    b = _record(details={"карта": "*1234", "rrn": "412345678901"})
    assert a.content_hash == b.content_hash
    assert len(a.content_hash) == 64


def test_content_hash_ignores_derived_fields() -> None:
    a = _record()
    b = _record(category="Другое", raw_date="5 марта", op_date=None, op_datetime=None)
    assert a.content_hash == b.content_hash


def test_content_hash_changes_with_each_identity_field() -> None:
    base = _record().content_hash
    assert _record(text="Магнит").content_hash != base
    assert _record(amount=Decimal("-351.00")).content_hash != base
    assert _record(op_datetime_text="6 марта 2024 г., 14:32").content_hash != base
    assert _record(details={"rrn": "999"}).content_hash != base


def test_amount_scale_does_not_change_hash() -> None:
    assert _record(amount=Decimal("-350")).content_hash == _record(amount=Decimal("-350.00")).content_hash


def test_rrn_taken_from_details_label() -> None:
    assert _record(details={"код rrn": " 4123 "}).rrn == "4123"
    assert _record(details={"карта": "*1234"}).rrn is None


def test_legacy_identity_key_matches_stored_form() -> None:
    rec = _record(amount=Decimal("-350"))
    stored = LegacyIdentity(
        raw_date="5 марта 2024 г., 14:32",
        text="Пятёрочка",
        amount=Decimal("-350.00"),
        op_datetime_text="5 марта 2024 г., 14:32",
    )
    assert rec.legacy_identity().key() == stored.key()


def test_known_identity_empty() -> None:
    assert KnownIdentity().empty
    assert not KnownIdentity(recent_rrns=frozenset({"1"})).empty

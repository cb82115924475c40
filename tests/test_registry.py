from __future__ import annotations

import pytest

from vtb_history_sync.portal.registry import RowDescriptor, RowRegistry, normalize_row_text


def _rows(*texts: str) -> list[RowDescriptor]:
    return [RowDescriptor(text=t, top=float(i * 80)) for i, t in enumerate(texts)]


def test_normalize_row_text_collapses_whitespace_and_keeps_lines() -> None:
    raw = "  Пятёрочка \n\n  Супермаркеты  \n −350 ₽ "
    assert normalize_row_text(raw) == "Пятёрочка\nСупермаркеты\n−350 ₽"


def test_reconcile_same_snapshot_twice_is_idempotent() -> None:
    reg = RowRegistry()
    snap = _rows("A", "B", "C")
    first = reg.reconcile(snap)
    assert (first.matched, first.added) == (0, 3)

    reg.mark_seen(0)
    second = reg.reconcile(snap)
    assert (second.matched, second.added) == (3, 0)
    assert len(reg) == 3
    assert [e.seen for e in reg.entries] == [True, False, False]


def test_duplicate_texts_are_kept_as_distinct_entries() -> None:
    reg = RowRegistry()
    reg.reconcile(_rows("Перевод", "Перевод", "Кафе"))
    assert [e.text for e in reg.entries] == ["Перевод", "Перевод", "Кафе"]

    # Same duplicates again: paired one-to-one, nothing new.
    stats = reg.reconcile(_rows("Перевод", "Кафе", "Перевод"))
    assert stats.added == 0
    assert len(reg) == 3

    # A third copy is a new row.
    stats = reg.reconcile(_rows("Перевод", "Перевод", "Перевод"))
    assert stats.added == 1
    assert len(reg) == 4


def test_reconcile_refreshes_position_and_handle() -> None:
    reg = RowRegistry()
    reg.reconcile([RowDescriptor(text="A", top=100.0, handle="h1")])
    reg.reconcile([RowDescriptor(text="A", top=900.0, handle="h2")])
    entry = reg.entries[0]
    assert entry.top == 900.0
    assert entry.handle == "h2"


def test_next_target_only_considers_rows_in_current_snapshot() -> None:
    reg = RowRegistry()
    reg.reconcile(_rows("A", "B", "C"))
    reg.mark_seen(0)

    # Virtualized away: B is no longer rendered.
    reg.reconcile(_rows("C", "D"))
    assert reg.entries[reg.next_target()].text == "C"


def test_next_target_keeps_registry_order_after_a_failure() -> None:
    reg = RowRegistry()
    reg.reconcile(_rows("A", "B", "C"))
    reg.mark_failed(0)
    assert reg.next_target() == 0

    reg.mark_failed(0)
    assert reg.next_target(max_failures=2) == 1
    assert reg.next_target(max_failures=3) == 0


def test_no_entry_is_visited_twice_across_growing_snapshots() -> None:
    reg = RowRegistry()
    transitions = {}
    snapshots = [
        _rows("A", "B"),
        _rows("A", "B", "C"),
        _rows("B", "C", "D", "E"),
        _rows("C", "D", "E", "F"),
    ]
    for snap in snapshots:
        reg.reconcile(snap)
        while (idx := reg.next_target()) is not None:
            reg.mark_seen(idx)
            transitions[idx] = transitions.get(idx, 0) + 1
            reg.reconcile(snap)

    assert sorted(e.text for e in reg.entries) == ["A", "B", "C", "D", "E", "F"]
    assert all(n == 1 for n in transitions.values())
    assert reg.seen_count == 6


def test_mark_seen_twice_raises() -> None:
    reg = RowRegistry()
    reg.reconcile(_rows("A"))
    reg.mark_seen(0)
    with pytest.raises(ValueError):
        reg.mark_seen(0)


def test_count_unknown_does_not_mutate() -> None:
    reg = RowRegistry()
    reg.reconcile(_rows("A", "B"))
    assert reg.count_unknown(_rows("A", "B", "B", "C")) == 2
    assert len(reg) == 2

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional


logger = logging.getLogger(__name__)


def normalize_row_text(raw: str) -> str:
    """
    Collapse whitespace inside each visible line and drop empty lines; line breaks are kept because
    re-acquisition queries use the first line and the amount line separately.
    """
    lines = (" ".join(line.split()) for line in (raw or "").splitlines())
    return "\n".join(line for line in lines if line)


@dataclass
class RowDescriptor:
    """
    One rendered list row at the moment of a snapshot.

    `handle` is only valid until the DOM next mutates.
    """

    text: str
    top: float = 0.0
    handle: Any = None


@dataclass
class RegistryEntry:
    text: str
    top: float = 0.0
    handle: Any = None
    seen: bool = False
    # Extraction attempts that returned nothing for this entry during the run.
    failures: int = 0
    # Per-pass state, reset by every reconcile().
    checked: bool = False
    row: Optional[RowDescriptor] = None


@dataclass
class ReconcileStats:
    matched: int = 0
    added: int = 0


@dataclass
class RowRegistry:
    """
    Every row observed during one collection run, in discovery order.

    Entries are appended and never removed, so an entry's index is stable for the whole run. Text is the
    only identity key; position and handle are kept purely to find the row again.
    """

    entries: list[RegistryEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def reconcile(self, snapshot: list[RowDescriptor]) -> ReconcileStats:
        """
        Pair each snapshot row with the first unchecked entry sharing its text (greedy, first match);
        rows left unpaired become new unseen entries in snapshot order.
        """
        stats = ReconcileStats()
        for entry in self.entries:
            entry.checked = False
            entry.row = None

        for row in snapshot:
            if not row.text:
                continue
            match = next((e for e in self.entries if not e.checked and e.text == row.text), None)
            if match is None:
                match = RegistryEntry(text=row.text)
                self.entries.append(match)
                stats.added += 1
            else:
                stats.matched += 1
            match.checked = True
            match.row = row
            match.top = row.top
            match.handle = row.handle

        if stats.added:
            logger.debug("Reconciled snapshot: %d matched, %d new (registry=%d)", stats.matched, stats.added, len(self))
        return stats

    def count_unknown(self, snapshot: list[RowDescriptor]) -> int:
        """
        How many entries reconcile(snapshot) would add, without touching the registry.
        """
        known = Counter(e.text for e in self.entries)
        fresh = Counter(r.text for r in snapshot if r.text)
        return sum((fresh - known).values())

    def next_target(self, *, max_failures: int = 2) -> Optional[int]:
        """
        Index of the first unseen entry, in registry order, present in the current snapshot.

        An entry that failed `max_failures` times is no longer offered.
        """
        candidates = [
            i
            for i, e in enumerate(self.entries)
            if not e.seen and e.checked and e.failures < max_failures
        ]
        return candidates[0] if candidates else None

    def mark_seen(self, index: int) -> None:
        entry = self.entries[index]
        if entry.seen:
            raise ValueError(f"registry entry {index} was already extracted")
        entry.seen = True

    def mark_failed(self, index: int) -> None:
        self.entries[index].failures += 1

    @property
    def seen_count(self) -> int:
        return sum(1 for e in self.entries if e.seen)

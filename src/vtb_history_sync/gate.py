from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Union

from .models import KnownIdentity, OperationRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continue:
    """The batch was accepted in full; keep collecting."""


@dataclass(frozen=True)
class StopRequested:
    """
    Collection reached already-stored data. `accepted` records of the batch (those before the match)
    are new; the match and everything after it are discarded.
    """

    accepted: int
    reason: str = ""


SinkResult = Union[Continue, StopRequested]
SnapshotSink = Callable[[list[OperationRecord]], Awaitable[SinkResult]]
RecordWriter = Callable[[list[OperationRecord]], Awaitable[object]]


class ContinuationGate:
    """
    Snapshot sink that stops a run as soon as it meets an operation stored by a previous run.

    A record is "known" when its RRN is among the recently stored ones, or when its legacy identity
    (display date, text, amount, timestamp text) equals the latest stored operation. Everything ahead of
    the first known record is forwarded to `writer`.
    """

    def __init__(self, known: KnownIdentity, writer: Optional[RecordWriter] = None) -> None:
        self.known = known
        self.writer = writer
        self.forwarded = 0
        self.stopped: Optional[StopRequested] = None

    def match_reason(self, record: OperationRecord) -> Optional[str]:
        rrn = record.rrn
        if rrn and rrn in self.known.recent_rrns:
            return f"rrn {rrn} already stored"
        latest = self.known.latest
        if latest is not None and record.legacy_identity().key() == latest.key():
            return "latest stored operation reached"
        return None

    async def __call__(self, batch: list[OperationRecord]) -> SinkResult:
        if self.stopped is not None:
            return StopRequested(accepted=0, reason=self.stopped.reason)

        accepted: Sequence[OperationRecord] = batch
        result: SinkResult = Continue()
        for i, record in enumerate(batch):
            reason = self.match_reason(record)
            if reason:
                accepted = batch[:i]
                result = StopRequested(accepted=i, reason=reason)
                self.stopped = result
                logger.info("Continuation stop at batch position %d: %s", i, reason)
                break

        if accepted:
            if self.writer is not None:
                await self.writer(list(accepted))
            self.forwarded += len(accepted)
        return result

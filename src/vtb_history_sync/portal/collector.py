from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from ..config import AppConfig
from ..gate import SnapshotSink, StopRequested
from ..models import OperationRecord
from ..util.money import has_currency_marker
from ..util.polling import wait_until
from .detail import DetailExtractor, DetailPage
from .login import CodeSource, LoginOutcome, LoginPage, LoginStateMachine, LoginTimeoutError
from .otp import HttpCodeSource
from .page import HistoryPage
from .registry import RegistryEntry, RowDescriptor, RowRegistry
from .session import BrowserSession, open_session
from .timings import CollectorTimings


logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 50


class CollectorNotReadyError(RuntimeError):
    pass


class CollectorPage(LoginPage, DetailPage, Protocol):
    async def goto(self, url: str) -> None: ...
    async def snapshot_rows(self) -> list[RowDescriptor]: ...
    async def row_count(self) -> int: ...
    async def handle_attached(self, handle: Any) -> bool: ...
    async def rows_matching(self, needles: list[str]) -> list[RowDescriptor]: ...
    async def row_at(self, index: int) -> Optional[RowDescriptor]: ...
    async def scroll_to(self, y: float) -> None: ...
    async def reveal_more(self) -> None: ...


def row_needles(text: str) -> list[str]:
    """
    Substrings used to re-query a row whose handle went stale: its first line, plus the amount line
    when it is a different line.
    """
    lines = [line for line in (text or "").split("\n") if line]
    if not lines:
        return []
    needles = [lines[0]]
    amount_line = next((line for line in lines if has_currency_marker(line)), "")
    if amount_line and amount_line != lines[0]:
        needles.append(amount_line)
    return needles


class HistoryCollector:
    """
    Owns one browser page for the whole run: logs in, then walks the (virtualized) history list,
    opening every row once and streaming parsed operations to a snapshot sink in small batches.

    `page` may be injected (tests); otherwise init() launches the persistent browser profile.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        page: Optional[CollectorPage] = None,
        code_source: Optional[CodeSource] = None,
        timings: Optional[CollectorTimings] = None,
        headless: Optional[bool] = None,
        debug_dir: str = "data/debug",
        step_log: bool = False,
        step_screenshots: bool = False,
        step_delay_ms: int = 0,
    ) -> None:
        self.cfg = cfg
        self.page = page
        self.code_source = code_source
        self.timings = timings or CollectorTimings()
        self.headless = headless
        self.debug_dir = debug_dir
        self.step_log = step_log
        self.step_screenshots = step_screenshots
        self.step_delay_ms = step_delay_ms

        self.session: Optional[BrowserSession] = None
        # Registry of the most recent collect_operations() call; kept for inspection after the run.
        self.registry: Optional[RowRegistry] = None

    async def __aenter__(self) -> "HistoryCollector":
        await self.init()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    async def init(self) -> None:
        if self.code_source is None:
            bank = self.cfg.bank
            self.code_source = HttpCodeSource(
                get_url=bank.get_code_url,
                delete_url=bank.delete_code_url,
                code_regex=bank.code_regex,
                timeout_seconds=self.timings.otp_timeout,
                poll_interval_seconds=self.timings.otp_interval,
            )

        if self.page is not None:
            return

        self.session = await open_session(self.cfg.browser, headless=self.headless)
        self.page = HistoryPage(
            self.session.page,
            debug_dir=self.debug_dir,
            step_log=self.step_log,
            step_screenshots=self.step_screenshots,
            step_delay_ms=self.step_delay_ms,
        )

    async def shutdown(self) -> None:
        if self.session is not None:
            session, self.session = self.session, None
            await session.close()
            self.page = None

    def _require_page(self) -> CollectorPage:
        if self.page is None:
            raise CollectorNotReadyError("HistoryCollector.init() must be called first")
        return self.page

    async def login_and_prepare(self) -> None:
        """
        Open the history page and log in. A login timeout is retried from a fresh navigation;
        LoginTimeoutError is raised only once every attempt has timed out.
        """
        page = self._require_page()
        if self.code_source is None:
            raise CollectorNotReadyError("HistoryCollector.init() must be called first")

        attempts = max(1, self.timings.login_attempts)
        for attempt in range(1, attempts + 1):
            await page.goto(self.cfg.bank.history_url)
            machine = LoginStateMachine(
                page,
                code_source=self.code_source,
                phone=self.cfg.bank.phone,
                pin=self.cfg.bank.pin,
                timings=self.timings,
            )
            outcome = await machine.run()
            if outcome is LoginOutcome.READY:
                logger.info("History list ready (login attempt %d/%d).", attempt, attempts)
                return
            logger.warning("Login attempt %d/%d timed out.", attempt, attempts)

        raise LoginTimeoutError(f"Login did not complete after {attempts} attempt(s)")

    async def collect_operations(
        self,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        on_snapshot: Optional[SnapshotSink] = None,
    ) -> list[OperationRecord]:
        """
        Visit every list row once and return the parsed operations.

        Every `batch_size` records (and once at the end) the newest batch is handed to `on_snapshot`.
        A StopRequested result keeps only the accepted prefix of that batch and ends the run.
        Returns [] if the session error page shows up mid-run.
        """
        page = self._require_page()
        t = self.timings
        registry = RowRegistry()
        self.registry = registry
        extractor = DetailExtractor(page, timings=t)

        out: list[OperationRecord] = []
        pending: list[OperationRecord] = []
        hashes: set[str] = set()
        empty_passes = 0
        reveals = 0

        while True:
            if await page.fatal_error_visible():
                logger.error("Session error page appeared during collection; aborting this run.")
                return []

            index = await self._find_target(page, registry)
            if index is None:
                empty_passes += 1
                if empty_passes == 1:
                    continue
                if reveals >= max_pages:
                    logger.info("Page budget of %d reached; stopping.", max_pages)
                    break
                reveals += 1
                if not await self._reveal_more(page, registry):
                    logger.info("No more rows after %d reveal(s); list exhausted.", reveals)
                    break
                continue
            empty_passes = 0

            entry = registry.entries[index]
            row = await self._resolve_target(page, entry, index)
            if row is None:
                logger.warning("Row %d could not be re-acquired; will retry later.", index)
                registry.mark_failed(index)
                continue

            await page.scroll_to(entry.top - t.scroll_margin)
            record = await extractor.extract(row)
            if record is None:
                registry.mark_failed(index)
                continue

            registry.mark_seen(index)
            if record.content_hash in hashes:
                logger.debug("Row %d repeats an operation already collected this run; skipping.", index)
                continue
            hashes.add(record.content_hash)
            pending.append(record)
            logger.info(
                "Collected %d: %s %s %s",
                len(out) + len(pending),
                record.raw_date or "-",
                record.text,
                record.amount,
            )

            if len(pending) >= t.batch_size:
                if await self._deliver(pending, out, on_snapshot):
                    return out

        if pending:
            await self._deliver(pending, out, on_snapshot)
        logger.info("Collection finished: %d operation(s), %d row(s) seen.", len(out), len(registry))
        return out

    async def _find_target(self, page: CollectorPage, registry: RowRegistry) -> Optional[int]:
        attempts = max(1, self.timings.snapshot_attempts)
        for attempt in range(1, attempts + 1):
            snapshot = await page.snapshot_rows()
            registry.reconcile(snapshot)
            index = registry.next_target(max_failures=self.timings.max_row_attempts)
            if index is not None:
                return index
            if attempt < attempts:
                await asyncio.sleep(self.timings.snapshot_pause)
        return None

    async def _resolve_target(self, page: CollectorPage, entry: RegistryEntry, index: int) -> Optional[RowDescriptor]:
        if entry.row is not None and await page.handle_attached(entry.row.handle):
            return entry.row

        needles = row_needles(entry.text)
        if needles:
            candidates = [r for r in await page.rows_matching(needles) if r.text == entry.text]
            if candidates:
                return min(candidates, key=lambda r: abs(r.top - entry.top))

        logger.debug("Falling back to positional lookup for row %d.", index)
        return await page.row_at(index)

    async def _reveal_more(self, page: CollectorPage, registry: RowRegistry) -> bool:
        before = await page.row_count()
        await page.reveal_more()

        async def grew() -> bool:
            if await page.row_count() > before:
                return True
            # Virtualized lists recycle nodes, so new content can arrive without the count changing.
            return registry.count_unknown(await page.snapshot_rows()) > 0

        return await wait_until(
            grew,
            timeout=self.timings.reveal_timeout,
            interval=self.timings.reveal_interval,
            describe="more rows",
        )

    async def _deliver(
        self,
        pending: list[OperationRecord],
        out: list[OperationRecord],
        sink: Optional[SnapshotSink],
    ) -> bool:
        """
        Hand `pending` to the sink and move what it accepted into `out`. Returns True on a stop request.
        """
        batch = list(pending)
        pending.clear()
        if sink is None:
            out.extend(batch)
            return False

        result = await sink(batch)
        if isinstance(result, StopRequested):
            accepted = max(0, min(result.accepted, len(batch)))
            out.extend(batch[:accepted])
            logger.info(
                "Reached already stored operations (%s); keeping %d of the last batch.",
                result.reason or "stop requested",
                accepted,
            )
            return True

        out.extend(batch)
        return False

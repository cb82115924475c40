from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from .detail import DetailPayload
from .registry import RowDescriptor, normalize_row_text
from .selectors import VtbSelectors


logger = logging.getLogger(__name__)


_ROW_INFO_JS = """
(el) => {
  const r = el.getBoundingClientRect();
  return { text: el.innerText || '', top: r.top + window.scrollY };
}
"""

_DETAIL_JS = """
([rootSel, headerSel, sectionTexts]) => {
  const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim();
  const root = document.querySelector(rootSel) || document.body;
  const header = document.querySelector(headerSel);
  const wanted = sectionTexts.map((t) => t.toLowerCase());
  const section = Array.from(root.querySelectorAll('h2, h3, h4, [role="heading"]'))
    .find((h) => wanted.some((t) => norm(h.textContent).toLowerCase().startsWith(t)));
  const paragraphs = [];
  const details = [];
  for (const p of root.querySelectorAll('p')) {
    const text = norm(p.textContent);
    if (!text) continue;
    if (section && (section.compareDocumentPosition(p) & Node.DOCUMENT_POSITION_FOLLOWING)) {
      details.push(text);
    } else {
      paragraphs.push(text);
    }
  }
  return {
    title: header ? norm(header.textContent) : '',
    paragraphs,
    details,
    pageText: root.innerText || '',
  };
}
"""


class HistoryPage:
    """
    Everything the login flow and the collector need from the browser, as small typed operations.

    Automation errors caused by a page that is mid-render or mid-navigation come back as
    False/None/empty results; callers poll instead of catching.
    """

    def __init__(
        self,
        page: Page,
        *,
        selectors: Optional[VtbSelectors] = None,
        debug_dir: str = "data/debug",
        step_log: bool = False,
        step_screenshots: bool = False,
        step_delay_ms: int = 0,
    ) -> None:
        self.page = page
        self.selectors = selectors or VtbSelectors()
        self.debug_dir = debug_dir
        self._step_log_enabled = bool(step_log or step_screenshots)
        self._step_debug_enabled = bool(step_screenshots)
        self._step_delay_ms = int(step_delay_ms or 0)
        self._step_counter = 0

    # --- navigation -------------------------------------------------------

    async def goto(self, url: str) -> None:
        await self.page.goto(url, wait_until="domcontentloaded")
        await self.step("after_goto")

    async def go_back(self) -> None:
        await self.page.go_back(wait_until="domcontentloaded")

    # --- login probes -----------------------------------------------------

    async def fatal_error_visible(self) -> bool:
        if await self._first_visible(self.selectors.fatal_error_banner) is not None:
            return True
        for t in self.selectors.fatal_error_texts:
            try:
                loc = self.page.get_by_text(t, exact=False)
                if await loc.count() > 0 and await loc.first.is_visible():
                    return True
            except PlaywrightError:
                continue
        return False

    async def return_to_login(self) -> bool:
        await self.save_debug("fatal_error_page")

        control = await self._first_visible(self.selectors.return_to_login)
        if control is not None and await self._click(control):
            await self.step("after_return_to_login")
            return True

        # Fallback: scan buttons/links by text content.
        for t in self.selectors.return_to_login_texts:
            pattern = re.compile(re.escape(t), re.I)
            for role in ("button", "link"):
                try:
                    loc = self.page.get_by_role(role, name=pattern)
                    if await loc.count() > 0 and await self._click(loc.first):
                        await self.step("after_return_to_login_by_text")
                        return True
                except PlaywrightError:
                    continue
            try:
                loc = self.page.get_by_text(t, exact=False)
                if await loc.count() > 0 and await self._click(loc.first):
                    await self.step("after_return_to_login_by_text")
                    return True
            except PlaywrightError:
                continue
        return False

    async def phone_field_visible(self) -> bool:
        return await self._first_visible(self.selectors.phone_input) is not None

    async def enter_phone(self, phone: str) -> None:
        field = await self._first_visible(self.selectors.phone_input)
        if field is None:
            return
        await field.fill(phone)
        await self.step("phone_filled")
        if not await self._click_first_by_texts(self.selectors.phone_submit_texts):
            await field.press("Enter")

    async def otp_field_visible(self) -> bool:
        return await self._first_visible(self.selectors.otp_input) is not None

    async def enter_otp(self, code: str) -> None:
        field = await self._first_visible(self.selectors.otp_input)
        if field is None:
            return
        try:
            await field.fill("")
        except PlaywrightError:
            pass
        # Typed character by character: the portal validates the code on each keystroke.
        await field.type(code, delay=80)
        await self.step("otp_entered")

    async def pin_field_visible(self) -> bool:
        return await self._first_visible(self.selectors.pin_input) is not None

    async def enter_pin(self, pin: str) -> None:
        field = await self._first_visible(self.selectors.pin_input)
        if field is None:
            return
        try:
            await field.fill("")
        except PlaywrightError:
            pass
        await field.type(pin, delay=80)
        await self.step("pin_entered")

    async def list_ready(self) -> bool:
        try:
            if await self.page.locator(self.selectors.operation_row).count() > 0:
                return True
            return await self._first_visible(self.selectors.operations_list) is not None
        except PlaywrightError:
            return False

    # --- list -------------------------------------------------------------

    async def row_count(self) -> int:
        try:
            return await self.page.locator(self.selectors.operation_row).count()
        except PlaywrightError:
            return 0

    async def snapshot_rows(self) -> list[RowDescriptor]:
        try:
            handles = await self.page.query_selector_all(self.selectors.operation_row)
        except PlaywrightError:
            return []
        rows: list[RowDescriptor] = []
        for handle in handles:
            row = await self._describe(handle)
            if row is not None:
                rows.append(row)
        return rows

    async def handle_attached(self, handle: Any) -> bool:
        if handle is None:
            return False
        try:
            return bool(await handle.evaluate("(el) => el.isConnected"))
        except PlaywrightError:
            return False

    async def rows_matching(self, needles: list[str]) -> list[RowDescriptor]:
        loc = self.page.locator(self.selectors.operation_row)
        for needle in needles:
            if needle:
                loc = loc.filter(has_text=needle)
        try:
            handles = await loc.element_handles()
        except PlaywrightError:
            return []
        rows = []
        for handle in handles:
            row = await self._describe(handle)
            if row is not None:
                rows.append(row)
        return rows

    async def row_at(self, index: int) -> Optional[RowDescriptor]:
        try:
            handles = await self.page.query_selector_all(self.selectors.operation_row)
        except PlaywrightError:
            return None
        if index < 0 or index >= len(handles):
            return None
        return await self._describe(handles[index])

    async def scroll_to(self, y: float) -> None:
        try:
            await self.page.evaluate("(y) => window.scrollTo(0, Math.max(0, y))", y)
        except PlaywrightError:
            logger.debug("scrollTo failed.", exc_info=True)

    async def reveal_more(self) -> None:
        """
        Scroll to the bottom of the list (infinite scroll) and press "show more" if the portal offers it.
        """
        try:
            await self.page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        except PlaywrightError:
            logger.debug("Scroll to bottom failed.", exc_info=True)
        await self._click_first_by_texts(self.selectors.load_more_texts)

    # --- detail -----------------------------------------------------------

    async def click_row(self, row: RowDescriptor) -> bool:
        if row.handle is None:
            return False
        try:
            await row.handle.scroll_into_view_if_needed(timeout=5_000)
            await row.handle.click(timeout=5_000)
            return True
        except PlaywrightError:
            logger.debug("Clicking row failed.", exc_info=True)
            return False

    async def detail_header_text(self) -> str:
        try:
            loc = self.page.locator(self.selectors.detail_header)
            if await loc.count() == 0:
                return ""
            return (await loc.first.inner_text()).strip()
        except PlaywrightError:
            return ""

    async def read_detail(self) -> DetailPayload:
        try:
            raw = await self.page.evaluate(
                _DETAIL_JS,
                [self.selectors.detail_root, self.selectors.detail_header, list(self.selectors.detail_section_texts)],
            )
        except PlaywrightError:
            logger.debug("Detail evaluate failed.", exc_info=True)
            raw = None
        payload = DetailPayload.from_raw(raw)
        if self._step_debug_enabled:
            self._dump_payload(payload)
        return payload

    # --- debugging --------------------------------------------------------

    async def save_debug(self, name_prefix: str) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(await self.page.content(), encoding="utf-8")
            try:
                (out_dir / f"{name_prefix}.txt").write_text(await self.page.inner_text("body"), encoding="utf-8")
            except PlaywrightError:
                pass
        except (PlaywrightError, OSError):
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    async def step(self, name: str) -> None:
        """
        If enabled, log step-by-step progress and optionally save screenshots.
        """
        if not self._step_log_enabled:
            return

        self._step_counter += 1
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        logger.info("Step %02d %s (url=%s)", self._step_counter, name, self.page.url)

        if not self._step_debug_enabled:
            return

        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(out_dir / f"step_{self._step_counter:02d}_{safe}.png"), full_page=True)
        except (PlaywrightError, OSError):
            logger.debug("Failed to save step screenshot (name=%s).", name, exc_info=True)

        if self._step_delay_ms > 0:
            await self.page.wait_for_timeout(self._step_delay_ms)

    def _dump_payload(self, payload: DetailPayload) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            self._step_counter += 1
            path = out_dir / f"detail_{self._step_counter:02d}.json"
            path.write_text(json.dumps(payload.model_dump(), ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError:
            logger.debug("Failed to dump detail payload.", exc_info=True)

    # --- helpers ----------------------------------------------------------

    async def _describe(self, handle: Any) -> Optional[RowDescriptor]:
        try:
            info = await handle.evaluate(_ROW_INFO_JS)
        except PlaywrightError:
            return None
        if not isinstance(info, dict):
            return None
        text = normalize_row_text(info.get("text") if isinstance(info.get("text"), str) else "")
        if not text:
            return None
        top = info.get("top")
        return RowDescriptor(text=text, top=float(top) if isinstance(top, (int, float)) else 0.0, handle=handle)

    async def _first_visible(self, selector: str) -> Optional[Locator]:
        loc = self.page.locator(selector)
        try:
            n = min(await loc.count(), 25)
        except PlaywrightError:
            return None
        for i in range(n):
            cand = loc.nth(i)
            try:
                if await cand.is_visible():
                    return cand
            except PlaywrightError:
                continue
        return None

    async def _click(self, loc: Locator) -> bool:
        try:
            await loc.click(timeout=5_000)
            return True
        except PlaywrightError:
            return False

    async def _click_first_by_texts(self, texts: tuple[str, ...]) -> bool:
        """
        Click the first visible button/link whose accessible name contains one of `texts`.
        """
        for t in texts:
            pattern = re.compile(re.escape(t), re.I)
            for role in ("button", "link"):
                try:
                    loc = self.page.get_by_role(role, name=pattern)
                    if await loc.count() > 0 and await loc.first.is_visible():
                        if await self._click(loc.first):
                            return True
                except PlaywrightError:
                    continue
        return False

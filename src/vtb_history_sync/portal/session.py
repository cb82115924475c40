from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..config import BrowserConfig


logger = logging.getLogger(__name__)

PROFILE_ARGS = ["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"]
VIEWPORT = {"width": 1280, "height": 1600}


@dataclass
class BrowserSession:
    playwright: Playwright
    context: BrowserContext
    page: Page

    async def close(self) -> None:
        try:
            await self.context.close()
        except PlaywrightError:
            logger.debug("Browser context close failed.", exc_info=True)
        finally:
            await self.playwright.stop()


def reset_profile(user_data_dir: str) -> None:
    """
    Remove the persistent profile so the next launch starts logged out.
    """
    path = Path(user_data_dir)
    if path.exists():
        shutil.rmtree(path)
        logger.info("Removed browser profile at %s", path)


def _clear_stale_locks(profile: Path) -> None:
    # Chromium leaves these behind after a crash and then refuses to open the profile.
    for lock in profile.glob("Singleton*"):
        try:
            lock.unlink()
        except OSError:
            logger.debug("Could not remove stale profile lock %s", lock, exc_info=True)


async def open_session(cfg: BrowserConfig, *, headless: Optional[bool] = None) -> BrowserSession:
    """
    Launch Chromium on the persistent profile in `cfg.user_data_dir` and return its first page.
    """
    profile = Path(cfg.user_data_dir)
    profile.mkdir(parents=True, exist_ok=True)
    _clear_stale_locks(profile)

    launch_kwargs: dict = {
        "headless": cfg.headless if headless is None else bool(headless),
        "args": list(PROFILE_ARGS),
        "viewport": dict(VIEWPORT),
        "locale": "ru-RU",
    }
    if cfg.binary_path:
        launch_kwargs["executable_path"] = cfg.binary_path

    pw = await async_playwright().start()
    try:
        try:
            context = await pw.chromium.launch_persistent_context(str(profile), **launch_kwargs)
        except PlaywrightError as e:
            msg = str(e)
            if cfg.binary_path or "Executable doesn't exist" not in msg:
                if "ProcessSingleton" in msg or "SingletonLock" in msg:
                    raise RuntimeError(
                        f"Browser profile {profile} is locked; close any Chrome using it and retry."
                    ) from e
                raise

            logger.warning(
                "Playwright Chromium executable missing; falling back to system Chrome. (%s)",
                msg,
            )
            context = await pw.chromium.launch_persistent_context(str(profile), channel="chrome", **launch_kwargs)
    except BaseException:
        await pw.stop()
        raise

    page = context.pages[0] if context.pages else await context.new_page()
    return BrowserSession(playwright=pw, context=context, page=page)

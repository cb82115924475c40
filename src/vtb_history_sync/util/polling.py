from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar, Union


logger = logging.getLogger(__name__)
T = TypeVar("T")

Probe = Callable[[], Union[Optional[T], Awaitable[Optional[T]]]]


async def poll(
    probe: Probe,
    *,
    timeout: float,
    interval: float = 0.5,
    backoff: float = 1.0,
    max_interval: float = 5.0,
    describe: str = "",
) -> Optional[T]:
    """
    Call `probe` until it returns a truthy value or `timeout` seconds elapse.

    Returns the truthy value, or None on timeout. Exceptions raised by the probe are treated as
    "not yet" (the page may be mid-navigation) and logged at DEBUG.
    """
    deadline = time.monotonic() + max(0.0, timeout)
    delay = max(0.01, interval)
    while True:
        try:
            result = probe()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return result
        except Exception:
            logger.debug("Probe %s raised; retrying.", describe or getattr(probe, "__name__", "?"), exc_info=True)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay * backoff, max_interval)


async def wait_until(probe: Probe, *, timeout: float, interval: float = 0.5, describe: str = "") -> bool:
    return bool(await poll(probe, timeout=timeout, interval=interval, describe=describe))


async def human_pause(low: float, high: float) -> None:
    """
    Randomized pause between input actions. Never collapses to zero so network-driven input
    (e.g. an SMS code landing in a field) has a moment to settle before the next probe.
    """
    low = max(0.05, low)
    high = max(low, high)
    await asyncio.sleep(random.uniform(low, high))

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CollectorTimings:
    """
    Every wait in the login and collect loops is bounded by one of these (seconds unless noted).
    """

    login_budget: float = 300.0
    login_pause_min: float = 0.8
    login_pause_max: float = 1.6
    login_attempts: int = 2

    otp_timeout: float = 180.0
    otp_interval: float = 2.0

    snapshot_attempts: int = 3
    snapshot_pause: float = 1.5

    detail_header_timeout: float = 10.0
    detail_header_interval: float = 0.25

    list_settle_timeout: float = 15.0
    list_settle_interval: float = 0.5

    reveal_timeout: float = 6.0
    reveal_interval: float = 0.5

    # Offset kept above a target row when scrolling it near the viewport top (pixels).
    scroll_margin: float = 120.0

    batch_size: int = 10
    max_row_attempts: int = 2


FAST_TIMINGS = CollectorTimings(
    login_budget=2.0,
    login_pause_min=0.05,
    login_pause_max=0.05,
    otp_timeout=1.0,
    otp_interval=0.05,
    snapshot_pause=0.01,
    detail_header_timeout=0.1,
    detail_header_interval=0.02,
    list_settle_timeout=0.2,
    list_settle_interval=0.02,
    reveal_timeout=0.1,
    reveal_interval=0.02,
)

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ..util.polling import human_pause
from .timings import CollectorTimings


logger = logging.getLogger(__name__)


class LoginState(str, enum.Enum):
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_OTP = "awaiting_otp"
    AWAITING_PIN = "awaiting_pin"
    LIST_READY = "list_ready"
    FATAL_ERROR = "fatal_error"


class LoginOutcome(enum.Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


class LoginTimeoutError(TimeoutError):
    """
    Raised by callers once every login attempt has exhausted its wall-clock budget.
    """


class LoginPage(Protocol):
    async def fatal_error_visible(self) -> bool: ...
    async def return_to_login(self) -> bool: ...
    async def phone_field_visible(self) -> bool: ...
    async def enter_phone(self, phone: str) -> None: ...
    async def otp_field_visible(self) -> bool: ...
    async def enter_otp(self, code: str) -> None: ...
    async def pin_field_visible(self) -> bool: ...
    async def enter_pin(self, pin: str) -> None: ...
    async def list_ready(self) -> bool: ...


class CodeSource(Protocol):
    async def fetch_code(self) -> str: ...
    async def consume_code(self) -> None: ...


@dataclass
class LoginFlags:
    did_phone: bool = False
    did_otp: bool = False
    did_pin: bool = False

    def reset(self) -> None:
        self.did_phone = False
        self.did_otp = False
        self.did_pin = False


class LoginStateMachine:
    """
    Polled login flow: phone -> SMS code -> PIN -> history list.

    Every pass probes, in order: the fatal-error interstitial, the phone field, the code field, the PIN
    field, and finally the list. Each input is submitted at most once until a fatal-error recovery
    resets the flags, so a field the site is still validating never gets a second submission.
    """

    def __init__(
        self,
        page: LoginPage,
        *,
        code_source: CodeSource,
        phone: str = "",
        pin: str = "",
        timings: Optional[CollectorTimings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.page = page
        self.code_source = code_source
        self.phone = phone
        self.pin = pin
        self.timings = timings or CollectorTimings()
        self._clock = clock

        self.state = LoginState.AWAITING_PHONE
        self.flags = LoginFlags()
        self.recoveries = 0

    async def run(self) -> LoginOutcome:
        deadline = self._clock() + self.timings.login_budget
        while self._clock() < deadline:
            outcome = await self.step()
            if outcome is not None:
                return outcome
            await self._pause()

        logger.warning(
            "Login did not reach the history list within %.0fs (last state=%s).",
            self.timings.login_budget,
            self.state.value,
        )
        return LoginOutcome.TIMED_OUT

    async def step(self) -> Optional[LoginOutcome]:
        """
        One polling pass. Returns READY once the list is visible, otherwise None.
        """
        if await self.page.fatal_error_visible():
            self._set_state(LoginState.FATAL_ERROR)
            if await self.page.return_to_login():
                self.recoveries += 1
                self.flags.reset()
                logger.warning("Session error page detected; returned to login (recovery #%d).", self.recoveries)
            else:
                logger.warning("Session error page detected but no way back to login was found.")
            return None

        if not self.flags.did_phone and await self.page.phone_field_visible():
            self._set_state(LoginState.AWAITING_PHONE)
            if not self.phone:
                raise RuntimeError("The portal asked for a phone number but VTB_PHONE is not configured.")
            await self.page.enter_phone(self.phone)
            self.flags.did_phone = True
            logger.info("Phone number submitted.")
            await self._pause()

        if not self.flags.did_otp and await self.page.otp_field_visible():
            self._set_state(LoginState.AWAITING_OTP)
            code = await self.code_source.fetch_code()
            await self._pause()
            await self.page.enter_otp(code)
            self.flags.did_otp = True
            logger.info("SMS code entered.")
            await self.code_source.consume_code()
            await self._pause()

        if not self.flags.did_pin and await self.page.pin_field_visible():
            self._set_state(LoginState.AWAITING_PIN)
            if not self.pin:
                raise RuntimeError("The portal asked for a PIN but VTB_PIN is not configured.")
            await self.page.enter_pin(self.pin)
            self.flags.did_pin = True
            logger.info("PIN entered.")
            await self._pause()

        if await self.page.list_ready():
            self._set_state(LoginState.LIST_READY)
            return LoginOutcome.READY
        return None

    def _set_state(self, state: LoginState) -> None:
        if state is not self.state:
            logger.debug("Login state %s -> %s", self.state.value, state.value)
            self.state = state

    async def _pause(self) -> None:
        await human_pause(self.timings.login_pause_min, self.timings.login_pause_max)

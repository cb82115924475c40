from __future__ import annotations

import asyncio
import itertools

import pytest

from vtb_history_sync.portal.login import LoginOutcome, LoginState, LoginStateMachine
from vtb_history_sync.portal.timings import FAST_TIMINGS


class FakeLoginPage:
    """
    Scripted login screens: phone -> otp -> pin -> list. `fatal_once` shows the session error
    page right after the PIN is entered, once.
    """

    def __init__(self, *, fatal_once: bool = False, never_ready: bool = False) -> None:
        self.screen = "phone"
        self.fatal_once = fatal_once
        self.never_ready = never_ready
        self.entered: list[tuple[str, str]] = []

    async def fatal_error_visible(self) -> bool:
        return self.screen == "fatal"

    async def return_to_login(self) -> bool:
        self.screen = "phone"
        return True

    async def phone_field_visible(self) -> bool:
        return self.screen == "phone"

    async def enter_phone(self, phone: str) -> None:
        self.entered.append(("phone", phone))
        self.screen = "otp"

    async def otp_field_visible(self) -> bool:
        return self.screen == "otp"

    async def enter_otp(self, code: str) -> None:
        self.entered.append(("otp", code))
        self.screen = "pin"

    async def pin_field_visible(self) -> bool:
        return self.screen == "pin"

    async def enter_pin(self, pin: str) -> None:
        self.entered.append(("pin", pin))
        if self.fatal_once:
            self.fatal_once = False
            self.screen = "fatal"
        elif not self.never_ready:
            self.screen = "list"
        else:
            self.screen = "spinner"

    async def list_ready(self) -> bool:
        return self.screen == "list"


class FakeCodeSource:
    def __init__(self, code: str = "123456") -> None:
        self.code = code
        self.fetched = 0
        self.consumed = 0

    async def fetch_code(self) -> str:
        self.fetched += 1
        return self.code

    async def consume_code(self) -> None:
        self.consumed += 1


def _machine(page: FakeLoginPage, codes: FakeCodeSource, **kwargs) -> LoginStateMachine:
    return LoginStateMachine(page, code_source=codes, phone="9001234567", pin="1111", timings=FAST_TIMINGS, **kwargs)


def test_happy_path_enters_each_input_once() -> None:
    page = FakeLoginPage()
    codes = FakeCodeSource()
    m = _machine(page, codes)

    assert asyncio.run(m.run()) is LoginOutcome.READY
    assert page.entered == [("phone", "9001234567"), ("otp", "123456"), ("pin", "1111")]
    assert codes.fetched == 1
    assert codes.consumed == 1
    assert m.state is LoginState.LIST_READY


def test_fatal_error_resets_flags_and_restarts_login() -> None:
    page = FakeLoginPage(fatal_once=True)
    codes = FakeCodeSource()
    m = _machine(page, codes)

    assert asyncio.run(m.run()) is LoginOutcome.READY
    assert m.recoveries == 1
    assert [kind for kind, _ in page.entered] == ["phone", "otp", "pin", "phone", "otp", "pin"]
    assert codes.consumed == 2


def test_timeout_is_an_outcome_not_an_exception() -> None:
    page = FakeLoginPage(never_ready=True)
    codes = FakeCodeSource()

    ticks = itertools.count(0.0, 0.5)
    m = _machine(page, codes, clock=lambda: next(ticks))

    assert asyncio.run(m.run()) is LoginOutcome.TIMED_OUT
    # Nothing was submitted twice while the site was "validating".
    assert [kind for kind, _ in page.entered] == ["phone", "otp", "pin"]


def test_missing_pin_is_a_configuration_error() -> None:
    page = FakeLoginPage()
    page.screen = "pin"
    m = LoginStateMachine(page, code_source=FakeCodeSource(), phone="", pin="", timings=FAST_TIMINGS)
    with pytest.raises(RuntimeError, match="VTB_PIN"):
        asyncio.run(m.step())

from .collector import CollectorNotReadyError, HistoryCollector
from .login import LoginOutcome, LoginStateMachine, LoginTimeoutError
from .otp import HttpCodeSource, OtpTimeoutError

__all__ = [
    "HistoryCollector",
    "CollectorNotReadyError",
    "LoginStateMachine",
    "LoginOutcome",
    "LoginTimeoutError",
    "HttpCodeSource",
    "OtpTimeoutError",
]

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_HISTORY_URL = "https://online.vtb.ru/history"


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so most setups only need `.env`.

    YAML stays an optional override on top of this.
    """
    return {
        "bank": {
            "history_url": (os.getenv("VTB_HISTORY_URL", "") or DEFAULT_HISTORY_URL).strip(),
            "get_code_url": os.getenv("VTB_GET_CODE_URL", "").strip(),
            "delete_code_url": os.getenv("VTB_DELETE_CODE_URL", "").strip(),
            "code_regex": os.getenv("VTB_CODE_REGEX", r"^\d{4,8}$"),
            "pin": os.getenv("VTB_PIN", "").strip(),
            "phone": os.getenv("VTB_PHONE", "").strip(),
        },
        "browser": {
            "headless": _env_bool("HEADLESS", default=True),
            "user_data_dir": os.getenv("CHROME_USER_DATA_DIR", "").strip() or ".chrome-data",
            "binary_path": os.getenv("CHROME_BINARY_PATH", "").strip(),
        },
        "telegram": {
            "bot_token": os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
            "chat_id": os.getenv("TELEGRAM_CHAT_ID", "").strip(),
        },
        "store": {
            "db_path": os.getenv("STORE_DB_PATH", "data/operations.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/sync.log"),
        },
    }


class BankConfig(BaseModel):
    """
    Online-banking portal settings.

    The one-time code is not typed by a human: an external endpoint exposes the latest SMS code as
    plain text (`get_code_url`) and accepts a DELETE once the code has been used (`delete_code_url`).
    """

    history_url: str = DEFAULT_HISTORY_URL
    get_code_url: str = ""
    delete_code_url: str = ""
    code_regex: str = r"^\d{4,8}$"
    pin: str = Field(default="", repr=False)
    phone: str = Field(default="", repr=False)

    @field_validator("history_url")
    @classmethod
    def _validate_history_url(cls, v: str) -> str:
        url = (v or "").strip() or DEFAULT_HISTORY_URL
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"bank.history_url must be a full URL like {DEFAULT_HISTORY_URL!r}")
        return url

    @field_validator("code_regex")
    @classmethod
    def _validate_code_regex(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"bank.code_regex is not a valid regular expression: {e}") from e
        return v


class BrowserConfig(BaseModel):
    headless: bool = True
    # Persistent Chromium profile; cookies/local storage survive between runs.
    user_data_dir: str = ".chrome-data"
    binary_path: str = ""


class TelegramConfig(BaseModel):
    bot_token: str = Field(default="", repr=False)
    chat_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class StoreConfig(BaseModel):
    db_path: str = "data/operations.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/sync.log"


class AppConfig(BaseModel):
    bank: BankConfig = BankConfig()
    browser: BrowserConfig = BrowserConfig()
    telegram: TelegramConfig = TelegramConfig()
    store: StoreConfig = StoreConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)

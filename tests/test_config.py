from __future__ import annotations

from pathlib import Path

import pytest

from vtb_history_sync.config import DEFAULT_HISTORY_URL, load_config


_ENV_KEYS = (
    "VTB_HISTORY_URL",
    "VTB_GET_CODE_URL",
    "VTB_DELETE_CODE_URL",
    "VTB_CODE_REGEX",
    "VTB_PIN",
    "VTB_PHONE",
    "HEADLESS",
    "CHROME_USER_DATA_DIR",
    "CHROME_BINARY_PATH",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "STORE_DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_defaults_without_env_or_yaml(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg.bank.history_url == DEFAULT_HISTORY_URL
    assert cfg.bank.code_regex == r"^\d{4,8}$"
    assert cfg.browser.headless is True
    assert cfg.browser.user_data_dir == ".chrome-data"
    assert cfg.store.db_path == "data/operations.db"
    assert cfg.telegram.enabled is False


def test_env_only_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VTB_GET_CODE_URL", "https://codes.example/sms")
    monkeypatch.setenv("VTB_DELETE_CODE_URL", "https://codes.example/sms")
    monkeypatch.setenv("VTB_PIN", "1111")
    monkeypatch.setenv("VTB_PHONE", "9001234567")
    monkeypatch.setenv("HEADLESS", "false")
    monkeypatch.setenv("CHROME_BINARY_PATH", "/usr/bin/chromium")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")

    cfg = load_config(None)
    assert cfg.bank.get_code_url == "https://codes.example/sms"
    assert cfg.bank.pin == "1111"
    assert cfg.browser.headless is False
    assert cfg.browser.binary_path == "/usr/bin/chromium"
    assert cfg.telegram.enabled is True


def test_secrets_are_not_in_repr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VTB_PIN", "8642")
    monkeypatch.setenv("VTB_PHONE", "9001234567")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "secret-token")
    cfg = load_config(None)
    text = repr(cfg)
    assert "8642" not in text
    assert "9001234567" not in text
    assert "secret-token" not in text


def test_yaml_overrides_env_and_expands_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VTB_PIN", "1111")
    monkeypatch.setenv("MY_DB", "/tmp/ops.db")
    cfg_path = _write(
        tmp_path,
        "cfg.yaml",
        """
bank:
  history_url: "https://online.vtb.ru/history?tab=all"
store:
  db_path: "${MY_DB}"
logging:
  level: "DEBUG"
""",
    )
    cfg = load_config(cfg_path)
    assert cfg.bank.history_url == "https://online.vtb.ru/history?tab=all"
    assert cfg.bank.pin == "1111"  # untouched env default survives the merge
    assert cfg.store.db_path == "/tmp/ops.db"
    assert cfg.logging.level == "DEBUG"


def test_invalid_history_url_rejected(tmp_path: Path) -> None:
    cfg_path = _write(tmp_path, "cfg.yaml", 'bank:\n  history_url: "online.vtb.ru/history"\n')
    with pytest.raises(Exception):
        _ = load_config(cfg_path)


def test_invalid_code_regex_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VTB_CODE_REGEX", "([0-9")
    with pytest.raises(Exception):
        _ = load_config(None)

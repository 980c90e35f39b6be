from __future__ import annotations

from datetime import timedelta

import pytest

from myevent import config
from myevent.config import load_settings, settings_as_dict, update_config_file


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path):
    for key in config.DEFAULTS:
        monkeypatch.delenv(f"MYEVENT_{key.upper()}", raising=False)
    for legacy in config.LEGACY_ENV_KEYS.values():
        monkeypatch.delenv(legacy, raising=False)
    for key in ("MYEVENT_CONFIG", "MYEVENT_DATA_DIR", "MYEVENT_DB"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("MYEVENT_BASE_DIR", str(tmp_path))
    return tmp_path


def test_defaults(isolated_env):
    loaded = load_settings()

    assert loaded.reminder_hour == 9
    assert loaded.reminder_minute == 0
    assert loaded.reminder_timezone == "Europe/Paris"
    assert loaded.reminder_window == (timedelta(hours=23), timedelta(hours=24))
    assert loaded.message_delay_seconds == 1.0
    assert loaded.event_delay_seconds == 2.0
    assert loaded.database_path == isolated_env / "data" / "myevent.db"
    assert loaded.mail_configured is False
    assert loaded.email_timezone == "Europe/Paris"


def test_env_overrides_toml(isolated_env, monkeypatch):
    (isolated_env / "myevent.toml").write_text(
        'reminder_hour = 7\nsmtp_host = "mail.toml"\n', encoding="utf-8"
    )
    monkeypatch.setenv("MYEVENT_REMINDER_HOUR", "8")

    loaded = load_settings()

    assert loaded.reminder_hour == 8
    assert loaded.smtp_host == "mail.toml"


def test_legacy_email_variables(isolated_env, monkeypatch):
    monkeypatch.setenv("EMAIL_USER", "bot@example.com")
    monkeypatch.setenv("EMAIL_PASS", "hunter2")
    monkeypatch.setenv("EMAIL_PORT", "587")

    loaded = load_settings()

    assert loaded.smtp_user == "bot@example.com"
    assert loaded.smtp_port == 587
    assert loaded.mail_configured is True
    assert loaded.sender_address == "bot@example.com"

    monkeypatch.setenv("MYEVENT_SMTP_USER", "other@example.com")
    assert load_settings().smtp_user == "other@example.com"


def test_boolean_parsing(isolated_env, monkeypatch):
    monkeypatch.setenv("MYEVENT_ENABLE_SCHEDULER", "off")
    assert load_settings().enable_scheduler is False

    monkeypatch.setenv("MYEVENT_ENABLE_SCHEDULER", "maybe")
    with pytest.raises(ValueError):
        load_settings()


@pytest.mark.parametrize(
    "key,value",
    [
        ("MYEVENT_REMINDER_HOUR", "24"),
        ("MYEVENT_REMINDER_MINUTE", "60"),
        ("MYEVENT_REMINDER_WINDOW_START_HOURS", "24"),
        ("MYEVENT_MESSAGE_DELAY_SECONDS", "-1"),
        ("MYEVENT_CONFIRMATION_WORKERS", "0"),
    ],
)
def test_invalid_values_are_rejected(isolated_env, monkeypatch, key, value):
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError):
        load_settings()


def test_password_is_masked(isolated_env, monkeypatch):
    monkeypatch.setenv("MYEVENT_SMTP_PASSWORD", "hunter2")

    effective = settings_as_dict(load_settings())

    assert effective["smtp_password"] == "********"
    assert "hunter2" not in str(effective)


def test_update_config_file(isolated_env, monkeypatch):
    monkeypatch.setattr(config, "settings", load_settings())
    path = isolated_env / "myevent.toml"

    updated = update_config_file(
        {"reminder_hour": 6, "enable_scheduler": False, "unknown": 1}, path=path
    )

    assert updated.reminder_hour == 6
    assert updated.enable_scheduler is False
    content = path.read_text(encoding="utf-8")
    assert "reminder_hour = 6" in content
    assert "unknown" not in content

"""Global configuration for MyEvent."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "enable_scheduler": True,
    "reminder_hour": 9,
    "reminder_minute": 0,
    "reminder_timezone": "Europe/Paris",
    "reminder_window_start_hours": 23,
    "reminder_window_end_hours": 24,
    "message_delay_seconds": 1.0,
    "event_delay_seconds": 2.0,
    "smtp_host": "smtp.gmail.com",
    "smtp_port": 465,
    "smtp_user": "",
    "smtp_password": "",
    "smtp_use_ssl": True,
    "mail_from": "",
    "mail_from_name": "My Event",
    "display_timezone": "",
    "confirmation_workers": 2,
    "log_level": "INFO",
    "debug": False,
    "seed_events": 4,
    "seed_participants_per_event": 3,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "enable_scheduler": bool,
    "reminder_hour": int,
    "reminder_minute": int,
    "reminder_timezone": str,
    "reminder_window_start_hours": int,
    "reminder_window_end_hours": int,
    "message_delay_seconds": float,
    "event_delay_seconds": float,
    "smtp_host": str,
    "smtp_port": int,
    "smtp_user": str,
    "smtp_password": str,
    "smtp_use_ssl": bool,
    "mail_from": str,
    "mail_from_name": str,
    "display_timezone": str,
    "confirmation_workers": int,
    "log_level": str,
    "debug": bool,
    "seed_events": int,
    "seed_participants_per_event": int,
}

# Variable names used by earlier deployments of the mailer.
LEGACY_ENV_KEYS: dict[str, str] = {
    "smtp_host": "EMAIL_HOST",
    "smtp_port": "EMAIL_PORT",
    "smtp_user": "EMAIL_USER",
    "smtp_password": "EMAIL_PASS",
}

SECRET_KEYS = {"smtp_password"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    app_host: str
    app_port: int
    enable_scheduler: bool
    reminder_hour: int
    reminder_minute: int
    reminder_timezone: str
    reminder_window_start_hours: int
    reminder_window_end_hours: int
    message_delay_seconds: float
    event_delay_seconds: float
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_use_ssl: bool
    mail_from: str
    mail_from_name: str
    display_timezone: str
    confirmation_workers: int
    log_level: str
    debug: bool
    seed_events: int
    seed_participants_per_event: int
    config_path: Path

    @property
    def reminder_window(self) -> tuple[timedelta, timedelta]:
        return (
            timedelta(hours=self.reminder_window_start_hours),
            timedelta(hours=self.reminder_window_end_hours),
        )

    @property
    def mail_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    @property
    def sender_address(self) -> str:
        return self.mail_from or self.smtp_user

    @property
    def email_timezone(self) -> str:
        return self.display_timezone or self.reminder_timezone


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"MYEVENT_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    legacy_key = LEGACY_ENV_KEYS.get(key)
    if legacy_key and os.environ.get(legacy_key):
        return _cast_value(key, os.environ[legacy_key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "myevent.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def _validate(values: dict[str, Any]) -> None:
    if not 0 <= values["reminder_hour"] <= 23:
        raise ValueError("reminder_hour must be between 0 and 23")
    if not 0 <= values["reminder_minute"] <= 59:
        raise ValueError("reminder_minute must be between 0 and 59")
    if values["reminder_window_start_hours"] >= values["reminder_window_end_hours"]:
        raise ValueError("Reminder window must end after it starts")
    if values["message_delay_seconds"] < 0 or values["event_delay_seconds"] < 0:
        raise ValueError("Delays cannot be negative")
    if values["confirmation_workers"] < 1:
        raise ValueError("confirmation_workers must be at least 1")


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("MYEVENT_BASE_DIR", Path.cwd()))
    env_config = os.getenv("MYEVENT_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "myevent.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("MYEVENT_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("MYEVENT_DB", toml_config.get("database_path")),
    )

    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    _validate(values)

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **values,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    effective: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        if key in SECRET_KEYS and value:
            value = "********"
        effective[key] = value
    return effective


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# MyEvent configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()

# src/opsdesk/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Components get the settings object injected; they never read os.environ themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timezone as dt_timezone
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

ENV_PREFIX = "OPSDESK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a local .env (if present) without overriding the real environment."""
    load_dotenv(override=False)


_load_dotenv()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def load_timezone(name: str | None) -> tzinfo:
    """IANA zone by name; unknown or empty names fall back to UTC."""
    key = (name or "").strip()
    if not key or key.upper() == "UTC":
        return dt_timezone.utc
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError):
        return dt_timezone.utc


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Identity of the console user ----
    tenant_id: str
    owner_id: str

    # ---- Recurring tasks ----
    timezone: str
    recurrence_window_days: int
    reconcile_enabled: bool
    reconcile_interval_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "opsdesk") or "opsdesk"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/opsdesk"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        tenant_id = _env(_k("TENANT_ID"), "default").strip() or "default"
        owner_id = _env(_k("OWNER_ID"), "me").strip() or "me"

        timezone = _env(_k("TIMEZONE"), "UTC").strip() or "UTC"
        recurrence_window_days = max(0, _env_int(_k("RECURRENCE_WINDOW_DAYS"), 30))
        reconcile_enabled = _env_bool(_k("RECONCILE_ENABLED"), True)
        reconcile_interval_seconds = max(
            1.0, _env_float(_k("RECONCILE_INTERVAL_SECONDS"), 3600.0)
        )

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            tenant_id=tenant_id,
            owner_id=owner_id,
            timezone=timezone,
            recurrence_window_days=recurrence_window_days,
            reconcile_enabled=reconcile_enabled,
            reconcile_interval_seconds=reconcile_interval_seconds,
        )


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env; use config_local.py only for safe switches.
try:
    import config_local as _config_local  # type: ignore
except ImportError:
    _config_local = None

if _config_local is not None:
    if hasattr(_config_local, "CONSOLE_ENABLED"):
        object.__setattr__(SETTINGS, "console_enabled", bool(_config_local.CONSOLE_ENABLED))  # type: ignore[misc]
    if hasattr(_config_local, "RECONCILE_ENABLED"):
        object.__setattr__(SETTINGS, "reconcile_enabled", bool(_config_local.RECONCILE_ENABLED))  # type: ignore[misc]


def get_settings() -> Settings:
    return SETTINGS

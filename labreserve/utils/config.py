"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration shared by every layer."""

    app_name: str
    app_version: str
    database_path: Path
    log_level: str

    admin_token: Optional[str]
    admin_login_id: str
    admin_name: str

    store_timeout_seconds: float

    inventory_system_count: int
    inventory_high_tier_count: int

    change_feed_workers: int

    notifications_enabled: bool
    notification_workers: int
    notification_outbox_size: int
    notification_sender: str
    notification_email_domain: str
    smtp_server: Optional[str]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; tests derive variants via replace()."""
    return Settings(
        app_name=_env_str("APP_NAME", "Lab Reservation Engine") or "Lab Reservation Engine",
        app_version=_env_str("APP_VERSION", "1.0.0") or "1.0.0",
        database_path=Path(
            _env_str("DATABASE_PATH", "data/lab_reservations.db") or "data/lab_reservations.db"
        ),
        log_level=_env_str("LOG_LEVEL", "INFO") or "INFO",
        admin_token=_env_str("ADMIN_TOKEN", None),
        admin_login_id=_env_str("ADMIN_LOGIN_ID", "A0001") or "A0001",
        admin_name=_env_str("ADMIN_NAME", "Lab Administrator") or "Lab Administrator",
        store_timeout_seconds=_env_float("STORE_TIMEOUT_SECONDS", 5.0),
        inventory_system_count=_env_int("INVENTORY_SYSTEM_COUNT", 33),
        inventory_high_tier_count=_env_int("INVENTORY_HIGH_TIER_COUNT", 14),
        change_feed_workers=_env_int("CHANGE_FEED_WORKERS", 2),
        notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
        notification_workers=_env_int("NOTIFICATION_WORKERS", 1),
        notification_outbox_size=_env_int("NOTIFICATION_OUTBOX_SIZE", 200),
        notification_sender=_env_str("EMAIL_FROM", "noreply@lab.local") or "noreply@lab.local",
        notification_email_domain=_env_str("EMAIL_DOMAIN", "lab.local") or "lab.local",
        smtp_server=_env_str("SMTP_SERVER", None),
    )

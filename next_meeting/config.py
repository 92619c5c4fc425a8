from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List
import logging
import os

from dotenv import load_dotenv
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from next_meeting.cache import CACHE_TTL, default_cache_path
from next_meeting.notify import NOTIFY_RETENTION, default_notify_dir


DEFAULT_NOTIFY_THRESHOLD = 300


@dataclass(frozen=True)
class Settings:
    ews_server: str
    ews_email: str
    ews_username: str
    ews_password: str
    ews_auth_type: str
    ews_verify_ssl: bool
    local_timezone: ZoneInfo
    cache_path: Path
    cache_ttl: timedelta
    notify_dir: Path
    notify_threshold: timedelta
    notify_retention: timedelta
    notify_bot_token: str
    allowed_chat_ids: List[int]
    log_level: str

    @property
    def can_notify(self) -> bool:
        return bool(self.notify_bot_token) and bool(self.allowed_chat_ids)


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"Missing required env var: {name}")
    return value


def _get_int(name: str, default: int | None = None) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        if default is None:
            raise ValueError(f"Missing required env var: {name}")
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {value!r}") from None


def _get_seconds(name: str, default: int) -> timedelta:
    seconds = _get_int(name, default)
    if seconds <= 0:
        raise ValueError(f"{name} must be a positive number of seconds")
    return timedelta(seconds=seconds)


def _get_bool(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(name: str) -> List[str]:
    value = os.getenv(name, "")
    if value == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_chat_ids(name: str) -> List[int]:
    try:
        return [int(item) for item in _get_list(name)]
    except ValueError:
        raise ValueError(f"Invalid chat id list in {name}") from None


def _get_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    return Path(value).expanduser()


def _get_timezone(name: str, default: str) -> ZoneInfo:
    value = os.getenv(name, "").strip() or default
    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone in {name}: {value!r}") from None


def _get_log_level(name: str, default: str) -> str:
    value = os.getenv(name, "").strip().upper() or default
    if not isinstance(logging.getLevelName(value), int):
        raise ValueError(f"Invalid {name}: {value!r}")
    return value


def load_settings() -> Settings:
    load_dotenv(override=False)

    ews_server = _require_env("EWS_SERVER")
    ews_email = _require_env("EWS_EMAIL")
    ews_username = _require_env("EWS_USERNAME")
    ews_password = _require_env("EWS_PASSWORD")
    ews_auth_type = os.getenv("EWS_AUTH_TYPE", "NTLM")
    ews_verify_ssl = _get_bool("EWS_VERIFY_SSL", True)

    local_timezone = _get_timezone("LOCAL_TIMEZONE", "UTC")

    cache_path = _get_path("CACHE_PATH", default_cache_path())
    cache_ttl = _get_seconds("CACHE_TTL", int(CACHE_TTL.total_seconds()))
    notify_dir = _get_path("NOTIFY_DIR", default_notify_dir())
    notify_threshold = _get_seconds("NOTIFY_THRESHOLD", DEFAULT_NOTIFY_THRESHOLD)
    notify_retention = _get_seconds(
        "NOTIFY_RETENTION", int(NOTIFY_RETENTION.total_seconds())
    )

    notify_bot_token = os.getenv("NOTIFY_BOT_TOKEN", "").strip()
    allowed_chat_ids = _parse_chat_ids("ALLOWED_CHAT_IDS")

    log_level = _get_log_level("LOG_LEVEL", "WARNING")

    return Settings(
        ews_server=ews_server,
        ews_email=ews_email,
        ews_username=ews_username,
        ews_password=ews_password,
        ews_auth_type=ews_auth_type,
        ews_verify_ssl=ews_verify_ssl,
        local_timezone=local_timezone,
        cache_path=cache_path,
        cache_ttl=cache_ttl,
        notify_dir=notify_dir,
        notify_threshold=notify_threshold,
        notify_retention=notify_retention,
        notify_bot_token=notify_bot_token,
        allowed_chat_ids=allowed_chat_ids,
        log_level=log_level,
    )

"""Shared fixtures for the next_meeting test suite."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from next_meeting.config import Settings
from next_meeting.models import RESPONSE_ACCEPTED, Meeting


NOW = datetime(2026, 1, 9, 14, 30, tzinfo=timezone.utc)


def make_meeting(
    summary,
    start_offset,
    end_offset,
    response_status=RESPONSE_ACCEPTED,
    now=NOW,
    **kwargs,
):
    """Build a meeting whose start/end are offsets from ``now``."""
    kwargs.setdefault("location", "Test Location")
    kwargs.setdefault("attendee_count", 5)
    return Meeting(
        summary=summary,
        start=now + start_offset,
        end=now + end_offset,
        response_status=response_status,
        **kwargs,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ews_server="mail.example.com",
        ews_email="user@example.com",
        ews_username="EXAMPLE\\user",
        ews_password="secret",
        ews_auth_type="NTLM",
        ews_verify_ssl=True,
        local_timezone=ZoneInfo("UTC"),
        cache_path=tmp_path / "cache.json",
        cache_ttl=timedelta(minutes=30),
        notify_dir=tmp_path / "notify",
        notify_threshold=timedelta(minutes=5),
        notify_retention=timedelta(hours=24),
        notify_bot_token="123:abc",
        allowed_chat_ids=[1001],
        log_level="WARNING",
    )


@pytest.fixture
def settings_without_bot(settings):
    return replace(settings, notify_bot_token="", allowed_chat_ids=[])

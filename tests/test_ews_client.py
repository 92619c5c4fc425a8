"""Tests for the Exchange calendar client with a mocked exchangelib account."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests
from exchangelib.errors import ErrorServerBusy, TransportError, UnauthorizedError

from next_meeting.ews_client import (
    LOOKAHEAD,
    LOOKBACK,
    CalendarAuthError,
    CalendarFetchError,
    CalendarOfflineError,
    EwsClient,
    fetch_window,
    map_response_type,
)

from tests.conftest import NOW


H = timedelta(hours=1)


def _item(subject="Sync", start=NOW, end=NOW + H, **kwargs):
    fields = {
        "subject": subject,
        "start": start,
        "end": end,
        "location": None,
        "is_all_day": False,
        "my_response_type": "Accept",
        "required_attendees": None,
        "optional_attendees": None,
    }
    fields.update(kwargs)
    return SimpleNamespace(**fields)


def _client_with_items(settings, items):
    account = MagicMock()
    query = account.calendar.view.return_value.only.return_value.order_by.return_value
    query.all.return_value = items
    client = EwsClient(settings)
    client._account = account
    return client, account


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Accept", "accepted"),
        ("Organizer", "accepted"),
        ("Tentative", "tentative"),
        ("Decline", "declined"),
        ("NoResponseReceived", "needsAction"),
        ("Unknown", ""),
        (None, ""),
    ],
)
def test_map_response_type(value, expected):
    assert map_response_type(value) == expected


def test_fetch_window():
    assert fetch_window(NOW) == (NOW - LOOKBACK, NOW + LOOKAHEAD)
    assert LOOKBACK == timedelta(hours=2)
    assert LOOKAHEAD == timedelta(hours=24)


def test_fetch_events_converts_items(settings):
    offset = timezone(timedelta(hours=3))
    items = [
        _item(
            subject="Planning",
            start=datetime(2026, 1, 9, 18, 0, tzinfo=offset),
            end=datetime(2026, 1, 9, 19, 0, tzinfo=offset),
            location="Room 7",
            my_response_type="Tentative",
            required_attendees=["a", "b"],
            optional_attendees=["c"],
        ),
        _item(subject=None, my_response_type="NoResponseReceived"),
    ]
    client, account = _client_with_items(settings, items)

    meetings = client.fetch_events(NOW - H, NOW + H)

    account.calendar.view.assert_called_once_with(start=NOW - H, end=NOW + H)
    first, second = meetings
    assert first.summary == "Planning"
    assert first.start == datetime(2026, 1, 9, 15, 0, tzinfo=timezone.utc)
    assert first.start.tzinfo == timezone.utc
    assert first.location == "Room 7"
    assert first.attendee_count == 3
    assert first.response_status == "tentative"
    assert second.summary == ""
    assert second.location is None
    assert second.attendee_count == 0
    assert second.response_status == "needsAction"


def test_fetch_events_skips_all_day_and_incomplete_items(settings):
    items = [
        _item(subject="Holiday", is_all_day=True),
        _item(subject="Broken", end=None),
        _item(subject="Kept"),
    ]
    client, _ = _client_with_items(settings, items)

    meetings = client.fetch_events(NOW - H, NOW + H)

    assert [m.summary for m in meetings] == ["Kept"]


def test_naive_datetimes_are_treated_as_utc(settings):
    naive = datetime(2026, 1, 9, 15, 0)
    client, _ = _client_with_items(settings, [_item(start=naive, end=naive + H)])

    [meeting] = client.fetch_events(NOW - H, NOW + H)

    assert meeting.start == datetime(2026, 1, 9, 15, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "error, expected",
    [
        (TransportError("connection refused"), CalendarOfflineError),
        (requests.exceptions.ConnectionError("dns"), CalendarOfflineError),
        (requests.exceptions.ReadTimeout("slow"), CalendarOfflineError),
        (UnauthorizedError("bad password"), CalendarAuthError),
        (ErrorServerBusy("busy"), CalendarFetchError),
        (RuntimeError("boom"), CalendarFetchError),
    ],
)
def test_fetch_errors_are_classified(settings, error, expected):
    client, account = _client_with_items(settings, [])
    account.calendar.view.side_effect = error

    with pytest.raises(expected) as excinfo:
        client.fetch_events(NOW - H, NOW + H)

    assert excinfo.value.__cause__ is error
    if expected is CalendarFetchError:
        assert not isinstance(excinfo.value, (CalendarOfflineError, CalendarAuthError))


def test_account_is_built_once(settings):
    with patch.object(EwsClient, "_build_account") as build:
        build.return_value.calendar.view.return_value.only.return_value.order_by.return_value.all.return_value = []
        client = EwsClient(settings)

        client.fetch_events(NOW - H, NOW + H)
        client.fetch_events(NOW - H, NOW + H)

    build.assert_called_once_with()

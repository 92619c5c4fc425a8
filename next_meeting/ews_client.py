from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import List

from exchangelib import Account, Configuration, Credentials, DELEGATE
from exchangelib.protocol import BaseProtocol, NoVerifyHTTPAdapter
from exchangelib.errors import (
    ErrorAccessDenied,
    ErrorMailboxLogonFailed,
    ErrorNonExistentMailbox,
    ResponseMessageError,
    TransportError,
    UnauthorizedError,
)
from exchangelib import NTLM, BASIC, DIGEST
import requests

from next_meeting.config import Settings
from next_meeting.models import (
    RESPONSE_ACCEPTED,
    RESPONSE_DECLINED,
    RESPONSE_NEEDS_ACTION,
    RESPONSE_TENTATIVE,
    RESPONSE_UNKNOWN,
    Meeting,
)


LOOKBACK = timedelta(hours=2)
LOOKAHEAD = timedelta(hours=24)

_AUTH_ERRORS = (
    ErrorAccessDenied,
    ErrorMailboxLogonFailed,
    ErrorNonExistentMailbox,
    UnauthorizedError,
)
_NETWORK_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)
_RESPONSE_TYPES = {
    "Accept": RESPONSE_ACCEPTED,
    "Organizer": RESPONSE_ACCEPTED,
    "Tentative": RESPONSE_TENTATIVE,
    "Decline": RESPONSE_DECLINED,
    "NoResponseReceived": RESPONSE_NEEDS_ACTION,
}


class CalendarFetchError(Exception):
    """The calendar could not be read."""


class CalendarOfflineError(CalendarFetchError):
    """The Exchange server could not be reached."""


class CalendarAuthError(CalendarFetchError):
    """The server rejected the configured credentials."""


def _to_utc_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)


def _resolve_auth_type(value: str):
    upper = value.strip().upper()
    if upper == "NTLM":
        return NTLM
    if upper == "BASIC":
        return BASIC
    if upper == "DIGEST":
        return DIGEST
    return NTLM


def is_network_error(exc: BaseException) -> bool:
    # Server-side EWS faults also derive from TransportError.
    if isinstance(exc, _NETWORK_ERRORS):
        return True
    return isinstance(exc, TransportError) and not isinstance(exc, ResponseMessageError)


def map_response_type(value: str | None) -> str:
    if not value:
        return RESPONSE_UNKNOWN
    return _RESPONSE_TYPES.get(value, RESPONSE_UNKNOWN)


def fetch_window(now: datetime) -> tuple[datetime, datetime]:
    """Events that started recently through the next day."""
    return now - LOOKBACK, now + LOOKAHEAD


class EwsClient:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._account: Account | None = None
        self._logger = logging.getLogger("next_meeting.ews")

        if not settings.ews_verify_ssl:
            BaseProtocol.HTTP_ADAPTER_CLS = NoVerifyHTTPAdapter

    def _build_account(self) -> Account:
        credentials = Credentials(
            username=self.settings.ews_username,
            password=self.settings.ews_password,
        )
        config = Configuration(
            server=self.settings.ews_server,
            credentials=credentials,
            auth_type=_resolve_auth_type(self.settings.ews_auth_type),
        )
        return Account(
            primary_smtp_address=self.settings.ews_email,
            credentials=credentials,
            autodiscover=False,
            config=config,
            access_type=DELEGATE,
        )

    def _account_or_create(self) -> Account:
        if self._account is None:
            self._account = self._build_account()
        return self._account

    def fetch_events(self, start_utc: datetime, end_utc: datetime) -> List[Meeting]:
        try:
            account = self._account_or_create()
            return self._fetch_meetings(account, start_utc, end_utc)
        except _AUTH_ERRORS as exc:
            raise CalendarAuthError(str(exc)) from exc
        except Exception as exc:
            if is_network_error(exc):
                raise CalendarOfflineError(str(exc)) from exc
            raise CalendarFetchError(str(exc)) from exc

    def _fetch_meetings(
        self, account: Account, start_utc: datetime, end_utc: datetime
    ) -> List[Meeting]:
        # view() expands recurring series into occurrences server-side.
        view = account.calendar.view(start=start_utc, end=end_utc)
        items = (
            view.only(
                "subject",
                "start",
                "end",
                "location",
                "is_all_day",
                "my_response_type",
                "required_attendees",
                "optional_attendees",
            )
            .order_by("start")
            .all()
        )
        meetings: List[Meeting] = []
        skipped = 0
        for item in items:
            if item.is_all_day:
                skipped += 1
                continue
            start = item.start
            end = item.end
            if start is None or end is None:
                skipped += 1
                continue
            attendees = len(item.required_attendees or []) + len(
                item.optional_attendees or []
            )
            meetings.append(
                Meeting(
                    summary=item.subject or "",
                    start=_to_utc_datetime(start),
                    end=_to_utc_datetime(end),
                    location=item.location or None,
                    attendee_count=attendees,
                    response_status=map_response_type(item.my_response_type),
                )
            )
        self._logger.debug(
            "Fetched %s meetings (%s skipped) between %s and %s",
            len(meetings),
            skipped,
            start_utc.isoformat(),
            end_utc.isoformat(),
        )
        return meetings

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from next_meeting.models import (
    RESPONSE_ACCEPTED,
    RESPONSE_TENTATIVE,
    Meeting,
    Status,
)


_ATTENDING = frozenset({RESPONSE_ACCEPTED, RESPONSE_TENTATIVE})


def filter_accepted(meetings: Optional[Iterable[Meeting]]) -> List[Meeting]:
    """Drop meetings the user declined or never answered."""
    if not meetings:
        return []
    return [meeting for meeting in meetings if meeting.response_status in _ATTENDING]


def _is_better_current(candidate: Meeting, best: Meeting) -> bool:
    # Most recently started wins, then the shorter one.
    if candidate.start != best.start:
        return candidate.start > best.start
    return (candidate.end - candidate.start) < (best.end - best.start)


def _is_better_next(candidate: Meeting, best: Meeting) -> bool:
    if candidate.start != best.start:
        return candidate.start < best.start
    return (candidate.end - candidate.start) < (best.end - best.start)


def compute_status(
    meetings: Optional[Iterable[Meeting]], now: datetime | None = None
) -> Status:
    """Reduce an unordered meeting list to the current and next meeting.

    A meeting is current when ``start <= now < end`` and a next candidate
    when ``now < start``. Ties keep the meeting seen first, so equal
    meetings resolve to input order.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    status = Status()
    if not meetings:
        return status

    for meeting in meetings:
        if meeting.start <= now < meeting.end:
            if status.current is None or _is_better_current(meeting, status.current):
                status.current = meeting
        elif now < meeting.start:
            if status.next is None or _is_better_next(meeting, status.next):
                status.next = meeting
    return status

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


RESPONSE_ACCEPTED = "accepted"
RESPONSE_DECLINED = "declined"
RESPONSE_TENTATIVE = "tentative"
RESPONSE_NEEDS_ACTION = "needsAction"
RESPONSE_UNKNOWN = ""


@dataclass(frozen=True)
class Meeting:
    summary: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    attendee_count: int = 0
    response_status: str = RESPONSE_UNKNOWN


@dataclass
class Status:
    """Current and next meeting at a point in time.

    Both fields reference the Meeting objects the status was computed
    from; ``None`` means there is no such meeting.
    """

    current: Optional[Meeting] = None
    next: Optional[Meeting] = None


def parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO-8601 string, got {type(value).__name__}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"Naive datetime in persisted data: {value}")
    return parsed


def meeting_to_dict(meeting: Meeting) -> Dict[str, Any]:
    return {
        "summary": meeting.summary,
        "start": meeting.start.isoformat(),
        "end": meeting.end.isoformat(),
        "location": meeting.location,
        "attendee_count": meeting.attendee_count,
        "response_status": meeting.response_status,
    }


def meeting_from_dict(data: Dict[str, Any]) -> Meeting:
    summary = data["summary"]
    if not isinstance(summary, str):
        raise TypeError("summary must be a string")
    location = data.get("location")
    if location is not None and not isinstance(location, str):
        raise TypeError("location must be a string or null")
    attendee_count = int(data.get("attendee_count", 0))
    if attendee_count < 0:
        raise ValueError("attendee_count must be non-negative")
    return Meeting(
        summary=summary,
        start=parse_datetime(data["start"]),
        end=parse_datetime(data["end"]),
        location=location,
        attendee_count=attendee_count,
        response_status=str(data.get("response_status", RESPONSE_UNKNOWN)),
    )


def status_to_dict(status: Status) -> Dict[str, Any]:
    return {
        "current": meeting_to_dict(status.current) if status.current else None,
        "next": meeting_to_dict(status.next) if status.next else None,
    }


def status_from_dict(data: Dict[str, Any]) -> Status:
    current = data["current"]
    next_meeting = data["next"]
    return Status(
        current=meeting_from_dict(current) if current is not None else None,
        next=meeting_from_dict(next_meeting) if next_meeting is not None else None,
    )

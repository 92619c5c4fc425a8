from __future__ import annotations

from datetime import datetime, timedelta
from typing import List
from zoneinfo import ZoneInfo

from next_meeting.models import Meeting, Status


_MD_V2_ESCAPE_CHARS = r"_*[]()~`>#+-=|{}.!\\"
_MD_V2_ESCAPE_TABLE = str.maketrans(
    {ch: f"\\{ch}" for ch in _MD_V2_ESCAPE_CHARS}
)
_ONE_MINUTE = timedelta(minutes=1)


def format_duration(delta: timedelta) -> str:
    if delta < timedelta(0):
        return "overdue"
    total_minutes = int(delta.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_local_dt(dt_utc: datetime, tz: ZoneInfo, with_date: bool = True) -> str:
    local_dt = dt_utc.astimezone(tz)
    if with_date:
        return local_dt.strftime("%Y-%m-%d %H:%M")
    return local_dt.strftime("%H:%M")


def render_status(status: Status, now: datetime) -> str:
    parts: List[str] = []

    if status.current is not None:
        remaining = status.current.end - now
        if remaining < _ONE_MINUTE:
            parts.append(f"🔴 {status.current.summary} finishing now")
        else:
            parts.append(
                f"🔴 {status.current.summary} ({format_duration(remaining)} left)"
            )

    if status.next is not None:
        starts_in = status.next.start - now
        if starts_in < _ONE_MINUTE:
            parts.append(f"🕐 {status.next.summary} starting now")
        else:
            parts.append(f"🕐 {status.next.summary} in {format_duration(starts_in)}")

    if not parts:
        return "📭 No meetings"
    return " │ ".join(parts)


def escape_markdown_v2(text: str) -> str:
    return text.translate(_MD_V2_ESCAPE_TABLE)


def build_notification_text(meeting: Meeting, now: datetime, tz: ZoneInfo) -> str:
    starts_in = meeting.start - now
    if starts_in < _ONE_MINUTE:
        body = "Upcoming meeting — starting now"
    else:
        body = f"Upcoming meeting — in {format_duration(starts_in)}"

    title = escape_markdown_v2(meeting.summary or "(no title)")
    lines = [
        f"🔔 *{title}*",
        escape_markdown_v2(body),
        f"Start: {escape_markdown_v2(format_local_dt(meeting.start, tz))}",
    ]
    location = (meeting.location or "").strip()
    if location:
        lines.append(f"Location: {escape_markdown_v2(location)}")
    return "\n".join(lines)

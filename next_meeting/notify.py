from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib
import logging
from pathlib import Path
import shutil
import tempfile

from next_meeting.models import Meeting, Status


NOTIFY_DIR_NAME = "next-meeting-notify"
NOTIFY_RETENTION = timedelta(hours=24)


def default_notify_dir() -> Path:
    return Path(tempfile.gettempdir()) / NOTIFY_DIR_NAME


def _rfc3339(value: datetime) -> str:
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="seconds").replace("+00:00", "Z")


def fingerprint(meeting: Meeting) -> str:
    data = f"{meeting.summary}|{_rfc3339(meeting.start)}|{_rfc3339(meeting.end)}"
    digest = hashlib.sha256(data.encode("utf-8")).digest()
    return digest[:8].hex()


class NotificationStore:
    """Marker files for meetings that already produced an alert.

    One file per meeting occurrence, named by its fingerprint. The file
    holds the meeting summary for debugging; only its existence and
    modification time matter.
    """

    def __init__(self, directory: Path | str | None = None) -> None:
        self.directory = Path(directory) if directory else default_notify_dir()
        self._logger = logging.getLogger("next_meeting.notify")

    def _record_path(self, meeting: Meeting) -> Path:
        return self.directory / fingerprint(meeting)

    def has_been_notified(self, meeting: Meeting) -> bool:
        return self._record_path(meeting).exists()

    def mark_notified(self, meeting: Meeting) -> bool:
        path = self._record_path(meeting)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(meeting.summary, encoding="utf-8")
            path.chmod(0o600)
        except OSError as exc:
            self._logger.warning("Failed to mark meeting %r as notified: %s", meeting.summary, exc)
            return False
        return True

    def should_notify(
        self, status: Status, threshold: timedelta, now: datetime | None = None
    ) -> Meeting | None:
        """Return the next meeting if an alert for it is due now."""
        meeting = status.next
        if meeting is None:
            return None
        if now is None:
            now = datetime.now(timezone.utc)
        starts_in = meeting.start - now
        if starts_in <= timedelta(0):
            return None
        if starts_in > threshold:
            return None
        if self.has_been_notified(meeting):
            return None
        return meeting

    def cleanup(
        self, retention: timedelta = NOTIFY_RETENTION, now: datetime | None = None
    ) -> int:
        if now is None:
            now = datetime.now(timezone.utc)
        cutoff = (now - retention).timestamp()
        try:
            entries = list(self.directory.iterdir())
        except OSError:
            return 0

        removed = 0
        for entry in entries:
            try:
                if entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    removed += 1
            except OSError as exc:
                self._logger.debug("Skipping notification record %s: %s", entry, exc)
                continue
        if removed:
            self._logger.info("Removed %s old notification records", removed)
        return removed

    def clear(self) -> bool:
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            return True
        except OSError as exc:
            self._logger.warning("Failed to remove %s: %s", self.directory, exc)
            return False
        return True

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
import logging
import math
import os
from pathlib import Path
import tempfile
from typing import List, Union

from next_meeting.models import (
    Meeting,
    Status,
    meeting_from_dict,
    meeting_to_dict,
    parse_datetime,
    status_from_dict,
    status_to_dict,
)


CACHE_FILE_NAME = "next-meeting-cache.json"
CACHE_TTL = timedelta(minutes=30)

KIND_MEETINGS = "meetings"
KIND_STATUS = "status"

Payload = Union[List[Meeting], Status]


def default_cache_path() -> Path:
    return Path(tempfile.gettempdir()) / CACHE_FILE_NAME


def _reject_constant(name: str) -> float:
    raise ValueError(f"Non-finite number in cache: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Non-finite number in cache: {text}")
    return value


def _encode_payload(payload: Payload) -> tuple[str, object]:
    if isinstance(payload, Status):
        return KIND_STATUS, status_to_dict(payload)
    return KIND_MEETINGS, [meeting_to_dict(meeting) for meeting in payload]


def _decode_payload(kind: object, raw: object) -> Payload:
    if kind == KIND_STATUS:
        if not isinstance(raw, dict):
            raise TypeError("status payload must be an object")
        return status_from_dict(raw)
    if kind == KIND_MEETINGS:
        if not isinstance(raw, list):
            raise TypeError("meetings payload must be a list")
        return [meeting_from_dict(item) for item in raw]
    raise ValueError(f"Unknown cache payload kind: {kind!r}")


class SnapshotCache:
    """Single timestamped snapshot on disk.

    Any problem reading the snapshot is reported as a miss (``None``);
    write failures are logged and reported as ``False``.
    """

    def __init__(self, path: Path | str | None = None, ttl: timedelta = CACHE_TTL) -> None:
        self.path = Path(path) if path else default_cache_path()
        self.ttl = ttl
        self._logger = logging.getLogger("next_meeting.cache")

    def read(self, now: datetime | None = None) -> Payload | None:
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(
                    fh, parse_constant=_reject_constant, parse_float=_finite_float
                )
        except FileNotFoundError:
            self._logger.debug("Cache miss: %s does not exist", self.path)
            return None
        except (OSError, ValueError, RecursionError) as exc:
            self._logger.debug("Cache miss: failed to read %s: %s", self.path, exc)
            return None

        try:
            if not isinstance(data, dict):
                raise TypeError("cache root must be an object")
            saved_at = parse_datetime(data["saved_at"])
            payload = _decode_payload(data.get("kind"), data["payload"])
            age = now - saved_at
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            self._logger.debug("Cache miss: malformed snapshot %s: %s", self.path, exc)
            return None

        if age > self.ttl:
            self._logger.debug("Cache miss: snapshot is %s old", age)
            return None
        return payload

    def write(self, payload: Payload, now: datetime | None = None) -> bool:
        if now is None:
            now = datetime.now(timezone.utc)
        kind, encoded = _encode_payload(payload)
        document = {"saved_at": now.isoformat(), "kind": kind, "payload": encoded}

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".next-meeting-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            self._logger.warning("Failed to write cache %s: %s", self.path, exc)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        return True

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            self._logger.warning("Failed to remove cache %s: %s", self.path, exc)
            return False
        return True

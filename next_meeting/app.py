from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import logging
import sys
from typing import Iterable, List, Sequence

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import NetworkError, TimedOut
from telegram.request import HTTPXRequest

from next_meeting.cache import SnapshotCache
from next_meeting.config import Settings, load_settings
from next_meeting.ews_client import (
    CalendarAuthError,
    CalendarFetchError,
    CalendarOfflineError,
    EwsClient,
    fetch_window,
)
from next_meeting.models import Meeting, Status
from next_meeting.notify import NotificationStore
from next_meeting.status import compute_status, filter_accepted
from next_meeting.utils import build_notification_text, render_status

TELEGRAM_CONNECT_TIMEOUT = 10
TELEGRAM_READ_TIMEOUT = 30
TELEGRAM_WRITE_TIMEOUT = 30
TELEGRAM_POOL_TIMEOUT = 30
TELEGRAM_SEND_RETRIES = 3
TELEGRAM_RETRY_BASE_DELAY = 1.0

OFFLINE_TEXT = "📡 Calendar Offline"


async def send_to_chats(
    bot: Bot,
    chat_ids: Iterable[int],
    text: str,
    parse_mode: ParseMode | None = None,
) -> int:
    """Send ``text`` to every chat; return how many chats accepted it."""
    logger = logging.getLogger("next_meeting.telegram")
    delivered = 0
    for chat_id in chat_ids:
        delay = TELEGRAM_RETRY_BASE_DELAY
        for attempt in range(TELEGRAM_SEND_RETRIES):
            try:
                await bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=parse_mode,
                    disable_web_page_preview=True,
                )
                delivered += 1
                break
            except (TimedOut, NetworkError):
                if attempt < TELEGRAM_SEND_RETRIES - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue
                logger.warning(
                    "Timed out sending message to chat %s after %s attempts",
                    chat_id,
                    TELEGRAM_SEND_RETRIES,
                )
            except Exception:
                logger.exception("Failed to send message to chat %s", chat_id)
            break
    return delivered


async def _send_notification_async(settings: Settings, text: str) -> int:
    request = HTTPXRequest(
        connect_timeout=TELEGRAM_CONNECT_TIMEOUT,
        read_timeout=TELEGRAM_READ_TIMEOUT,
        write_timeout=TELEGRAM_WRITE_TIMEOUT,
        pool_timeout=TELEGRAM_POOL_TIMEOUT,
    )
    bot = Bot(token=settings.notify_bot_token, request=request)
    await bot.initialize()
    try:
        return await send_to_chats(
            bot, settings.allowed_chat_ids, text, parse_mode=ParseMode.MARKDOWN_V2
        )
    finally:
        await bot.shutdown()


def send_notification(settings: Settings, meeting: Meeting, now: datetime) -> bool:
    text = build_notification_text(meeting, now, settings.local_timezone)
    return asyncio.run(_send_notification_async(settings, text)) > 0


def load_meetings(
    cache: SnapshotCache,
    client: EwsClient,
    now: datetime,
    use_cache: bool = True,
    only_accepted: bool = True,
) -> List[Meeting]:
    """Cached meetings if fresh, otherwise fetch and refresh the cache.

    Raises ``CalendarFetchError`` when the calendar has to be fetched and
    cannot be.
    """
    logger = logging.getLogger("next_meeting.app")
    cached = cache.read(now=now) if use_cache else None
    if isinstance(cached, Status):
        meetings = [m for m in (cached.current, cached.next) if m is not None]
    elif cached is not None:
        logger.debug("Using %s cached meetings from %s", len(cached), cache.path)
        meetings = cached
    else:
        start_utc, end_utc = fetch_window(now)
        meetings = client.fetch_events(start_utc, end_utc)
        if not cache.write(meetings, now=now):
            logger.warning("Failed to cache results, continuing without cache")

    if only_accepted:
        meetings = filter_accepted(meetings)
    return meetings


def maybe_notify(
    settings: Settings,
    store: NotificationStore,
    status: Status,
    now: datetime,
) -> Meeting | None:
    """Send an alert for the next meeting if one is due and not sent yet."""
    logger = logging.getLogger("next_meeting.app")
    store.cleanup(settings.notify_retention, now=now)
    meeting = store.should_notify(status, settings.notify_threshold, now=now)
    if meeting is None:
        return None
    if not send_notification(settings, meeting, now):
        logger.warning("Notification for %r was not delivered", meeting.summary)
        return None
    if not store.mark_notified(meeting):
        logger.warning("Meeting %r may be notified again", meeting.summary)
    return meeting


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="next-meeting",
        description="Show the current and next meeting from an Exchange calendar.",
    )
    parser.add_argument(
        "--clear-cache", action="store_true", help="Clear the calendar cache"
    )
    parser.add_argument(
        "--clear-notifications",
        action="store_true",
        help="Forget which meetings were already notified",
    )
    parser.add_argument(
        "--no-cache", action="store_true", help="Ignore the cached snapshot"
    )
    parser.add_argument(
        "--all-responses",
        action="store_true",
        help="Include declined and unanswered meetings",
    )
    parser.add_argument(
        "--notify",
        action="store_true",
        help="Send an alert when the next meeting is about to start",
    )
    return parser


def run_cli(argv: Sequence[str] | None = None, now: datetime | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(level=settings.log_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("exchangelib").setLevel(logging.WARNING)
    logger = logging.getLogger("next_meeting.app")

    cache = SnapshotCache(settings.cache_path, ttl=settings.cache_ttl)
    store = NotificationStore(settings.notify_dir)

    if args.clear_cache:
        if not cache.clear():
            print(f"Error clearing cache ({cache.path})", file=sys.stderr)
            return 1
        print(f"✓ Cache cleared ({cache.path})")
        return 0

    if args.clear_notifications:
        if not store.clear():
            print(f"Error clearing notifications ({store.directory})", file=sys.stderr)
            return 1
        print(f"✓ Notifications cleared ({store.directory})")
        return 0

    if args.notify and not settings.can_notify:
        print(
            "Configuration error: --notify requires NOTIFY_BOT_TOKEN and ALLOWED_CHAT_IDS",
            file=sys.stderr,
        )
        return 1

    if now is None:
        now = datetime.now(timezone.utc)

    client = EwsClient(settings)
    try:
        meetings = load_meetings(
            cache,
            client,
            now,
            use_cache=not args.no_cache,
            only_accepted=not args.all_responses,
        )
    except CalendarOfflineError:
        logger.warning("Exchange server unreachable", exc_info=True)
        print(OFFLINE_TEXT)
        return 0
    except CalendarAuthError:
        logger.exception("Exchange auth failure")
        return 1
    except CalendarFetchError:
        logger.exception("Exchange update failed")
        return 1

    status = compute_status(meetings, now)
    print(render_status(status, now))

    if args.notify:
        maybe_notify(settings, store, status, now)
    return 0


def run() -> None:
    try:
        sys.exit(run_cli())
    except KeyboardInterrupt:
        pass

"""Rate-limit and transient-connection handling for the memento loop.

Classification is purely textual. Reset times are recovered best-effort
from the error message; when nothing parses, callers fall back to the
attempt-indexed backoff tables.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import anyio

MAX_WAIT_SECONDS = 4 * 60 * 60
BACKOFF_DELAYS = (60, 300, 1800, 7200, 14400)
CONNECTION_RETRY_DELAYS = (5, 15, 30, 60, 120)
RESET_GRACE_SECONDS = 30

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "usage limit", "limit reached", "you've hit your limit")

_RESETS_DATE_RE = re.compile(
    r"resets?\s+([A-Za-z]+\s+\d{1,2},?\s+\d{1,2}(?::\d{2})?\s*(?:am|pm)?)", re.IGNORECASE
)
_RESETS_IN_RE = re.compile(r"resets?\s+in\s+(\d+)\s*(hours?|minutes?|mins?|hrs?|seconds?|secs?)", re.IGNORECASE)
_RETRY_AFTER_RE = re.compile(r"retry\s+after\s+(\d+)\s*(?:seconds?|secs?)?", re.IGNORECASE)
_ISO_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z?)")

_FUZZY_FORMATS = (
    "%b %d %I:%M %p %Y",
    "%b %d %I %p %Y",
    "%B %d %I:%M %p %Y",
    "%B %d %I %p %Y",
    "%b %d %H:%M %Y",
    "%B %d %H:%M %Y",
    "%b %d %H %Y",
    "%B %d %H %Y",
)


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """What could be learned about a rate limit from an error message."""

    is_rate_limited: bool
    reset_time: datetime | None = None
    reset_time_raw: str | None = None
    seconds_until_reset: int | None = None


def _now() -> datetime:
    return datetime.now().astimezone()


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(0, int((moment - now).total_seconds()))


def _parse_with_year(text: str, year: int) -> datetime | None:
    for fmt in _FUZZY_FORMATS:
        try:
            return datetime.strptime(f"{text} {year}", fmt).astimezone()
        except ValueError:
            continue
    return None


def parse_fuzzy_datetime(text: str, now: datetime | None = None) -> datetime | None:
    """Parse phrases like ``"Feb 4, 9pm"`` as local time.

    The current year is assumed. A moment already in the past is rolled a
    day forward, and if that is still past, to the same date next year.
    The result is approximate across year and timezone boundaries.
    """
    now = now or _now()
    normalized = re.sub(r"(\d)\s*(am|pm)", r"\1 \2", text.strip().replace(",", ""), flags=re.IGNORECASE)
    normalized = " ".join(normalized.split())

    parsed = _parse_with_year(normalized, now.year) or _parse_with_year(normalized, now.year + 1)
    if parsed is None:
        return None
    if parsed < now:
        parsed += timedelta(days=1)
        if parsed < now:
            parsed = _parse_with_year(normalized, now.year + 1)
    return parsed


def _unit_seconds(unit: str) -> int:
    unit = unit.lower()
    if unit.startswith(("hour", "hr")):
        return 3600
    if unit.startswith("min"):
        return 60
    return 1


def is_rate_limit_message(message: str) -> bool:
    lower = message.lower()
    return any(marker in lower for marker in _RATE_LIMIT_MARKERS)


def parse_rate_limit_error(message: str, now: datetime | None = None) -> RateLimitInfo:
    """Classify *message* and try to recover when the limit resets.

    Recognised reset phrases, in order: ``"resets Feb 4, 9pm"``,
    ``"resets in 2 hours"``, ``"retry after 3600 seconds"``, and an ISO-8601
    timestamp.
    """
    if not is_rate_limit_message(message):
        return RateLimitInfo(is_rate_limited=False)

    now = now or _now()

    if match := _RESETS_DATE_RE.search(message):
        raw = match.group(1)
        if (parsed := parse_fuzzy_datetime(raw, now)) is not None:
            return RateLimitInfo(True, parsed, raw, _seconds_until(parsed, now))
        fallback_raw: str | None = raw
    else:
        fallback_raw = None

    if match := _RESETS_IN_RE.search(message):
        amount, unit = int(match.group(1)), match.group(2).lower()
        seconds = amount * _unit_seconds(unit)
        return RateLimitInfo(True, now + timedelta(seconds=seconds), f"in {amount} {unit}", seconds)

    if match := _RETRY_AFTER_RE.search(message):
        seconds = int(match.group(1))
        return RateLimitInfo(True, now + timedelta(seconds=seconds), f"{seconds} seconds", seconds)

    if match := _ISO_RE.search(message):
        raw = match.group(1)
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return RateLimitInfo(True, parsed, raw, _seconds_until(parsed, now))

    return RateLimitInfo(is_rate_limited=True, reset_time_raw=fallback_raw)


def is_transient_connection_error(message: str) -> bool:
    """Network-level failures worth a quick retry."""
    lower = message.lower()
    return (
        any(
            marker in lower
            for marker in (
                "econnreset",
                "etimedout",
                "econnrefused",
                "epipe",
                "ehostunreach",
                "enetunreach",
                "socket hang up",
                "apiconnectiontimeouterror",
                "apiconnectionerror",
                "fetch failed",
                "aborted",
            )
        )
        or ("connection" in lower and "timeout" in lower)
        or ("network" in lower and "error" in lower)
    )


def get_backoff_delay(attempt: int) -> int:
    return BACKOFF_DELAYS[min(max(attempt, 0), len(BACKOFF_DELAYS) - 1)]


def get_connection_retry_delay(attempt: int) -> int:
    return CONNECTION_RETRY_DELAYS[min(max(attempt, 0), len(CONNECTION_RETRY_DELAYS) - 1)]


def compute_wait_seconds(info: RateLimitInfo, attempt: int) -> int:
    """Seconds to wait before retrying a rate-limited call.

    A parsed reset time wins (plus a short grace period); otherwise the
    backoff table applies. Never more than :data:`MAX_WAIT_SECONDS`.
    """
    if info.seconds_until_reset:
        return min(info.seconds_until_reset + RESET_GRACE_SECONDS, MAX_WAIT_SECONDS)
    return min(get_backoff_delay(attempt), MAX_WAIT_SECONDS)


def format_duration(seconds: int) -> str:
    """``45s``, ``2m 5s``, ``1h 30m`` style durations."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        mins, secs = divmod(seconds, 60)
        return f"{mins}m {secs}s" if secs else f"{mins}m"
    hours, rest = divmod(seconds, 3600)
    mins = rest // 60
    return f"{hours}h {mins}m" if mins else f"{hours}h"


async def wait_with_countdown(
    seconds: int,
    on_tick: Callable[[int, str], None] | None = None,
) -> None:
    """Sleep *seconds*, calling ``on_tick(remaining, formatted)`` once a second."""
    remaining = int(seconds)
    while remaining > 0:
        if on_tick is not None:
            on_tick(remaining, format_duration(remaining))
        await anyio.sleep(1)
        remaining -= 1

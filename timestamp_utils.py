#!/usr/bin/env python3
"""
seher - Timestamp Normalization Module
======================================
Converts the epochs each browser uses on disk into unix seconds, and parses
the ISO-8601 reset times the providers report.
"""

from datetime import datetime, timezone
from typing import Any, Optional


# Seconds between 1601-01-01 (WebKit/NT epoch) and 1970-01-01
WEBKIT_EPOCH_OFFSET = 11644473600

# Seconds between 1970-01-01 and 2001-01-01 (Mac absolute time)
MAC_EPOCH_OFFSET = 978307200


def webkit_to_unix(value: Any) -> float:
    """Convert Chromium microseconds-since-1601 to unix seconds.

    Args:
        value: ``creation_utc`` / ``expires_utc`` column value.

    Returns:
        Unix seconds, or 0.0 for a zero/missing value (session cookie).
    """
    if not value:
        return 0.0
    seconds = int(value) / 1000000 - WEBKIT_EPOCH_OFFSET
    return seconds if seconds > 0 else 0.0


def unix_to_webkit(seconds: float) -> int:
    """Inverse of :func:`webkit_to_unix`."""
    if seconds <= 0:
        return 0
    return int((seconds + WEBKIT_EPOCH_OFFSET) * 1000000)


def firefox_to_unix(value: Any, microseconds: bool = False) -> float:
    """Convert a ``moz_cookies`` timestamp to unix seconds.

    Firefox stores ``expiry`` in seconds (milliseconds in newer builds) and
    ``creationTime`` in microseconds.

    Args:
        value: Column value.
        microseconds: True for ``creationTime``/``lastAccessed``.

    Returns:
        Unix seconds, or 0.0 for a zero/missing value.
    """
    if not value:
        return 0.0
    ts = float(value)
    if microseconds:
        return ts / 1000000
    # Firefox 106+ writes expiry in milliseconds
    if ts > 1e11:
        return ts / 1000
    return ts


def mac_absolute_to_unix(value: float) -> float:
    """Convert Safari's seconds-since-2001 doubles to unix seconds."""
    if not value:
        return 0.0
    return value + MAC_EPOCH_OFFSET


def parse_iso8601(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp into an aware UTC datetime.

    Accepts a trailing ``Z`` and fractional seconds of any precision.

    Returns:
        The datetime, or None if the value is missing or unparsable.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip().replace("Z", "+00:00")
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_reset_date(value: Any) -> Optional[datetime]:
    """Parse a ``YYYY-MM-DD`` reset date as midnight UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        day = datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError:
        return None
    return day.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp_for_display(moment: datetime) -> str:
    """Format a reset time for status output.

    Example:
        "2025-12-15 11:30:00 (UTC: 2025-12-15T10:30:00Z)"
    """
    utc = moment.astimezone(timezone.utc)
    local = moment.astimezone()
    return f"{local.strftime('%Y-%m-%d %H:%M:%S')} (UTC: {utc.strftime('%Y-%m-%dT%H:%M:%SZ')})"


def format_duration(seconds: float) -> str:
    """Render a wait like ``2h 05m 10s``."""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"

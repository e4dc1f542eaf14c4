"""Utility functions for EngagementDB.

This module provides common helper functions for datetime handling,
REST filter construction, and data transformation.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]

T = TypeVar("T")


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None if input is None

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00Z")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO8601 string with 'Z' suffix.

    Example:
        >>> utc_now_iso().endswith('Z')
        True
    """
    return format_iso(utc_now())  # type: ignore[return-value]


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as fixed-width ISO8601 UTC string with 'Z' suffix.

    Microseconds are always included so stored timestamps sort lexically.
    Naive datetimes are taken to be UTC.

    Example:
        >>> from datetime import UTC
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00.000000Z'
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def redact_token(token: str | None) -> str:
    """Redact sensitive tokens for safe logging.

    Example:
        >>> redact_token("abcdefghijklmnop")
        'abcdefgh...mnop'
        >>> redact_token("short")
        '***'
        >>> redact_token(None)
        'None'
    """
    if not token:
        return "None"
    return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


def eq_filter(value: Any) -> str:
    """Build a REST equality filter value.

    Example:
        >>> eq_filter(42)
        'eq.42'
    """
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def in_filter(values: Iterable[Any]) -> str:
    """Build a REST set-membership filter value.

    Strings containing reserved characters are double-quoted.

    Example:
        >>> in_filter([1, 2, 3])
        'in.(1,2,3)'
        >>> in_filter(["a,b", "c"])
        'in.("a,b",c)'
    """
    parts = []
    for value in values:
        text = str(value)
        if any(ch in text for ch in ',()"'):
            text = '"' + text.replace('"', '\\"') + '"'
        parts.append(text)
    return f"in.({','.join(parts)})"


def parse_content_range(header: str | None) -> int | None:
    """Extract the total row count from a Content-Range header.

    Example:
        >>> parse_content_range("0-24/3573")
        3573
        >>> parse_content_range("*/0")
        0
        >>> parse_content_range("0-24/*") is None
        True
    """
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        return None
    return int(total)


def dedupe(items: Iterable[T]) -> list[T]:
    """Drop repeated items, keeping first-seen order.

    Example:
        >>> dedupe([3, 1, 3, 2, 1])
        [3, 1, 2]
    """
    return list(dict.fromkeys(items))


def chunk_list(items: list[Any], chunk_size: int) -> list[list[Any]]:
    """Split list into chunks of specified size.

    Example:
        >>> chunk_list([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]

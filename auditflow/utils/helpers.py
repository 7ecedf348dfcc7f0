"""Shared utility functions for the workflow services and blueprints.

utcnow / ensure_utc:  timezone-aware timestamps (SQLite hands back naive values)
parse_datetime:       ISO input → aware UTC datetime, raises ValueError on bad input
local_to_utc:         wall-clock time in an IANA zone → aware UTC datetime
strip_html:           rich-text editor output → plain text
"""
import logging
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from markupsafe import Markup

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite; convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value) -> datetime | None:
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty input. Naive input is taken as UTC. A trailing
    ``Z`` is accepted.

    Raises:
        ValueError: unparseable input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(f"Invalid date/time {value!r}. Use ISO 8601.") from exc


def local_to_utc(local_value: str, tz_name: str) -> datetime:
    """Interpret ``2025-08-12T09:30`` as wall-clock time in ``tz_name``.

    Raises:
        ValueError: unknown zone or unparseable time.
    """
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone {tz_name!r}") from exc
    try:
        naive = datetime.fromisoformat(str(local_value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid local date/time {local_value!r}") from exc
    if naive.tzinfo is not None:
        return naive.astimezone(timezone.utc)
    return naive.replace(tzinfo=zone).astimezone(timezone.utc)


def strip_html(value) -> str:
    """Drop markup and decode entities; non-strings pass through ``str``."""
    if value is None:
        return ""
    return Markup(str(value)).striptags()


def strip_html_list(values) -> list[str]:
    """``strip_html`` over a list, dropping items that end up empty."""
    if not isinstance(values, (list, tuple)):
        return []
    cleaned = (strip_html(v) for v in values)
    return [v for v in cleaned if v]

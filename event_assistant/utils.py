from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional
import re

from .config import ISO_DATE_RE, ISO_DATETIME_RE

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def normalize_text(text: str) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def sanitize_text_field(value: Any) -> str:
    """Single-line text input: tags, control characters and extra whitespace removed."""
    if not isinstance(value, str):
        return ""
    cleaned = _TAG_RE.sub("", value)
    cleaned = _CONTROL_RE.sub(" ", cleaned)
    return normalize_text(cleaned)


def parse_iso_minute(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not ISO_DATETIME_RE.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%dT%H:%M")
    except ValueError:
        return None


def format_iso_minute(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M")


def parse_iso_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not ISO_DATE_RE.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def event_duration(start: Optional[str], end: Optional[str]) -> Optional[timedelta]:
    start_dt = parse_iso_minute(start)
    end_dt = parse_iso_minute(end)
    if start_dt is None or end_dt is None or end_dt < start_dt:
        return None
    return end_dt - start_dt


def event_within_range(start: Optional[str],
                       range_start: Optional[date],
                       range_end: Optional[date]) -> bool:
    start_dt = parse_iso_minute(start)
    if start_dt is None:
        return False
    if range_start is not None and start_dt.date() < range_start:
        return False
    if range_end is not None and start_dt.date() > range_end:
        return False
    return True


def display_datetime(value: Optional[str], all_day: bool = False) -> str:
    parsed = parse_iso_minute(value)
    if parsed is None:
        return value or "(no time)"
    if all_day:
        return parsed.strftime("%Y-%m-%d")
    return parsed.strftime("%Y-%m-%d %H:%M")

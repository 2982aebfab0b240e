from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
import re
from zoneinfo import ZoneInfo

from ..config import TIME_OF_DAY_RE

_DATE_ONLY_RE_NORM = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_12H_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\.?$", re.IGNORECASE)


def normalize_input_as_text(value: Optional[str]) -> str:
  if not isinstance(value, str):
    return ""
  return value.strip()


def resolve_timezone(requested_timezone: Optional[str], default_timezone: str) -> str:
  for candidate in (requested_timezone, default_timezone):
    if not isinstance(candidate, str):
      continue
    cleaned = candidate.strip()
    if not cleaned:
      continue
    try:
      ZoneInfo(cleaned)
      return cleaned
    except Exception:
      continue
  return "UTC"


def now_in_timezone(timezone_name: str) -> datetime:
  return datetime.now(ZoneInfo(timezone_name))


def coerce_iso_minute(value: Any, timezone_name: str) -> Optional[str]:
  """Any ISO-ish datetime -> "YYYY-MM-DDTHH:MM" wall-clock time in ``timezone_name``."""
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  # Date-only means the time is missing; never upgrade silently to T00:00.
  if _DATE_ONLY_RE_NORM.match(raw):
    return None
  # Models sometimes emit "13: 00: 00+09: 00"
  raw = re.sub(r'\s*:\s*', ':', raw)

  parsed: Optional[datetime] = None
  try:
    parsed = datetime.strptime(raw, "%Y-%m-%dT%H:%M")
  except ValueError:
    parsed = None

  if parsed is None:
    candidate = raw.replace("Z", "+00:00").replace(" ", "T", 1)
    try:
      parsed = datetime.fromisoformat(candidate)
    except ValueError:
      parsed = None

  if parsed is None:
    return None

  tz = ZoneInfo(timezone_name)
  if parsed.tzinfo is not None:
    parsed = parsed.astimezone(tz)
  return parsed.strftime("%Y-%m-%dT%H:%M")


def try_parse_date(value: Any) -> Optional[date]:
  if not isinstance(value, str):
    return None
  cleaned = value.strip()
  if not cleaned:
    return None
  # "2026-02-01T00:00:00Z" -> "2026-02-01"
  if "T" in cleaned:
    cleaned = cleaned.split("T")[0]
  try:
    return datetime.strptime(cleaned, "%Y-%m-%d").date()
  except ValueError:
    return None


def coerce_time_of_day(value: Any) -> Optional[str]:
  """Accepts "8pm", "20:00" or "20:00:00"; returns "HH:MM"."""
  if not isinstance(value, str):
    return None
  raw = value.strip()
  if not raw:
    return None
  if re.match(r"^\d{1,2}:\d{2}:\d{2}$", raw):
    raw = raw.rsplit(":", 1)[0]
  if re.match(r"^\d:\d{2}$", raw):
    raw = f"0{raw}"
  if TIME_OF_DAY_RE.match(raw):
    return raw
  match = _TIME_12H_RE.match(raw)
  if match:
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if not 1 <= hour <= 12 or minute > 59:
      return None
    if match.group(3).lower() == "p" and hour != 12:
      hour += 12
    if match.group(3).lower() == "a" and hour == 12:
      hour = 0
    return f"{hour:02d}:{minute:02d}"
  return None

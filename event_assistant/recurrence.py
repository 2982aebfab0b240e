from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
import calendar

from zoneinfo import ZoneInfo

from .models import RecurrenceRule
from .utils import event_duration, format_iso_minute, parse_iso_date, parse_iso_minute

# Stop expanding open-ended rules after this many days even if the limit is not hit.
_EXPANSION_HORIZON_DAYS = 366 * 50

_RRULE_INDEX_TO_WEEKDAY = ["MO", "TU", "WE", "TH", "FR", "SA", "SU"]
_WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday",
                  "Saturday", "Sunday"]
_ORDINALS = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", -1: "last"}
_FREQ_NOUNS = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}
_FREQ_ADVERBS = {"DAILY": "daily", "WEEKLY": "weekly", "MONTHLY": "monthly",
                 "YEARLY": "yearly"}


def invalid_rule_fields(rule: RecurrenceRule) -> List[str]:
    problems: List[str] = []
    if rule.interval < 1:
        problems.append("interval")
    if any(not 0 <= w <= 6 for w in rule.byweekday or []):
        problems.append("byweekday")
    if any(not (d == -1 or 1 <= d <= 31) for d in rule.bymonthday or []):
        problems.append("bymonthday")
    if any(not 1 <= m <= 12 for m in rule.bymonth or []):
        problems.append("bymonth")
    if rule.bysetpos is not None:
        if not (rule.bysetpos == -1 or 1 <= rule.bysetpos <= 5):
            problems.append("bysetpos")
        elif not rule.byweekday:
            problems.append("bysetpos")
    if rule.count is not None and rule.until is not None:
        problems.append("count")
    # Fields the expansion does not honour for this frequency.
    if rule.freq in ("DAILY", "WEEKLY"):
        if rule.bymonthday and "bymonthday" not in problems:
            problems.append("bymonthday")
        if rule.bysetpos is not None and "bysetpos" not in problems:
            problems.append("bysetpos")
    if rule.freq == "WEEKLY" and rule.bymonth and "bymonth" not in problems:
        problems.append("bymonth")
    return problems


def _month_last_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _nth_weekday_in_month(year: int,
                          month: int,
                          weekday: int,
                          pos: int) -> Optional[date]:
    if pos == 0:
        return None
    last_day = _month_last_day(year, month)
    if pos > 0:
        first = date(year, month, 1)
        offset = (weekday - first.weekday()) % 7
        day = 1 + offset + (pos - 1) * 7
        if 1 <= day <= last_day:
            return date(year, month, day)
        return None

    last = date(year, month, last_day)
    offset = (last.weekday() - weekday) % 7
    day = last_day - offset + (pos + 1) * 7
    if 1 <= day <= last_day:
        return date(year, month, day)
    return None


def _monthly_candidates(year: int,
                        month: int,
                        rule: RecurrenceRule,
                        default_day: int) -> List[date]:
    bymonthday = rule.bymonthday or []
    byweekday = rule.byweekday or []
    last_day = _month_last_day(year, month)
    results: List[date] = []

    for d in bymonthday:
        if d == -1:
            day = last_day
        elif 1 <= d <= last_day:
            day = d
        else:
            continue
        results.append(date(year, month, day))

    if byweekday:
        if rule.bysetpos is not None:
            for w in byweekday:
                dt = _nth_weekday_in_month(year, month, w, int(rule.bysetpos))
                if dt:
                    results.append(dt)
        else:
            for w in byweekday:
                dt = _nth_weekday_in_month(year, month, w, 1)
                while dt and dt.month == month:
                    results.append(dt)
                    dt = dt + timedelta(days=7)

    # Only fall back to the start day when the rule names no day at all;
    # "5th Friday" simply skips months without one.
    if not results and not bymonthday and not byweekday:
        if default_day <= last_day:
            results.append(date(year, month, default_day))

    return sorted(set(results))


def _add_months(year: int, month: int, delta: int) -> Tuple[int, int]:
    total = (year * 12 + (month - 1)) + delta
    new_year = total // 12
    new_month = total % 12 + 1
    return new_year, new_month


def collect_occurrence_dates(rule: RecurrenceRule,
                             start_date: date,
                             limit: int) -> List[date]:
    """Expand ``rule`` from ``start_date`` into at most ``limit`` dates.

    The rule's own count/until bound the expansion; ``limit`` is a hard stop
    used by callers to detect rules that would produce more than they allow.
    """
    interval = max(int(rule.interval or 1), 1)
    until_date = parse_iso_date(rule.until)
    count = rule.count if isinstance(rule.count, int) and rule.count > 0 else None

    max_results = max(int(limit), 0)
    if count is not None:
        max_results = min(max_results, count)
    limit_date = start_date + timedelta(days=_EXPANSION_HORIZON_DAYS)
    if until_date is not None and until_date < limit_date:
        limit_date = until_date

    results: List[date] = []
    if max_results == 0 or limit_date < start_date:
        return results

    def push_date(d: date) -> bool:
        if d < start_date or d > limit_date:
            return False
        results.append(d)
        return len(results) >= max_results

    if rule.freq == "DAILY":
        weekdays = {w for w in rule.byweekday or [] if 0 <= w <= 6}
        months = {m for m in rule.bymonth or [] if 1 <= m <= 12}
        cur = start_date
        while cur <= limit_date:
            wanted = ((not weekdays or cur.weekday() in weekdays) and
                      (not months or cur.month in months))
            if wanted and push_date(cur):
                break
            cur += timedelta(days=interval)

    elif rule.freq == "WEEKLY":
        weekdays = sorted({w for w in rule.byweekday or [] if 0 <= w <= 6})
        if not weekdays:
            weekdays = [start_date.weekday()]

        base = start_date - timedelta(days=start_date.weekday())
        week_index = 0
        while True:
            week_start = base + timedelta(days=week_index * interval * 7)
            if week_start > limit_date:
                break
            for w in weekdays:
                if push_date(week_start + timedelta(days=w)):
                    return results
            week_index += 1

    elif rule.freq == "MONTHLY":
        months = {m for m in rule.bymonth or [] if 1 <= m <= 12}
        month_index = 0
        while True:
            year, month = _add_months(start_date.year, start_date.month,
                                      month_index * interval)
            if date(year, month, 1) > limit_date:
                break
            if months and month not in months:
                month_index += 1
                continue
            for occ in _monthly_candidates(year, month, rule, start_date.day):
                if push_date(occ):
                    return results
            month_index += 1

    elif rule.freq == "YEARLY":
        months = sorted({m for m in rule.bymonth or [] if 1 <= m <= 12})
        if not months:
            months = [start_date.month]

        year_index = 0
        while True:
            year = start_date.year + year_index * interval
            if date(year, 1, 1) > limit_date:
                break
            for month in months:
                for occ in _monthly_candidates(year, month, rule, start_date.day):
                    if push_date(occ):
                        return results
            year_index += 1

    return results


def count_occurrences(rule: RecurrenceRule, start_date: date, limit: int) -> int:
    return len(collect_occurrence_dates(rule, start_date, limit))


def first_occurrence_on_or_after(rule: RecurrenceRule,
                                 start_date: date) -> Optional[date]:
    dates = collect_occurrence_dates(rule, start_date, 1)
    return dates[0] if dates else None


def expand_occurrences(start: str,
                       end: Optional[str],
                       rule: RecurrenceRule,
                       limit: int) -> List[Tuple[str, Optional[str]]]:
    """(start, end) pairs for every occurrence, keeping time of day and duration."""
    start_dt = parse_iso_minute(start)
    if start_dt is None:
        return []
    duration = event_duration(start, end)
    occurrences: List[Tuple[str, Optional[str]]] = []
    for occ_date in collect_occurrence_dates(rule, start_dt.date(), limit):
        occ_start = datetime.combine(occ_date, start_dt.time())
        occ_end = occ_start + duration if duration is not None else None
        occurrences.append((format_iso_minute(occ_start),
                            format_iso_minute(occ_end) if occ_end else None))
    return occurrences


def _format_rrule_until(until_date: date,
                        time_str: Optional[str],
                        tz_name: str) -> str:
    """UNTIL is UTC with a Z suffix for timed events, YYYYMMDD for all-day ones."""
    if time_str:
        hh, mm = [int(x) for x in time_str.split(":")]
        local_dt = datetime(until_date.year, until_date.month, until_date.day,
                            hh, mm, 0, tzinfo=ZoneInfo(tz_name))
        utc_dt = local_dt.astimezone(ZoneInfo("UTC"))
        return utc_dt.strftime("%Y%m%dT%H%M%SZ")
    return until_date.strftime("%Y%m%d")


def to_rrule(rule: RecurrenceRule,
             time_str: Optional[str] = None,
             tz_name: str = "UTC") -> str:
    parts = [f"FREQ={rule.freq}"]
    if rule.interval and rule.interval != 1:
        parts.append(f"INTERVAL={rule.interval}")

    if rule.byweekday:
        weekdays = [_RRULE_INDEX_TO_WEEKDAY[w] for w in rule.byweekday if 0 <= w <= 6]
        if weekdays:
            parts.append("BYDAY=" + ",".join(weekdays))
    if rule.bymonthday:
        parts.append("BYMONTHDAY=" + ",".join(str(d) for d in rule.bymonthday))
    if rule.bymonth:
        parts.append("BYMONTH=" + ",".join(str(m) for m in rule.bymonth))
    if rule.bysetpos:
        parts.append(f"BYSETPOS={rule.bysetpos}")

    until_date = parse_iso_date(rule.until)
    if until_date:
        parts.append("UNTIL=" + _format_rrule_until(until_date, time_str, tz_name))
    elif rule.count:
        parts.append(f"COUNT={rule.count}")
    return ";".join(parts)


def describe_rule(rule: RecurrenceRule) -> str:
    """Plain-English rendering, e.g. "monthly on the 3rd Tuesday, 6 times"."""
    if rule.interval and rule.interval > 1:
        text = f"every {rule.interval} {_FREQ_NOUNS[rule.freq]}s"
    else:
        text = _FREQ_ADVERBS[rule.freq]

    weekday_names = [_WEEKDAY_NAMES[w] for w in rule.byweekday or [] if 0 <= w <= 6]
    if weekday_names and rule.bysetpos is not None:
        ordinal = _ORDINALS.get(rule.bysetpos, str(rule.bysetpos))
        text += f" on the {ordinal} " + " and ".join(weekday_names)
    elif weekday_names:
        text += " on " + ", ".join(weekday_names)
    elif rule.bymonthday:
        days = ["last day" if d == -1 else f"day {d}" for d in rule.bymonthday]
        text += " on " + ", ".join(days)

    if rule.bymonth:
        text += " in " + ", ".join(calendar.month_name[m] for m in rule.bymonth
                                   if 1 <= m <= 12)
    if rule.count:
        text += f", {rule.count} times"
    elif rule.until:
        text += f", until {rule.until}"
    return text

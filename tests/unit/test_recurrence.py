"""Tests for recurrence expansion and RRULE rendering."""

from datetime import date

from event_assistant.models import RecurrenceRule
from event_assistant.recurrence import (collect_occurrence_dates, count_occurrences,
                                        describe_rule, expand_occurrences,
                                        first_occurrence_on_or_after,
                                        invalid_rule_fields, to_rrule)


def _third_tuesday(count=6):
    return RecurrenceRule(freq="MONTHLY", byweekday=[1], bysetpos=3, count=count)


def test_third_tuesday_for_six_months():
    dates = collect_occurrence_dates(_third_tuesday(), date(2026, 3, 1), 100)
    assert dates == [
        date(2026, 3, 17),
        date(2026, 4, 21),
        date(2026, 5, 19),
        date(2026, 6, 16),
        date(2026, 7, 21),
        date(2026, 8, 18),
    ]


def test_last_friday_of_month():
    rule = RecurrenceRule(freq="MONTHLY", byweekday=[4], bysetpos=-1, count=2)
    assert collect_occurrence_dates(rule, date(2026, 1, 1), 10) == [
        date(2026, 1, 30),
        date(2026, 2, 27),
    ]


def test_weekly_on_two_days():
    rule = RecurrenceRule(freq="WEEKLY", byweekday=[0, 2], count=4)
    assert collect_occurrence_dates(rule, date(2026, 3, 2), 10) == [
        date(2026, 3, 2),
        date(2026, 3, 4),
        date(2026, 3, 9),
        date(2026, 3, 11),
    ]


def test_until_is_inclusive():
    rule = RecurrenceRule(freq="DAILY", until="2026-03-05")
    assert count_occurrences(rule, date(2026, 3, 1), 100) == 5


def test_limit_stops_open_rule():
    rule = RecurrenceRule(freq="DAILY")
    assert count_occurrences(rule, date(2026, 3, 1), 53) == 53


def test_first_occurrence_moves_forward():
    assert first_occurrence_on_or_after(_third_tuesday(), date(2026, 3, 18)) == date(2026, 4, 21)


def test_expand_keeps_time_and_duration():
    pairs = expand_occurrences("2026-03-17T19:00", "2026-03-17T21:00", _third_tuesday(2), 10)
    assert pairs == [
        ("2026-03-17T19:00", "2026-03-17T21:00"),
        ("2026-04-21T19:00", "2026-04-21T21:00"),
    ]


def test_invalid_rule_fields():
    rule = RecurrenceRule(freq="MONTHLY", byweekday=[9], bysetpos=7, count=3)
    assert invalid_rule_fields(rule) == ["byweekday", "bysetpos"]
    assert invalid_rule_fields(RecurrenceRule(freq="DAILY", count=2, until="2026-01-01")) == ["count"]
    assert invalid_rule_fields(_third_tuesday()) == []


def test_to_rrule_and_description():
    assert to_rrule(_third_tuesday()) == "FREQ=MONTHLY;BYDAY=TU;BYSETPOS=3;COUNT=6"
    assert describe_rule(_third_tuesday()) == "monthly on the 3rd Tuesday, 6 times"


def test_to_rrule_until_in_utc():
    rule = RecurrenceRule(freq="WEEKLY", interval=2, until="2026-06-30")
    assert to_rrule(rule, "19:00", "America/New_York") == (
        "FREQ=WEEKLY;INTERVAL=2;UNTIL=20260630T230000Z")


def test_daily_on_weekdays_skips_weekend():
    rule = RecurrenceRule(freq="DAILY", byweekday=[0, 1, 2, 3, 4], count=7)
    dates = collect_occurrence_dates(rule, date(2026, 3, 2), 100)
    assert [d.weekday() for d in dates] == [0, 1, 2, 3, 4, 0, 1]
    assert dates[-1] == date(2026, 3, 10)
    assert to_rrule(rule) == "FREQ=DAILY;BYDAY=MO,TU,WE,TH,FR;COUNT=7"


def test_monthly_limited_to_named_months():
    rule = RecurrenceRule(freq="MONTHLY", bymonthday=[1], bymonth=[6, 7, 8], count=4)
    assert collect_occurrence_dates(rule, date(2026, 3, 1), 100) == [
        date(2026, 6, 1),
        date(2026, 7, 1),
        date(2026, 8, 1),
        date(2027, 6, 1),
    ]


def test_unsupported_fields_for_frequency():
    assert invalid_rule_fields(
        RecurrenceRule(freq="WEEKLY", byweekday=[1], bysetpos=2, count=3)) == ["bysetpos"]
    assert invalid_rule_fields(
        RecurrenceRule(freq="DAILY", bymonthday=[15], count=3)) == ["bymonthday"]
    assert invalid_rule_fields(
        RecurrenceRule(freq="WEEKLY", bymonth=[6], count=3)) == ["bymonth"]

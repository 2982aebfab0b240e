from __future__ import annotations

import logging
from typing import List, Optional, Set

from ..config import DEFAULT_MAX_RECURRENCE_OCCURRENCES
from ..recurrence import count_occurrences, invalid_rule_fields
from ..utils import parse_iso_date, parse_iso_minute
from .schemas import (CreateEventIntent, CreateVenueIntent, EventFilter, Intent,
                      ListEventsIntent, UpdateEventIntent, ValidationResult)

logger = logging.getLogger(__name__)


def _reject(reason, field: Optional[str], detail: str) -> ValidationResult:
  return ValidationResult.reject(reason, field, detail)


def _check_unresolved(intent: Intent) -> Optional[ValidationResult]:
  if intent.unresolved_fields:
    field = intent.unresolved_fields[0]
    return _reject("ambiguous_date", field,
                   f"Could not resolve '{field}' to an exact date or time.")
  return None


def _check_filter_range(event_filter: EventFilter) -> Optional[ValidationResult]:
  start = parse_iso_date(event_filter.start_date)
  end = parse_iso_date(event_filter.end_date)
  if event_filter.start_date and start is None:
    return _reject("invalid_value", "filter.start_date",
                   f"'{event_filter.start_date}' is not a YYYY-MM-DD date.")
  if event_filter.end_date and end is None:
    return _reject("invalid_value", "filter.end_date",
                   f"'{event_filter.end_date}' is not a YYYY-MM-DD date.")
  if start and end and end < start:
    return _reject("invalid_value", "filter.end_date",
                   "The date range ends before it starts.")
  return None


class IntentValidator:
  """Shape checks only. Existence of events and venues is left to the executor."""

  def __init__(self,
               max_recurrence_occurrences: int = DEFAULT_MAX_RECURRENCE_OCCURRENCES):
    self.max_recurrence_occurrences = max_recurrence_occurrences

  def validate(self, intent: Intent,
               known_refs: Optional[Set[str]] = None) -> ValidationResult:
    """Validate one intent.

    ``known_refs`` maps venue references to create_venue intents that appear
    earlier in the same prompt, whatever their own validation outcome.
    """
    known = known_refs or set()
    unresolved = _check_unresolved(intent)
    if unresolved is not None:
      return unresolved

    if isinstance(intent, CreateEventIntent):
      return self._validate_create_event(intent, known)
    if isinstance(intent, UpdateEventIntent):
      return self._validate_update_event(intent, known)
    if isinstance(intent, ListEventsIntent):
      return _check_filter_range(intent.filter) or ValidationResult.accept()
    if isinstance(intent, CreateVenueIntent):
      if not (intent.name or "").strip():
        return _reject("missing_required_field", "name", "A venue needs a name.")
      return ValidationResult.accept()
    return ValidationResult.accept()

  def validate_all(self, intents: List[Intent]) -> List[ValidationResult]:
    results: List[ValidationResult] = []
    venue_refs: Set[str] = set()
    for intent in intents:
      result = self.validate(intent, venue_refs)
      if not result.accepted:
        logger.info("[VALIDATOR] %s (%s) rejected: %s on %s", intent.ref,
                    intent.kind, result.reason, result.field)
      results.append(result)
      if isinstance(intent, CreateVenueIntent):
        venue_refs.add(intent.ref)
    return results

  # -------------------------
  # per kind
  # -------------------------
  def _validate_create_event(self, intent: CreateEventIntent,
                             venue_refs: Set[str]) -> ValidationResult:
    if not (intent.title or "").strip():
      return _reject("missing_required_field", "title", "The event needs a title.")
    if not intent.start:
      return _reject("missing_required_field", "start",
                     "The event needs a start date and time.")
    start = parse_iso_minute(intent.start)
    if start is None:
      return _reject("invalid_value", "start",
                     f"'{intent.start}' is not a YYYY-MM-DDTHH:MM value.")
    if intent.end:
      end = parse_iso_minute(intent.end)
      if end is None:
        return _reject("invalid_value", "end",
                       f"'{intent.end}' is not a YYYY-MM-DDTHH:MM value.")
      if end < start:
        return _reject("invalid_value", "end", "The event ends before it starts.")
    if intent.duration_minutes is not None and intent.duration_minutes <= 0:
      return _reject("invalid_value", "duration_minutes",
                     "Duration must be a positive number of minutes.")

    if intent.venue_ref and intent.venue_ref not in venue_refs:
      return _reject("unresolvable_venue", "venue_ref",
                     f"'{intent.venue_ref}' does not refer to a venue created earlier "
                     "in this request.")
    if intent.venue_ref and intent.venue_name:
      return _reject("invalid_value", "venue_name",
                     "Give either an existing venue name or a new venue, not both.")

    if intent.recurrence is not None:
      return self._validate_recurrence(intent)
    return ValidationResult.accept()

  def _validate_recurrence(self, intent: CreateEventIntent) -> ValidationResult:
    rule = intent.recurrence
    problems = invalid_rule_fields(rule)
    if problems:
      return _reject("invalid_value", f"recurrence.{problems[0]}",
                     f"Recurrence field '{problems[0]}' is out of range or not "
                     f"supported for {rule.freq} rules.")
    limit = self.max_recurrence_occurrences
    if rule.count is not None:
      if rule.count <= 0:
        return _reject("invalid_value", "recurrence.count",
                       "Occurrence count must be a positive integer.")
      if rule.count > limit:
        return _reject("exceeds_recurrence_limit", "recurrence.count",
                       f"{rule.count} occurrences requested; the maximum is {limit}.")
      return ValidationResult.accept()
    if rule.until is None:
      return _reject("missing_required_field", "recurrence.count",
                     "A recurring event needs an occurrence count or an end date.")

    until = parse_iso_date(rule.until)
    start = parse_iso_minute(intent.start)
    if until is None:
      return _reject("invalid_value", "recurrence.until",
                     f"'{rule.until}' is not a YYYY-MM-DD date.")
    if until < start.date():
      return _reject("invalid_value", "recurrence.until",
                     "The series ends before its first occurrence.")
    occurrences = count_occurrences(rule, start.date(), limit + 1)
    if occurrences > limit:
      return _reject("exceeds_recurrence_limit", "recurrence.until",
                     f"The series would create more than {limit} events.")
    if occurrences == 0:
      return _reject("invalid_value", "recurrence",
                     "The rule produces no occurrences before its end date.")
    return ValidationResult.accept()

  def _validate_update_event(self, intent: UpdateEventIntent,
                             venue_refs: Set[str]) -> ValidationResult:
    if intent.filter.is_empty():
      return _reject("missing_required_field", "filter",
                     "Say which events to change (title, date range or venue).")
    if intent.changes.is_empty():
      return _reject("missing_required_field", "changes",
                     "Say what should change on the matching events.")
    invalid = _check_filter_range(intent.filter)
    if invalid is not None:
      return invalid

    changes = intent.changes
    for field in ("start", "end"):
      raw = getattr(changes, field)
      if raw and parse_iso_minute(raw) is None:
        return _reject("invalid_value", f"changes.{field}",
                       f"'{raw}' is not a YYYY-MM-DDTHH:MM value.")
    if changes.start and changes.end:
      if parse_iso_minute(changes.end) < parse_iso_minute(changes.start):
        return _reject("invalid_value", "changes.end",
                       "The new end is before the new start.")
    if changes.start_time and changes.end_time and changes.end_time < changes.start_time:
      return _reject("invalid_value", "changes.end_time",
                     "The new end time is before the new start time.")
    if (changes.start or changes.end) and (changes.start_time or changes.end_time):
      return _reject("invalid_value", "changes.start_time",
                     "Change either full dates or only the time of day, not both.")

    if changes.venue_ref and changes.venue_ref not in venue_refs:
      return _reject("unresolvable_venue", "changes.venue_ref",
                     f"'{changes.venue_ref}' does not refer to a venue created earlier "
                     "in this request.")
    return ValidationResult.accept()

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from ..config import AssistantSettings
from ..errors import EventNotFound, EventSystemError, EventSystemTimeout
from ..models import Event, EventCreate, EventQuery, EventUpdate, VenueCreate
from ..recurrence import expand_occurrences, to_rrule
from ..store import EventSystem, find_venue_by_name
from ..utils import event_duration, format_iso_minute, parse_iso_minute
from .schemas import (CreateEventIntent, CreateVenueIntent, EventFilter,
                      ExecutionResult, Intent, ListEventsIntent,
                      ListVenuesIntent, UpdateEventIntent)

logger = logging.getLogger(__name__)

R = TypeVar("R")

# ref -> result of that intent; None when it was rejected before execution.
PriorResults = Dict[str, Optional[ExecutionResult]]


def _failed(error_code: str, error: str, **partial: Any) -> ExecutionResult:
  return ExecutionResult(succeeded=False, error_code=error_code, error=error,
                         **partial)


def _required_refs(intent: Intent) -> List[str]:
  refs = list(intent.depends_on)
  if isinstance(intent, CreateEventIntent) and intent.venue_ref:
    refs.append(intent.venue_ref)
  if isinstance(intent, UpdateEventIntent) and intent.changes.venue_ref:
    refs.append(intent.changes.venue_ref)
  return refs


def _unresolved_dependency(intent: Intent, prior_results: PriorResults) -> Optional[str]:
  for ref in _required_refs(intent):
    result = prior_results.get(ref)
    if result is None or not result.succeeded:
      return ref
  return None


def _query_from_filter(event_filter: EventFilter) -> EventQuery:
  return EventQuery(
      title_contains=(event_filter.title_contains or "").strip() or None,
      start_date=event_filter.start_date,
      end_date=event_filter.end_date,
      venue_name=(event_filter.venue_name or "").strip() or None,
  )


def _with_time_of_day(value: datetime, hhmm: str) -> datetime:
  hour, minute = [int(x) for x in hhmm.split(":")]
  return value.replace(hour=hour, minute=minute)


def _ends_before_start(event: Event, patch: EventUpdate) -> bool:
  start = parse_iso_minute(patch.start or event.start)
  end = parse_iso_minute(patch.end or event.end)
  return start is not None and end is not None and end < start


class ActionExecutor:
  """Runs validated intents against an :class:`EventSystem`, one call at a time."""

  def __init__(self, events: EventSystem, settings: AssistantSettings):
    self.events = events
    self.settings = settings

  async def _call(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
    timeout = self.settings.event_system_timeout_seconds
    try:
      return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs),
                                    timeout=timeout)
    except asyncio.TimeoutError as exc:
      raise EventSystemTimeout(
          f"Event system did not answer within {timeout:g}s.") from exc

  async def execute(self,
                    intent: Intent,
                    prior_results: PriorResults,
                    timezone_name: str = "UTC") -> ExecutionResult:
    blocked_on = _unresolved_dependency(intent, prior_results)
    if blocked_on is not None:
      logger.info("[EXEC] %s skipped: depends on %s", intent.ref, blocked_on)
      return _failed("dependency_unresolved",
                     f"Depends on {blocked_on}, which did not succeed.")

    try:
      if isinstance(intent, CreateEventIntent):
        return await self._create_event(intent, prior_results, timezone_name)
      if isinstance(intent, UpdateEventIntent):
        return await self._update_event(intent, prior_results)
      if isinstance(intent, ListEventsIntent):
        return await self._list_events(intent)
      if isinstance(intent, CreateVenueIntent):
        return await self._create_venue(intent)
      if isinstance(intent, ListVenuesIntent):
        return await self._list_venues(intent)
    except EventSystemError as exc:
      logger.warning("[EXEC] %s (%s) failed: %s", intent.ref, intent.kind, exc.message)
      return _failed(exc.code, exc.message)
    return _failed("invalid_value", f"Unsupported intent kind: {intent.kind}")

  # -------------------------
  # venues
  # -------------------------
  async def _resolve_venue_id(self,
                              venue_name: Optional[str],
                              venue_ref: Optional[str],
                              prior_results: PriorResults) -> Optional[int]:
    if venue_ref:
      created = prior_results[venue_ref]
      return created.created_ids[0] if created and created.created_ids else None
    if venue_name and venue_name.strip():
      venue = await self._call(find_venue_by_name, self.events, venue_name)
      if venue is None:
        raise EventNotFound(f"No venue named '{venue_name.strip()}'.")
      return venue.id
    return None

  async def _create_venue(self, intent: CreateVenueIntent) -> ExecutionResult:
    venue = await self._call(self.events.create_venue, VenueCreate(
        name=intent.name.strip(),
        address=intent.address,
        description=intent.description,
    ))
    logger.info("[EXEC] venue created id=%s name=%s", venue.id, venue.name)
    return ExecutionResult(succeeded=True, created_ids=[venue.id],
                           items=[venue.model_dump()])

  async def _list_venues(self, intent: ListVenuesIntent) -> ExecutionResult:
    venues = await self._call(self.events.list_venues,
                              (intent.name_contains or "").strip() or None)
    return ExecutionResult(succeeded=True,
                           items=[v.model_dump() for v in venues])

  # -------------------------
  # events
  # -------------------------
  def _occurrences(self, intent: CreateEventIntent) -> List[Tuple[str, Optional[str]]]:
    start = intent.start
    end = intent.end
    if not end:
      start_dt = parse_iso_minute(start)
      if intent.all_day:
        end = f"{start[:10]}T23:59"
      else:
        end = format_iso_minute(
            start_dt + timedelta(minutes=self.settings.default_event_duration_minutes))
    if intent.recurrence is None:
      return [(start, end)]
    return expand_occurrences(start, end, intent.recurrence,
                              self.settings.max_recurrence_occurrences)

  async def _create_event(self,
                          intent: CreateEventIntent,
                          prior_results: PriorResults,
                          timezone_name: str) -> ExecutionResult:
    venue_id = await self._resolve_venue_id(intent.venue_name, intent.venue_ref,
                                            prior_results)
    rrule = None
    if intent.recurrence is not None:
      rrule = to_rrule(intent.recurrence,
                       None if intent.all_day else intent.start[11:16],
                       timezone_name)

    created: List[Event] = []
    for start, end in self._occurrences(intent):
      payload = EventCreate(
          title=intent.title.strip(),
          start=start,
          end=end,
          timezone=timezone_name,
          all_day=intent.all_day,
          description=intent.description,
          venue_id=venue_id,
          rrule=rrule,
      )
      try:
        created.append(await self._call(self.events.create_event, payload))
      except EventSystemError as exc:
        # Partial series: report the events already created.
        logger.warning("[EXEC] %s stopped after %d of the series: %s",
                       intent.ref, len(created), exc.message)
        return _failed(exc.code, exc.message,
                       created_ids=[e.id for e in created],
                       items=[e.model_dump() for e in created])

    logger.info("[EXEC] %s created %d event(s)", intent.ref, len(created))
    return ExecutionResult(succeeded=True,
                           created_ids=[e.id for e in created],
                           items=[e.model_dump() for e in created])

  def _patch_for(self, event: Event, intent: UpdateEventIntent,
                 venue_id: Optional[int]) -> EventUpdate:
    changes = intent.changes
    start = parse_iso_minute(event.start)
    end = parse_iso_minute(event.end)
    duration = event_duration(event.start, event.end)

    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None
    if changes.start or changes.end:
      new_start = parse_iso_minute(changes.start) if changes.start else None
      new_end = parse_iso_minute(changes.end) if changes.end else None
      if new_start is not None and new_end is None and duration is not None:
        new_end = new_start + duration
    elif start is not None and (changes.start_time or changes.end_time):
      if changes.start_time:
        new_start = _with_time_of_day(start, changes.start_time)
        if duration is not None:
          new_end = new_start + duration
      if changes.end_time:
        new_end = _with_time_of_day(end or new_start or start, changes.end_time)

    return EventUpdate(
        title=(changes.title or "").strip() or None,
        description=changes.description,
        start=format_iso_minute(new_start) if new_start else None,
        end=format_iso_minute(new_end) if new_end else None,
        venue_id=venue_id,
    )

  async def _update_event(self,
                          intent: UpdateEventIntent,
                          prior_results: PriorResults) -> ExecutionResult:
    matches = await self._call(self.events.list_events,
                               _query_from_filter(intent.filter))
    if not matches:
      logger.info("[EXEC] %s matched no events", intent.ref)
      return ExecutionResult(succeeded=True)

    changes = intent.changes
    if (changes.start or changes.end) and len(matches) != 1:
      return _failed(
          "ambiguous_target",
          f"{len(matches)} events match; a new date can only be set on one event.",
          items=[e.model_dump() for e in matches])

    venue_id = await self._resolve_venue_id(changes.venue_name, changes.venue_ref,
                                            prior_results)
    patches = [(event, self._patch_for(event, intent, venue_id)) for event in matches]
    backwards = [event for event, patch in patches if _ends_before_start(event, patch)]
    if backwards:
      return _failed(
          "invalid_value",
          f"The change would make {len(backwards)} event(s) end before they start.",
          items=[e.model_dump() for e in backwards])

    updated: List[Event] = []
    for event, patch in patches:
      try:
        updated.append(await self._call(self.events.update_event, event.id, patch))
      except EventSystemError as exc:
        logger.warning("[EXEC] %s stopped after %d of %d updates: %s",
                       intent.ref, len(updated), len(matches), exc.message)
        return _failed(exc.code, exc.message,
                       updated_ids=[e.id for e in updated],
                       items=[e.model_dump() for e in updated])

    logger.info("[EXEC] %s updated %d event(s)", intent.ref, len(updated))
    return ExecutionResult(succeeded=True,
                           updated_ids=[e.id for e in updated],
                           items=[e.model_dump() for e in updated])

  async def _list_events(self, intent: ListEventsIntent) -> ExecutionResult:
    events = await self._call(self.events.list_events,
                              _query_from_filter(intent.filter))
    return ExecutionResult(succeeded=True, items=[e.model_dump() for e in events])

from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
import json
import logging
import pathlib

from .errors import EventNotFound, EventSystemUnavailable
from .models import Event, EventCreate, EventQuery, EventUpdate, Venue, VenueCreate
from .utils import event_within_range, parse_iso_date

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSystem(Protocol):
    """Operations the executor needs from an event-management backend."""

    def create_event(self, payload: EventCreate) -> Event:
        ...

    def update_event(self, event_id: int, patch: EventUpdate) -> Event:
        ...

    def list_events(self, query: EventQuery) -> List[Event]:
        ...

    def create_venue(self, payload: VenueCreate) -> Venue:
        ...

    def list_venues(self, name_contains: Optional[str] = None) -> List[Venue]:
        ...


def find_venue_by_name(system: EventSystem, name: str) -> Optional[Venue]:
    """Exact (case-insensitive) name match first, then a unique partial match."""
    wanted = (name or "").strip().lower()
    if not wanted:
        return None
    candidates = system.list_venues(name_contains=name.strip())
    for venue in candidates:
        if venue.name.strip().lower() == wanted:
            return venue
    partial = [v for v in candidates if wanted in v.name.strip().lower()]
    if len(partial) == 1:
        return partial[0]
    return None


def _matches_query(event: Event, query: EventQuery) -> bool:
    if query.title_contains:
        if query.title_contains.strip().lower() not in event.title.lower():
            return False
    if query.venue_name:
        if query.venue_name.strip().lower() not in (event.venue_name or "").lower():
            return False
    if query.start_date or query.end_date:
        if not event_within_range(event.start,
                                  parse_iso_date(query.start_date),
                                  parse_iso_date(query.end_date)):
            return False
    return True


class InMemoryEventStore:
    """Thread-safe local event store, optionally persisted as JSON."""

    def __init__(self, data_file: Optional[pathlib.Path] = None):
        self._lock = Lock()
        self._data_file = data_file
        self._events: Dict[int, Event] = {}
        self._venues: Dict[int, Venue] = {}
        self._next_event_id = 1
        self._next_venue_id = 1
        if data_file is not None:
            self._load()

    # -------------------------
    # persistence
    # -------------------------
    def _serialize(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "events": [e.model_dump() for e in self._events.values()],
            "venues": [v.model_dump() for v in self._venues.values()],
        }

    def _save(self) -> None:
        if self._data_file is None:
            return
        try:
            self._data_file.write_text(
                json.dumps(self._serialize(), ensure_ascii=False, indent=2),
                encoding="utf-8")
        except OSError as exc:
            raise EventSystemUnavailable(
                f"Could not write event data to {self._data_file}: {exc}") from exc

    def _load(self) -> None:
        if self._data_file is None or not self._data_file.exists():
            return
        try:
            data = json.loads(self._data_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("event store load failed (%s): %s", self._data_file, exc)
            return
        for raw in data.get("venues") or []:
            venue = Venue.model_validate(raw)
            self._venues[venue.id] = venue
        for raw in data.get("events") or []:
            event = Event.model_validate(raw)
            self._events[event.id] = event
        self._next_venue_id = max(self._venues, default=0) + 1
        self._next_event_id = max(self._events, default=0) + 1

    # -------------------------
    # events
    # -------------------------
    def create_event(self, payload: EventCreate) -> Event:
        with self._lock:
            venue = self._venues.get(payload.venue_id) if payload.venue_id else None
            if payload.venue_id and venue is None:
                raise EventNotFound(f"Venue {payload.venue_id} does not exist.")
            event = Event(
                id=self._next_event_id,
                venue_name=venue.name if venue else None,
                created_at=datetime.now().strftime("%Y-%m-%dT%H:%M"),
                **payload.model_dump(),
            )
            self._events[event.id] = event
            try:
                self._save()
            except EventSystemUnavailable:
                del self._events[event.id]
                raise
            self._next_event_id += 1
            return event

    def update_event(self, event_id: int, patch: EventUpdate) -> Event:
        with self._lock:
            current = self._events.get(event_id)
            if current is None:
                raise EventNotFound(f"Event {event_id} does not exist.")
            changes = patch.model_dump(exclude_none=True)
            if "venue_id" in changes:
                venue = self._venues.get(changes["venue_id"])
                if venue is None:
                    raise EventNotFound(f"Venue {changes['venue_id']} does not exist.")
                changes["venue_name"] = venue.name
            updated = current.model_copy(update=changes)
            self._events[event_id] = updated
            try:
                self._save()
            except EventSystemUnavailable:
                self._events[event_id] = current
                raise
            return updated

    def list_events(self, query: EventQuery) -> List[Event]:
        with self._lock:
            matches = [e for e in self._events.values() if _matches_query(e, query)]
        matches.sort(key=lambda e: (e.start, e.id))
        return matches if query.limit is None else matches[:query.limit]

    # -------------------------
    # venues
    # -------------------------
    def create_venue(self, payload: VenueCreate) -> Venue:
        with self._lock:
            venue = Venue(id=self._next_venue_id, **payload.model_dump())
            self._venues[venue.id] = venue
            try:
                self._save()
            except EventSystemUnavailable:
                del self._venues[venue.id]
                raise
            self._next_venue_id += 1
            return venue

    def list_venues(self, name_contains: Optional[str] = None) -> List[Venue]:
        with self._lock:
            venues = list(self._venues.values())
        if name_contains:
            wanted = name_contains.strip().lower()
            venues = [v for v in venues if wanted in v.name.lower()]
        return sorted(venues, key=lambda v: v.id)

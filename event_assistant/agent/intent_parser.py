from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple, Type

from pydantic import BaseModel

from ..config import MAX_INTENTS_PER_PROMPT, MAX_PRIOR_TURNS
from ..errors import SchemaViolation
from ..recurrence import first_occurrence_on_or_after, invalid_rule_fields
from ..utils import format_iso_minute, parse_iso_minute
from .normalizer import coerce_iso_minute, coerce_time_of_day, try_parse_date
from .schemas import (CreateEventIntent, EventChanges, EventFilter, Intent,
                      ListEventsIntent, ParsedPrompt, ParserOutput, Prompt,
                      UpdateEventIntent)

logger = logging.getLogger(__name__)

INTENT_PARSER_SYSTEM_PROMPT_TEMPLATE = """Intent parser for a GatherPress event-management assistant.
Return JSON only. No markdown.
Current: {now_iso} ({weekday}). Timezone: {timezone}.
Translate the organizer's request into a list of intents.
Resolve every relative date ("next Friday", "the 3rd Tuesday") to an absolute value using the current date.
Never guess missing information; leave the field null instead.
"""

INTENT_PARSER_DEVELOPER_PROMPT = """Input: user_text, now_iso, timezone, prior_turns.

Output: {"intents": [...], "clarification": string|null}
Every intent has: ref ("i1", "i2", ...), kind, depends_on (refs of earlier intents it needs).

Allowed kinds and fields:
- create_event: title, start "YYYY-MM-DDTHH:MM", end "YYYY-MM-DDTHH:MM"|null, duration_minutes|null,
  all_day (bool; start/end may then be "YYYY-MM-DD"), description|null,
  venue_name (existing venue)|null, venue_ref (ref of a create_venue intent in this request)|null,
  recurrence|null = {freq: DAILY|WEEKLY|MONTHLY|YEARLY, interval, byweekday [0=Mon..6=Sun]|null,
  bymonthday [1..31,-1]|null, bysetpos (1..5 or -1, "3rd Tuesday" = byweekday [1] + bysetpos 3)|null,
  bymonth|null, count|null, until "YYYY-MM-DD"|null}
- update_event: filter {title_contains, start_date, end_date, venue_name},
  changes {title, description, start, end, start_time "HH:MM", end_time "HH:MM", venue_name, venue_ref}
- list_events: filter {title_contains, start_date "YYYY-MM-DD", end_date "YYYY-MM-DD", venue_name}
- create_venue: name, address|null, description|null
- list_venues: name_contains|null

Rules:
1) One intent per requested operation. "create X and list Y" is two intents.
2) A recurring series is ONE create_event with recurrence, not one intent per date.
3) recurrence uses count OR until, never both. "for 6 months" monthly = count 6.
4) A multi-day event ("May 1-5") is one create_event with start on day one and end on the last day.
5) Bulk changes of time of day ("from 7pm to 8pm") use changes.start_time, not start.
6) If the event should happen at a venue created in the same request, set venue_ref and depends_on.
7) If the request is not about events or venues, return no intents and a short clarification question.
8) Use only the fields listed above.

Examples (now_iso 2026-03-02T10:00):

User: "Create a book club event on the 3rd Tuesday of each month for 6 months at Downtown Library, 7pm"
{"intents":[{"ref":"i1","kind":"create_event","title":"Book Club","start":"2026-03-17T19:00","end":null,"venue_name":"Downtown Library","recurrence":{"freq":"MONTHLY","interval":1,"byweekday":[1],"bysetpos":3,"count":6},"depends_on":[]}],"clarification":null}

User: "Change all Book Club events from 7pm to 8pm"
{"intents":[{"ref":"i1","kind":"update_event","filter":{"title_contains":"Book Club"},"changes":{"start_time":"20:00"},"depends_on":[]}],"clarification":null}

User: "Create a 5-day conference from May 1-5 at the Convention Center"
{"intents":[{"ref":"i1","kind":"create_event","title":"Conference","start":"2026-05-01","end":"2026-05-05","all_day":true,"venue_name":"Convention Center","depends_on":[]}],"clarification":null}

User: "Add a venue called Riverside Hall at 12 Water St, then schedule a meetup there next Friday at 6pm"
{"intents":[{"ref":"i1","kind":"create_venue","name":"Riverside Hall","address":"12 Water St","depends_on":[]},{"ref":"i2","kind":"create_event","title":"Meetup","start":"2026-03-06T18:00","venue_ref":"i1","depends_on":["i1"]}],"clarification":null}

User: "List all my venues"
{"intents":[{"ref":"i1","kind":"list_venues","depends_on":[]}],"clarification":null}
"""


class StructuredCompletion(Protocol):
  async def complete_structured(self,
                                *,
                                system_prompt: str,
                                developer_prompt: Optional[str],
                                user_payload: Dict[str, Any],
                                response_model: Type[BaseModel]) -> Tuple[Any, str]:
    ...


def _build_payload(prompt: Prompt, now: datetime, max_prior_turns: int) -> Dict[str, Any]:
  prior = prompt.prior_context[-max_prior_turns:] if max_prior_turns else []
  return {
      "user_text": prompt.text,
      "now_iso": now.isoformat(timespec="minutes"),
      "timezone": prompt.timezone,
      "prior_turns": [turn.model_dump() for turn in prior],
  }


def _resolve_datetime(raw: Optional[str], timezone_name: str, field: str,
                      unresolved: List[str], all_day: bool = False,
                      end_of_day: bool = False) -> Optional[str]:
  if raw is None or not str(raw).strip():
    return None
  if all_day:
    day = try_parse_date(raw)
    if day is not None:
      return f"{day.isoformat()}T{'23:59' if end_of_day else '00:00'}"
  value = coerce_iso_minute(raw, timezone_name)
  if value is None:
    unresolved.append(field)
  return value


def _resolve_date(raw: Optional[str], field: str, unresolved: List[str]) -> Optional[str]:
  if raw is None or not str(raw).strip():
    return None
  day = try_parse_date(raw)
  if day is None:
    unresolved.append(field)
    return None
  return day.isoformat()


def _resolve_time(raw: Optional[str], field: str, unresolved: List[str]) -> Optional[str]:
  if raw is None or not str(raw).strip():
    return None
  value = coerce_time_of_day(raw)
  if value is None:
    unresolved.append(field)
  return value


def _resolve_filter(event_filter: EventFilter, unresolved: List[str]) -> EventFilter:
  return event_filter.model_copy(update={
      "start_date": _resolve_date(event_filter.start_date, "filter.start_date", unresolved),
      "end_date": _resolve_date(event_filter.end_date, "filter.end_date", unresolved),
  })


def _align_to_recurrence(start: str, end: Optional[str],
                         intent: CreateEventIntent) -> Tuple[str, Optional[str]]:
  """Move a series so its first occurrence actually matches the rule."""
  rule = intent.recurrence
  start_dt = parse_iso_minute(start)
  if rule is None or start_dt is None or invalid_rule_fields(rule):
    return start, end
  first = first_occurrence_on_or_after(rule, start_dt.date())
  if first is None or first == start_dt.date():
    return start, end
  shift = timedelta(days=(first - start_dt.date()).days)
  end_dt = parse_iso_minute(end)
  return (format_iso_minute(start_dt + shift),
          format_iso_minute(end_dt + shift) if end_dt else end)


def _resolve_create_event(intent: CreateEventIntent, timezone_name: str) -> CreateEventIntent:
  unresolved: List[str] = []
  start = _resolve_datetime(intent.start, timezone_name, "start", unresolved,
                            all_day=intent.all_day)
  end = _resolve_datetime(intent.end, timezone_name, "end", unresolved,
                          all_day=intent.all_day, end_of_day=True)
  if end is None and start and intent.duration_minutes and intent.duration_minutes > 0:
    end = format_iso_minute(parse_iso_minute(start) +
                            timedelta(minutes=intent.duration_minutes))

  recurrence = intent.recurrence
  if recurrence is not None and recurrence.until is not None:
    recurrence = recurrence.model_copy(update={
        "until": _resolve_date(recurrence.until, "recurrence.until", unresolved),
    })
  resolved = intent.model_copy(update={
      "title": (intent.title or "").strip(),
      "recurrence": recurrence,
  })
  if start and "start" not in unresolved:
    start, end = _align_to_recurrence(start, end, resolved)
  return resolved.model_copy(update={
      "start": start,
      "end": end,
      "unresolved_fields": unresolved,
  })


def _resolve_update_event(intent: UpdateEventIntent, timezone_name: str) -> UpdateEventIntent:
  unresolved: List[str] = []
  changes: EventChanges = intent.changes
  changes = changes.model_copy(update={
      "start": _resolve_datetime(changes.start, timezone_name, "changes.start", unresolved),
      "end": _resolve_datetime(changes.end, timezone_name, "changes.end", unresolved),
      "start_time": _resolve_time(changes.start_time, "changes.start_time", unresolved),
      "end_time": _resolve_time(changes.end_time, "changes.end_time", unresolved),
  })
  return intent.model_copy(update={
      "filter": _resolve_filter(intent.filter, unresolved),
      "changes": changes,
      "unresolved_fields": unresolved,
  })


def _resolve_list_events(intent: ListEventsIntent) -> ListEventsIntent:
  unresolved: List[str] = []
  return intent.model_copy(update={
      "filter": _resolve_filter(intent.filter, unresolved),
      "unresolved_fields": unresolved,
  })


def normalize_intents(raw_intents: List[Intent], timezone_name: str) -> List[Intent]:
  """Renumber refs to i1..iN, remap references, resolve dates in ``timezone_name``."""
  id_map: Dict[str, str] = {}
  for index, intent in enumerate(raw_intents):
    id_map.setdefault(str(intent.ref or "").strip(), f"i{index + 1}")
  index_by_id = {f"i{i + 1}": i for i in range(len(raw_intents))}

  def _map_ref(ref: Optional[str]) -> Optional[str]:
    if ref is None or not ref.strip():
      return None
    return id_map.get(ref.strip(), ref.strip())

  normalized: List[Intent] = []
  for index, intent in enumerate(raw_intents):
    new_ref = f"i{index + 1}"

    depends_on: List[str] = []
    for dep in intent.depends_on:
      mapped = id_map.get(str(dep).strip())
      if not mapped or mapped == new_ref or mapped in depends_on:
        continue
      if index_by_id.get(mapped, index) >= index:
        continue
      depends_on.append(mapped)

    update: Dict[str, Any] = {"ref": new_ref, "depends_on": depends_on}
    if isinstance(intent, CreateEventIntent):
      update["venue_ref"] = _map_ref(intent.venue_ref)
    elif isinstance(intent, UpdateEventIntent):
      update["changes"] = intent.changes.model_copy(
          update={"venue_ref": _map_ref(intent.changes.venue_ref)})
    intent = intent.model_copy(update=update)

    if isinstance(intent, CreateEventIntent):
      intent = _resolve_create_event(intent, timezone_name)
    elif isinstance(intent, UpdateEventIntent):
      intent = _resolve_update_event(intent, timezone_name)
    elif isinstance(intent, ListEventsIntent):
      intent = _resolve_list_events(intent)
    else:
      intent = intent.model_copy(update={"unresolved_fields": []})
    normalized.append(intent)
  return normalized


class IntentParser:
  """Prompt -> ordered intents, via one structured completion call."""

  def __init__(self,
               completion: StructuredCompletion,
               max_intents: int = MAX_INTENTS_PER_PROMPT,
               max_prior_turns: int = MAX_PRIOR_TURNS):
    self.completion = completion
    self.max_intents = max_intents
    self.max_prior_turns = max_prior_turns

  async def parse(self, prompt: Prompt, now: datetime) -> ParsedPrompt:
    payload = _build_payload(prompt, now, self.max_prior_turns)
    system_prompt = INTENT_PARSER_SYSTEM_PROMPT_TEMPLATE.format(
        now_iso=now.isoformat(timespec="minutes"),
        weekday=now.strftime("%A"),
        timezone=prompt.timezone,
    )
    parsed, raw_output = await self.completion.complete_structured(
        system_prompt=system_prompt,
        developer_prompt=INTENT_PARSER_DEVELOPER_PROMPT,
        user_payload=payload,
        response_model=ParserOutput,
    )
    if len(parsed.intents) > self.max_intents:
      raise SchemaViolation(
          f"Completion returned {len(parsed.intents)} intents; at most "
          f"{self.max_intents} are allowed per prompt.")

    intents = normalize_intents(parsed.intents, prompt.timezone)
    logger.info("[PARSER] %d intent(s): %s", len(intents),
                ", ".join(f"{i.ref}:{i.kind}" for i in intents) or "-")
    clarification = (parsed.clarification or "").strip() or None
    return ParsedPrompt(intents=intents, clarification=clarification,
                        raw_output=raw_output)

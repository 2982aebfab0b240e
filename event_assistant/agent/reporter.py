from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import AssistantError
from ..recurrence import describe_rule
from ..utils import display_datetime
from .schemas import (AssistantResponse, CreateEventIntent, CreateVenueIntent,
                      ErrorInfo, IntentOutcome, ListEventsIntent,
                      ListVenuesIntent, UpdateEventIntent)

# Listed items shown per intent in the summary text; entries keep all of them.
_SUMMARY_ITEM_LIMIT = 10


def _plural(count: int, noun: str) -> str:
  return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _event_line(item: Dict[str, Any]) -> str:
  when = display_datetime(item.get("start"), bool(item.get("all_day")))
  line = f"  • {when} {item.get('title') or '(untitled)'}"
  if item.get("venue_name"):
    line += f" @ {item['venue_name']}"
  return line


def _venue_line(item: Dict[str, Any]) -> str:
  line = f"  • {item.get('name') or '(unnamed)'}"
  if item.get("address"):
    line += f", {item['address']}"
  return line


def _listing(items: List[Dict[str, Any]], render) -> List[str]:
  lines = [render(item) for item in items[:_SUMMARY_ITEM_LIMIT]]
  if len(items) > _SUMMARY_ITEM_LIMIT:
    lines.append(f"  … and {len(items) - _SUMMARY_ITEM_LIMIT} more")
  return lines


def _success_lines(outcome: IntentOutcome) -> List[str]:
  intent = outcome.intent
  result = outcome.execution
  prefix = f"- {intent.ref} {intent.kind}:"

  if isinstance(intent, CreateEventIntent):
    text = f"{prefix} created {_plural(len(result.created_ids), 'event')} \"{intent.title}\""
    if intent.recurrence is not None:
      text += f" ({describe_rule(intent.recurrence)})"
    if result.items:
      text += f", first on {display_datetime(result.items[0].get('start'), intent.all_day)}"
    return [text + "."]
  if isinstance(intent, UpdateEventIntent):
    if not result.updated_ids:
      return [f"{prefix} no matching events."]
    return [f"{prefix} updated {_plural(len(result.updated_ids), 'event')}."]
  if isinstance(intent, ListEventsIntent):
    if not result.items:
      return [f"{prefix} no matching events."]
    return ([f"{prefix} found {_plural(len(result.items), 'event')}."] +
            _listing(result.items, _event_line))
  if isinstance(intent, CreateVenueIntent):
    return [f"{prefix} created venue \"{intent.name}\"."]
  if isinstance(intent, ListVenuesIntent):
    if not result.items:
      return [f"{prefix} no venues found."]
    return ([f"{prefix} found {_plural(len(result.items), 'venue')}."] +
            _listing(result.items, _venue_line))
  return [f"{prefix} done."]


def _failure_line(outcome: IntentOutcome) -> str:
  intent = outcome.intent
  prefix = f"- {intent.ref} {intent.kind}"
  validation = outcome.validation
  if not validation.accepted:
    where = f", {validation.field}" if validation.field else ""
    return f"{prefix} rejected ({validation.reason}{where}): {validation.detail}"

  result = outcome.execution
  line = f"{prefix} failed ({result.error_code}): {result.error}"
  done = len(result.created_ids) + len(result.updated_ids)
  if done:
    line += f" {_plural(done, 'event')} already applied."
  return line


def summarize(outcomes: List[IntentOutcome], clarification: Optional[str] = None) -> str:
  """Deterministic summary; every failed intent is listed with its reason."""
  parts: List[str] = []
  if outcomes:
    ok = [o for o in outcomes if o.ok]
    failed = [o for o in outcomes if not o.ok]
    parts.append(f"Processed {_plural(len(outcomes), 'request')}: "
                 f"{len(ok)} succeeded, {len(failed)} failed.")
    for outcome in outcomes:
      if outcome.ok:
        parts.extend(_success_lines(outcome))
      else:
        parts.append(_failure_line(outcome))
  if clarification:
    parts.append(clarification)
  if parts:
    return "\n".join(parts).strip()
  return "No event or venue operations were found in the request."


def _status(outcomes: List[IntentOutcome]) -> str:
  ok_count = sum(1 for o in outcomes if o.ok)
  if not outcomes or ok_count == len(outcomes):
    return "completed"
  if ok_count == 0:
    return "failed"
  return "partial"


def build_response(prompt_text: str,
                   timezone_name: str,
                   now_iso: str,
                   outcomes: List[IntentOutcome],
                   clarification: Optional[str] = None) -> AssistantResponse:
  return AssistantResponse(
      status=_status(outcomes),
      prompt=prompt_text,
      timezone=timezone_name,
      now_iso=now_iso,
      entries=outcomes,
      clarification=clarification,
      summary=summarize(outcomes, clarification),
  )


def build_error_response(prompt_text: str,
                         timezone_name: str,
                         now_iso: str,
                         error: AssistantError) -> AssistantResponse:
  return AssistantResponse(
      status="error",
      prompt=prompt_text,
      timezone=timezone_name,
      now_iso=now_iso,
      entries=[],
      summary=f"The request could not be processed ({error.code}): {error.message}",
      error=ErrorInfo(code=error.code, message=error.message, detail=error.detail),
  )

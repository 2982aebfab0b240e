from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..models import PriorTurn, RecurrenceRule

IntentKind = Literal[
    "create_event",
    "update_event",
    "list_events",
    "create_venue",
    "list_venues",
]

RejectionReason = Literal[
    "missing_required_field",
    "ambiguous_date",
    "unresolvable_venue",
    "exceeds_recurrence_limit",
    "invalid_value",
]


# ---------------------------------------------------------------------------
#  Prompt
# ---------------------------------------------------------------------------

class Prompt(BaseModel):
  model_config = ConfigDict(frozen=True)

  text: str
  user: Optional[str] = None
  timezone: str = "UTC"
  prior_context: List[PriorTurn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
#  Intents (completion-service output contract)
# ---------------------------------------------------------------------------

class _IntentBase(BaseModel):
  model_config = ConfigDict(extra="forbid")

  ref: str = Field(min_length=1, max_length=32)
  depends_on: List[str] = Field(default_factory=list)
  # Filled by the parser with fields whose date/time could not be resolved.
  unresolved_fields: List[str] = Field(default_factory=list)


class EventFilter(BaseModel):
  model_config = ConfigDict(extra="forbid")

  title_contains: Optional[str] = None
  start_date: Optional[str] = None
  end_date: Optional[str] = None
  venue_name: Optional[str] = None

  def is_empty(self) -> bool:
    return not any(
        (value or "").strip() for value in (
            self.title_contains, self.start_date, self.end_date, self.venue_name))


class EventChanges(BaseModel):
  model_config = ConfigDict(extra="forbid")

  title: Optional[str] = None
  description: Optional[str] = None
  start: Optional[str] = None
  end: Optional[str] = None
  start_time: Optional[str] = None  # "HH:MM", keeps each event's date
  end_time: Optional[str] = None
  venue_name: Optional[str] = None
  venue_ref: Optional[str] = None

  def is_empty(self) -> bool:
    return not self.model_dump(exclude_none=True)


class CreateEventIntent(_IntentBase):
  kind: Literal["create_event"]
  title: str = ""
  start: Optional[str] = None
  end: Optional[str] = None
  duration_minutes: Optional[int] = None
  all_day: bool = False
  description: Optional[str] = None
  venue_name: Optional[str] = None
  venue_ref: Optional[str] = None
  recurrence: Optional[RecurrenceRule] = None


class UpdateEventIntent(_IntentBase):
  kind: Literal["update_event"]
  filter: EventFilter = Field(default_factory=EventFilter)
  changes: EventChanges = Field(default_factory=EventChanges)


class ListEventsIntent(_IntentBase):
  kind: Literal["list_events"]
  filter: EventFilter = Field(default_factory=EventFilter)


class CreateVenueIntent(_IntentBase):
  kind: Literal["create_venue"]
  name: str = ""
  address: Optional[str] = None
  description: Optional[str] = None


class ListVenuesIntent(_IntentBase):
  kind: Literal["list_venues"]
  name_contains: Optional[str] = None


Intent = Annotated[
    Union[CreateEventIntent, UpdateEventIntent, ListEventsIntent,
          CreateVenueIntent, ListVenuesIntent],
    Field(discriminator="kind"),
]


class ParserOutput(BaseModel):
  model_config = ConfigDict(extra="forbid")

  intents: List[Intent] = Field(default_factory=list)
  clarification: Optional[str] = None


class ParsedPrompt(BaseModel):
  intents: List[Intent] = Field(default_factory=list)
  clarification: Optional[str] = None
  raw_output: str = ""


# ---------------------------------------------------------------------------
#  Per-intent outcomes
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
  model_config = ConfigDict(extra="forbid")

  accepted: bool
  reason: Optional[RejectionReason] = None
  field: Optional[str] = None
  detail: str = ""

  @classmethod
  def accept(cls) -> "ValidationResult":
    return cls(accepted=True)

  @classmethod
  def reject(cls, reason: RejectionReason, field: Optional[str],
             detail: str) -> "ValidationResult":
    return cls(accepted=False, reason=reason, field=field, detail=detail)


class ExecutionResult(BaseModel):
  model_config = ConfigDict(extra="forbid")

  succeeded: bool
  created_ids: List[int] = Field(default_factory=list)
  updated_ids: List[int] = Field(default_factory=list)
  items: List[Dict[str, Any]] = Field(default_factory=list)
  error_code: Optional[str] = None
  error: Optional[str] = None


class IntentOutcome(BaseModel):
  index: int
  intent: Intent
  validation: ValidationResult
  execution: Optional[ExecutionResult] = None

  @property
  def ok(self) -> bool:
    return bool(self.validation.accepted and self.execution is not None
                and self.execution.succeeded)


class ErrorInfo(BaseModel):
  code: str
  message: str
  detail: Dict[str, Any] = Field(default_factory=dict)


class AssistantResponse(BaseModel):
  version: str = "event_assistant.v1"
  status: Literal["completed", "partial", "failed", "error"]
  prompt: str
  timezone: str
  now_iso: str
  entries: List[IntentOutcome] = Field(default_factory=list)
  clarification: Optional[str] = None
  summary: str
  error: Optional[ErrorInfo] = None

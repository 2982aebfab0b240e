from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class RecurrenceRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    freq: Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]
    interval: int = 1
    byweekday: Optional[List[int]] = None  # 0=Monday .. 6=Sunday
    bymonthday: Optional[List[int]] = None  # 1..31, -1 = last day
    bysetpos: Optional[int] = None  # 1..5 or -1, paired with byweekday
    bymonth: Optional[List[int]] = None
    count: Optional[int] = None
    until: Optional[str] = None  # "YYYY-MM-DD"


class Venue(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    description: Optional[str] = None


class VenueCreate(BaseModel):
    name: str
    address: Optional[str] = None
    description: Optional[str] = None


class Event(BaseModel):
    id: int
    title: str
    start: str  # "YYYY-MM-DDTHH:MM"
    end: Optional[str] = None
    timezone: str = "UTC"
    all_day: bool = False
    description: Optional[str] = None
    venue_id: Optional[int] = None
    venue_name: Optional[str] = None
    rrule: Optional[str] = None
    created_at: Optional[str] = None


class EventCreate(BaseModel):
    title: str
    start: str
    end: Optional[str] = None
    timezone: str = "UTC"
    all_day: bool = False
    description: Optional[str] = None
    venue_id: Optional[int] = None
    rrule: Optional[str] = None


class EventUpdate(BaseModel):
    title: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None
    venue_id: Optional[int] = None


class EventQuery(BaseModel):
    title_contains: Optional[str] = None
    start_date: Optional[str] = None  # inclusive, "YYYY-MM-DD"
    end_date: Optional[str] = None  # inclusive, "YYYY-MM-DD"
    venue_name: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)  # None: every match


class PriorTurn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: str
    response: str = ""


class PromptRequest(BaseModel):
    prompt: Optional[str] = None
    prior_context: Optional[List[PriorTurn]] = None
    timezone: Optional[str] = None


class SettingsUpdate(BaseModel):
    openai_api_key: Optional[str] = None

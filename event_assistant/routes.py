from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from .config import AssistantSettings, EVENT_BACKEND
from .errors import (ConfigurationError, EventNotFound, EventSystemError,
                     EventSystemTimeout, PermissionDenied)
from .models import EventQuery, PromptRequest, SettingsUpdate
from .options import OptionsStore
from .store import EventSystem
from .agent.pipeline import process_prompt

router = APIRouter()
logger = logging.getLogger(__name__)


def _settings(request: Request) -> AssistantSettings:
  return request.app.state.settings


def _options(request: Request) -> OptionsStore:
  return request.app.state.options


def _event_system(request: Request) -> EventSystem:
  return request.app.state.event_system


def host_missing_dependencies(event_system: EventSystem) -> List[str]:
  checker = getattr(event_system, "missing_dependencies", None)
  if not callable(checker):
    return []
  return list(checker())


def _raise_for_event_system(exc: EventSystemError) -> None:
  if isinstance(exc, EventNotFound):
    status = 404
  elif isinstance(exc, PermissionDenied):
    status = 403
  elif isinstance(exc, EventSystemTimeout):
    status = 504
  else:
    status = 502
  raise HTTPException(status_code=status, detail=exc.to_dict()) from exc


# -------------------------
# assistant
# -------------------------
@router.post("/api/assistant/prompt")
async def assistant_prompt(body: PromptRequest,
                           request: Request,
                           x_assistant_user: Optional[str] = Header(None)):
  # Identity of the submitting user, set by the auth layer in front of the API.
  user = (x_assistant_user or "").strip() or None
  prompt_text = (body.prompt or "").strip()
  if not prompt_text:
    raise HTTPException(status_code=400, detail="Prompt is required")
  try:
    response = await process_prompt(
        prompt_text,
        body.prior_context or [],
        settings=_settings(request),
        credentials=_options(request),
        event_system=_event_system(request),
        user=user,
        timezone=body.timezone,
    )
  except ConfigurationError as exc:
    logger.warning("assistant prompt refused: %s", exc.message)
    raise HTTPException(status_code=503, detail=exc.to_dict()) from exc
  return response.model_dump(mode="json")


# -------------------------
# settings
# -------------------------
@router.get("/api/settings")
def get_settings(request: Request):
  settings = _settings(request)
  return {
      "has_api_key": _options(request).has_api_key(),
      "model": settings.model,
      "timezone": settings.timezone,
      "max_recurrence_occurrences": settings.max_recurrence_occurrences,
  }


@router.post("/api/settings")
def update_settings(body: SettingsUpdate, request: Request):
  options = _options(request)
  options.save_settings(body.model_dump(exclude_none=True))
  return {"ok": True, "has_api_key": options.has_api_key()}


# -------------------------
# read-through listings
# -------------------------
@router.get("/api/events")
def list_events(request: Request,
                title_contains: Optional[str] = Query(None),
                start_date: Optional[str] = Query(None),
                end_date: Optional[str] = Query(None),
                venue_name: Optional[str] = Query(None),
                limit: Optional[int] = Query(None, ge=1)):
  query = EventQuery(title_contains=title_contains,
                     start_date=start_date,
                     end_date=end_date,
                     venue_name=venue_name,
                     limit=limit)
  try:
    events = _event_system(request).list_events(query)
  except EventSystemError as exc:
    logger.warning("event listing failed: %s", exc.message)
    _raise_for_event_system(exc)
  return [event.model_dump(mode="json") for event in events]


@router.get("/api/venues")
def list_venues(request: Request, name_contains: Optional[str] = Query(None)):
  try:
    venues = _event_system(request).list_venues(name_contains)
  except EventSystemError as exc:
    logger.warning("venue listing failed: %s", exc.message)
    _raise_for_event_system(exc)
  return [venue.model_dump(mode="json") for venue in venues]


@router.get("/api/health")
def health(request: Request) -> Dict[str, Any]:
  missing = host_missing_dependencies(_event_system(request))
  return {
      "ok": not missing,
      "event_backend": getattr(request.app.state, "event_backend", EVENT_BACKEND),
      "missing_dependencies": missing,
      "has_api_key": _options(request).has_api_key(),
  }

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import (AssistantSettings, EVENT_BACKEND, EVENTS_DATA_FILE,
                     OPENAI_API_KEY, OPTIONS_FILE, WORDPRESS_APP_PASSWORD,
                     WORDPRESS_BASE_URL, WORDPRESS_USERNAME, load_settings)
from .errors import ConfigurationError, EventSystemError
from .gatherpress import GatherPressClient
from .options import OptionsStore
from .routes import host_missing_dependencies, router
from .store import EventSystem, InMemoryEventStore

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
  logging.basicConfig(
      level=logging.DEBUG if debug else logging.INFO,
      format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )


def build_event_system(settings: AssistantSettings,
                       backend: str = EVENT_BACKEND) -> EventSystem:
  if backend == "gatherpress":
    if not WORDPRESS_BASE_URL:
      raise ConfigurationError(
          "EVENT_BACKEND=gatherpress requires WORDPRESS_BASE_URL.")
    return GatherPressClient(WORDPRESS_BASE_URL,
                             username=WORDPRESS_USERNAME,
                             app_password=WORDPRESS_APP_PASSWORD,
                             timeout=settings.event_system_timeout_seconds)
  if backend != "local":
    raise ConfigurationError(f"Unknown EVENT_BACKEND {backend!r}.")
  return InMemoryEventStore(EVENTS_DATA_FILE)


def create_app(settings: Optional[AssistantSettings] = None,
               options: Optional[OptionsStore] = None,
               event_system: Optional[EventSystem] = None) -> FastAPI:
  settings = settings or load_settings()
  options = options or OptionsStore(OPTIONS_FILE, env_api_key=OPENAI_API_KEY)
  event_system = event_system or build_event_system(settings)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    try:
      missing = host_missing_dependencies(app.state.event_system)
    except EventSystemError as exc:
      missing = []
      logger.warning("dependency check failed: %s", exc.message)
    if missing:
      logger.warning("Event Assistant requires: %s. Assistant requests will fail "
                     "until they are available.", ", ".join(missing))
    if not app.state.options.has_api_key():
      logger.warning("OpenAI API key is not configured; set OPENAI_API_KEY or "
                     "POST /api/settings.")
    yield

  app = FastAPI(title="Event Assistant", lifespan=lifespan)
  app.state.settings = settings
  app.state.options = options
  app.state.event_system = event_system
  if isinstance(event_system, GatherPressClient):
    app.state.event_backend = "gatherpress"
  elif isinstance(event_system, InMemoryEventStore):
    app.state.event_backend = "local"
  else:
    app.state.event_backend = type(event_system).__name__
  app.include_router(router)
  return app

from __future__ import annotations

import os
import pathlib
import re
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
OPTIONS_FILE = pathlib.Path(
    os.getenv("ASSISTANT_OPTIONS_FILE", str(BASE_DIR / "assistant_options.json")))
EVENTS_DATA_FILE = pathlib.Path(
    os.getenv("EVENTS_DATA_FILE", str(BASE_DIR / "events_data.json")))

# -------------------------
# Event backend
# -------------------------
EVENT_BACKEND = os.getenv("EVENT_BACKEND", "local").strip().lower() or "local"
WORDPRESS_BASE_URL = os.getenv("WORDPRESS_BASE_URL", "").strip().rstrip("/")
WORDPRESS_USERNAME = os.getenv("WORDPRESS_USERNAME", "").strip()
WORDPRESS_APP_PASSWORD = os.getenv("WORDPRESS_APP_PASSWORD", "").strip()

# -------------------------
# Runtime limits / defaults
# -------------------------
DEFAULT_TIMEZONE = "UTC"
DEFAULT_ASSISTANT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_RECURRENCE_OCCURRENCES = 52
HARD_MAX_RECURRENCE_OCCURRENCES = 400
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 30.0
DEFAULT_EVENT_SYSTEM_TIMEOUT_SECONDS = 15.0
DEFAULT_EVENT_DURATION_MINUTES = 120
MAX_INTENTS_PER_PROMPT = 10
MAX_PRIOR_TURNS = 10
MAX_COMPLETION_TOKENS = 4000


class AssistantSettings(BaseModel):
    """Validated runtime configuration, built once and passed explicitly."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    openai_api_key: str = ""
    model: str = DEFAULT_ASSISTANT_MODEL
    reasoning_effort: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    max_recurrence_occurrences: int = Field(
        default=DEFAULT_MAX_RECURRENCE_OCCURRENCES,
        ge=1,
        le=HARD_MAX_RECURRENCE_OCCURRENCES)
    completion_timeout_seconds: float = Field(
        default=DEFAULT_COMPLETION_TIMEOUT_SECONDS, gt=0)
    event_system_timeout_seconds: float = Field(
        default=DEFAULT_EVENT_SYSTEM_TIMEOUT_SECONDS, gt=0)
    default_event_duration_minutes: int = Field(
        default=DEFAULT_EVENT_DURATION_MINUTES, ge=1)
    max_intents: int = Field(default=MAX_INTENTS_PER_PROMPT, ge=1)
    max_prior_turns: int = Field(default=MAX_PRIOR_TURNS, ge=0)
    max_completion_tokens: int = Field(default=MAX_COMPLETION_TOKENS, ge=256)
    llm_debug: bool = False

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        cleaned = (value or "").strip()
        try:
            ZoneInfo(cleaned)
        except Exception as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return cleaned

    @field_validator("reasoning_effort")
    @classmethod
    def _check_reasoning_effort(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        cleaned = value.strip().lower()
        if cleaned not in {"low", "medium", "high"}:
            raise ValueError("reasoning_effort must be low, medium or high")
        return cleaned

    @property
    def has_api_key(self) -> bool:
        return bool(self.openai_api_key.strip())


def _env_value(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def load_settings(**overrides: Any) -> AssistantSettings:
    """Build settings from the environment; raises ConfigurationError on bad values."""
    values: Dict[str, Any] = {
        "openai_api_key": OPENAI_API_KEY,
        "llm_debug": LLM_DEBUG,
    }
    env_fields = {
        "model": "ASSISTANT_MODEL",
        "reasoning_effort": "OPENAI_REASONING_EFFORT",
        "timezone": "ASSISTANT_TIMEZONE",
        "max_recurrence_occurrences": "ASSISTANT_MAX_RECURRENCE",
        "completion_timeout_seconds": "ASSISTANT_COMPLETION_TIMEOUT",
        "event_system_timeout_seconds": "ASSISTANT_EVENT_TIMEOUT",
        "default_event_duration_minutes": "ASSISTANT_DEFAULT_DURATION",
    }
    for field_name, env_name in env_fields.items():
        value = _env_value(env_name)
        if value is not None:
            values[field_name] = value
    values.update(overrides)
    try:
        return AssistantSettings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors())
        raise ConfigurationError(f"Invalid assistant settings: {problems}") from exc

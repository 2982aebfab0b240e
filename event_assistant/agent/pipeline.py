from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from ..config import AssistantSettings
from ..errors import (ConfigurationError, EmptyPrompt, InvalidPriorContext,
                      PipelineError)
from ..models import PriorTurn
from ..store import EventSystem
from .executor import ActionExecutor, PriorResults
from .intent_parser import IntentParser
from .llm_provider import CompletionClient
from .normalizer import normalize_input_as_text, now_in_timezone, resolve_timezone
from .reporter import build_error_response, build_response
from .schemas import AssistantResponse, IntentOutcome, Prompt
from .validator import IntentValidator

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):

  def get_api_key(self) -> str:
    ...


def _prior_turns(prior_context: Optional[Iterable[Any]]) -> List[PriorTurn]:
  turns: List[PriorTurn] = []
  for index, turn in enumerate(prior_context or []):
    if isinstance(turn, PriorTurn):
      turns.append(turn)
      continue
    try:
      turns.append(PriorTurn.model_validate(turn))
    except ValidationError as exc:
      raise InvalidPriorContext(f"Prior turn {index} is malformed.",
                                {"errors": [e["msg"] for e in exc.errors()]}) from exc
  return turns


class AssistantPipeline:
  """Prompt -> parse -> validate -> execute -> report, for a single request."""

  def __init__(self,
               settings: AssistantSettings,
               parser: IntentParser,
               validator: IntentValidator,
               executor: ActionExecutor):
    self.settings = settings
    self.parser = parser
    self.validator = validator
    self.executor = executor

  @classmethod
  def from_settings(cls,
                    settings: AssistantSettings,
                    event_system: EventSystem,
                    client: Optional[Any] = None) -> "AssistantPipeline":
    completion = CompletionClient.from_settings(settings, client=client)
    return cls(
        settings=settings,
        parser=IntentParser(completion,
                            max_intents=settings.max_intents,
                            max_prior_turns=settings.max_prior_turns),
        validator=IntentValidator(settings.max_recurrence_occurrences),
        executor=ActionExecutor(event_system, settings),
    )

  async def process_prompt(self,
                           text: Optional[str],
                           prior_context: Optional[Iterable[Any]] = None,
                           user: Optional[str] = None,
                           timezone: Optional[str] = None) -> AssistantResponse:
    prompt_text = normalize_input_as_text(text)
    timezone_name = resolve_timezone(timezone, self.settings.timezone)
    now = now_in_timezone(timezone_name)
    now_iso = now.isoformat(timespec="minutes")

    try:
      if not prompt_text:
        raise EmptyPrompt("Prompt is required.")
      prompt = Prompt(text=prompt_text,
                      user=user,
                      timezone=timezone_name,
                      prior_context=_prior_turns(prior_context))
      parsed = await self.parser.parse(prompt, now)
    except PipelineError as exc:
      logger.warning("[PIPELINE] aborted (%s): %s", exc.code, exc.message)
      return build_error_response(prompt_text, timezone_name, now_iso, exc)

    validations = self.validator.validate_all(parsed.intents)
    prior_results: PriorResults = {}
    outcomes: List[IntentOutcome] = []
    for index, (intent, validation) in enumerate(zip(parsed.intents, validations)):
      execution = None
      if validation.accepted:
        execution = await self.executor.execute(intent, prior_results, timezone_name)
      prior_results[intent.ref] = execution
      outcomes.append(IntentOutcome(index=index,
                                    intent=intent,
                                    validation=validation,
                                    execution=execution))

    response = build_response(prompt_text, timezone_name, now_iso, outcomes,
                              parsed.clarification)
    logger.info("[PIPELINE] user=%s status=%s intents=%d", user or "-",
                response.status, len(outcomes))
    return response


async def process_prompt(prompt_text: Optional[str],
                         prior_context: Optional[Iterable[Any]] = None,
                         *,
                         settings: AssistantSettings,
                         credentials: CredentialStore,
                         event_system: EventSystem,
                         user: Optional[str] = None,
                         timezone: Optional[str] = None,
                         client: Optional[Any] = None) -> AssistantResponse:
  """Caller boundary. Raises ConfigurationError before any work when no key is stored."""
  api_key = (credentials.get_api_key() or "").strip()
  if not api_key:
    raise ConfigurationError("OpenAI API key is not configured.")
  request_settings = settings.model_copy(update={"openai_api_key": api_key})
  pipeline = AssistantPipeline.from_settings(request_settings, event_system,
                                             client=client)
  return await pipeline.process_prompt(prompt_text, prior_context,
                                       user=user, timezone=timezone)

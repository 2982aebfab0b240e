from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from ..config import AssistantSettings
from ..errors import CompletionTimeout, ParseFailure, SchemaViolation

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# One retry on transient connection failures; timeouts and API errors are final.
_MAX_CONNECTION_ATTEMPTS = 2


def _extract_message_text(content: Any) -> str:
  if isinstance(content, str):
    return content.strip()
  if isinstance(content, list):
    chunks = []
    for item in content:
      if isinstance(item, dict):
        text_val = item.get("text")
        if isinstance(text_val, str) and text_val.strip():
          chunks.append(text_val.strip())
      elif isinstance(item, str) and item.strip():
        chunks.append(item.strip())
    return " ".join(chunks).strip()
  return ""


def _clean_json_text(text: str) -> str:
  cleaned = (text or "").strip()
  if cleaned.startswith("```"):
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned).strip()
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
  return cleaned


def _validate_structured_response(response_model: Type[T], raw_output: str) -> T:
  """Strip code fences, then validate strictly; raise SchemaViolation on mismatch."""
  if not raw_output:
    raise SchemaViolation("Completion service returned an empty response.")
  cleaned = _clean_json_text(raw_output)
  try:
    data = json.loads(cleaned)
  except ValueError as exc:
    raise SchemaViolation(
        "Completion service returned non-JSON output.",
        {"raw_output": raw_output[:500]}) from exc
  try:
    return response_model.model_validate(data)
  except ValidationError as exc:
    problems = [
        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()[:10]
    ]
    raise SchemaViolation(
        f"Completion output does not match the {response_model.__name__} schema.",
        {"errors": problems}) from exc


def _compose_openai_messages(system_prompt: str,
                             developer_prompt: Optional[str],
                             user_content: str) -> List[Dict[str, str]]:
  instruction = system_prompt
  if isinstance(developer_prompt, str) and developer_prompt.strip():
    instruction = f"{instruction}\n\n{developer_prompt.strip()}"

  # JSON mode requires the word "json" somewhere in the system prompt.
  if "json" not in instruction.lower():
    instruction += "\n\nResponse must be a valid JSON object."

  return [
      {
          "role": "system",
          "content": instruction,
      },
      {
          "role": "user",
          "content": user_content,
      },
  ]


class CompletionClient:
  """Structured JSON completions against the OpenAI chat API."""

  def __init__(self,
               api_key: str,
               model: str,
               timeout_seconds: float,
               max_completion_tokens: int = 4000,
               reasoning_effort: Optional[str] = None,
               client: Optional[Any] = None):
    self.model = model
    self.timeout_seconds = timeout_seconds
    self.max_completion_tokens = max_completion_tokens
    self.reasoning_effort = reasoning_effort
    self._client = client or AsyncOpenAI(api_key=api_key,
                                         timeout=timeout_seconds,
                                         max_retries=0)

  @classmethod
  def from_settings(cls, settings: AssistantSettings,
                    client: Optional[Any] = None) -> "CompletionClient":
    return cls(
        api_key=settings.openai_api_key,
        model=settings.model,
        timeout_seconds=settings.completion_timeout_seconds,
        max_completion_tokens=settings.max_completion_tokens,
        reasoning_effort=settings.reasoning_effort,
        client=client,
    )

  async def _create(self, messages: List[Dict[str, str]]) -> Any:
    kwargs: Dict[str, Any] = {
        "model": self.model,
        "messages": messages,
        "response_format": {"type": "json_object"},
        "max_completion_tokens": self.max_completion_tokens,
    }
    if self.reasoning_effort:
      kwargs["reasoning_effort"] = self.reasoning_effort
    return await asyncio.wait_for(
        self._client.chat.completions.create(**kwargs),
        timeout=self.timeout_seconds,
    )

  async def complete_structured(self,
                                *,
                                system_prompt: str,
                                developer_prompt: Optional[str],
                                user_payload: Dict[str, Any],
                                response_model: Type[T]) -> Tuple[T, str]:
    user_content = json.dumps(user_payload, ensure_ascii=False)
    messages = _compose_openai_messages(system_prompt, developer_prompt,
                                        user_content)

    completion: Any = None
    for attempt in range(1, _MAX_CONNECTION_ATTEMPTS + 1):
      try:
        completion = await self._create(messages)
        break
      except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
        logger.warning("[LLM] model=%s timed out after %ss", self.model,
                       self.timeout_seconds)
        raise CompletionTimeout(
            f"Completion service did not answer within {self.timeout_seconds:g}s.") from exc
      except openai.APIConnectionError as exc:
        if attempt < _MAX_CONNECTION_ATTEMPTS:
          logger.warning("[LLM] connection error (attempt %d), retrying: %s",
                         attempt, exc)
          continue
        raise ParseFailure(f"Completion service unreachable: {exc}") from exc
      except openai.APIError as exc:
        logger.error("[LLM] model=%s API error: %s", self.model, exc)
        raise ParseFailure(f"Completion service error: {exc}") from exc

    try:
      raw_output = _extract_message_text(completion.choices[0].message.content)
    except (AttributeError, IndexError) as exc:
      raise SchemaViolation("Completion response had no message content.") from exc
    logger.debug("[LLM RAW] model=%s\n%s", self.model, raw_output or "(empty)")
    return _validate_structured_response(response_model, raw_output), raw_output

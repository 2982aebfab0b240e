"""Tests for the structured completion client."""

import asyncio

import httpx
import openai
import pytest

from event_assistant.agent.llm_provider import CompletionClient, _clean_json_text
from event_assistant.agent.schemas import ParserOutput
from event_assistant.errors import CompletionTimeout, ParseFailure, SchemaViolation

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _client(fake, timeout=5.0):
    return CompletionClient(api_key="sk-test", model="gpt-4o-mini",
                            timeout_seconds=timeout, client=fake)


async def _complete(client):
    return await client.complete_structured(system_prompt="Return JSON.",
                                            developer_prompt=None,
                                            user_payload={"user_text": "hi"},
                                            response_model=ParserOutput)


def test_clean_json_text_strips_fences():
    assert _clean_json_text('```json\n{"intents": []}\n```') == '{"intents": []}'
    assert _clean_json_text('{"a": 1}') == '{"a": 1}'


@pytest.mark.asyncio
async def test_fenced_output_accepted(fake_openai):
    fake = fake_openai(['```json\n{"intents": [{"ref": "i1", "kind": "list_venues"}]}\n```'])
    parsed, raw = await _complete(_client(fake))
    assert parsed.intents[0].kind == "list_venues"
    assert raw.startswith("```json")


@pytest.mark.asyncio
async def test_request_uses_json_mode(fake_openai):
    fake = fake_openai([{"intents": []}])
    await _complete(_client(fake))
    call = fake.completions.calls[0]
    assert call["response_format"] == {"type": "json_object"}
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"][0]["role"] == "system"


@pytest.mark.asyncio
async def test_non_json_output_is_schema_violation(fake_openai):
    fake = fake_openai(["Sure! I created your event."])
    with pytest.raises(SchemaViolation):
        await _complete(_client(fake))


@pytest.mark.asyncio
async def test_empty_output_is_schema_violation(fake_openai):
    fake = fake_openai([""])
    with pytest.raises(SchemaViolation):
        await _complete(_client(fake))


@pytest.mark.asyncio
async def test_timeout_raises_completion_timeout(fake_openai):
    async def slow():
        await asyncio.sleep(1)

    fake = fake_openai([slow])
    with pytest.raises(CompletionTimeout) as exc_info:
        await _complete(_client(fake, timeout=0.01))
    assert exc_info.value.code == "timeout"
    assert len(fake.completions.calls) == 1


@pytest.mark.asyncio
async def test_sdk_timeout_is_not_retried(fake_openai):
    fake = fake_openai([openai.APITimeoutError(request=_REQUEST), {"intents": []}])
    with pytest.raises(CompletionTimeout):
        await _complete(_client(fake))
    assert len(fake.completions.calls) == 1


@pytest.mark.asyncio
async def test_connection_error_retried_once(fake_openai):
    fake = fake_openai([openai.APIConnectionError(request=_REQUEST), {"intents": []}])
    parsed, _ = await _complete(_client(fake))
    assert parsed.intents == []
    assert len(fake.completions.calls) == 2


@pytest.mark.asyncio
async def test_second_connection_error_is_parse_failure(fake_openai):
    fake = fake_openai([openai.APIConnectionError(request=_REQUEST),
                        openai.APIConnectionError(request=_REQUEST)])
    with pytest.raises(ParseFailure) as exc_info:
        await _complete(_client(fake))
    assert exc_info.value.code == "parse_failure"
    assert len(fake.completions.calls) == 2


@pytest.mark.asyncio
async def test_api_error_is_parse_failure_without_retry(fake_openai):
    response = httpx.Response(500, request=_REQUEST)
    error = openai.InternalServerError("server error", response=response, body=None)
    fake = fake_openai([error, {"intents": []}])
    with pytest.raises(ParseFailure):
        await _complete(_client(fake))
    assert len(fake.completions.calls) == 1

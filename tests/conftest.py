"""Pytest configuration and fixtures."""

import json
from types import SimpleNamespace

import pytest

from event_assistant.config import AssistantSettings
from event_assistant.options import OptionsStore
from event_assistant.store import InMemoryEventStore


class FakeChatCompletions:
    """Stands in for ``AsyncOpenAI().chat.completions``.

    Each queued item is either raw message content, an exception to raise,
    or an async callable awaited in place of the request.
    """

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        item = self.outputs.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        if not isinstance(item, str):
            item = json.dumps(item)
        message = SimpleNamespace(content=item)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, outputs):
        self.completions = FakeChatCompletions(outputs)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def settings():
    """Provide settings fixture."""
    return AssistantSettings(openai_api_key="sk-test",
                             timezone="UTC",
                             completion_timeout_seconds=5.0,
                             event_system_timeout_seconds=5.0)


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def options(tmp_path):
    return OptionsStore(tmp_path / "options.json", env_api_key="")


@pytest.fixture
def fake_openai():
    """Factory: ``fake_openai(output1, output2, ...)``."""
    return FakeOpenAI

"""End-to-end pipeline tests: fake completion service, real in-memory event store."""

import asyncio

import pytest

from event_assistant.agent.pipeline import AssistantPipeline, process_prompt
from event_assistant.errors import ConfigurationError, EventSystemUnavailable
from event_assistant.models import EventQuery
from event_assistant.store import InMemoryEventStore

BOOK_CLUB = {
    "ref": "i1", "kind": "create_event", "title": "Book Club",
    "start": "2026-03-17T19:00", "venue_name": None,
    "recurrence": {"freq": "MONTHLY", "byweekday": [1], "bysetpos": 3, "count": 6},
}


async def _run(settings, options, store, fake_openai, *outputs, prompt="do it"):
    options.save_settings({"openai_api_key": "sk-test"})
    client = fake_openai(list(outputs))
    response = await process_prompt(prompt, settings=settings, credentials=options,
                                    event_system=store, client=client)
    return response, client


@pytest.mark.asyncio
async def test_entries_match_intents_in_order(settings, options, store, fake_openai):
    intents = [
        {"ref": "i1", "kind": "create_venue", "name": "Riverside Hall"},
        BOOK_CLUB | {"ref": "i2"},
        {"ref": "i3", "kind": "list_events", "filter": {"title_contains": "Book"}},
        {"ref": "i4", "kind": "list_venues"},
    ]
    response, _ = await _run(settings, options, store, fake_openai, {"intents": intents})

    assert response.status == "completed"
    assert [e.intent.kind for e in response.entries] == [
        "create_venue", "create_event", "list_events", "list_venues"]
    assert [e.index for e in response.entries] == [0, 1, 2, 3]
    assert len(response.entries[1].execution.created_ids) == 6
    assert len(response.entries[2].execution.items) == 6


@pytest.mark.asyncio
async def test_recurrence_over_maximum_rejected_not_capped(settings, options, store,
                                                           fake_openai):
    intent = BOOK_CLUB | {"recurrence": {"freq": "WEEKLY", "count": 500}}
    response, _ = await _run(settings, options, store, fake_openai, {"intents": [intent]})

    entry = response.entries[0]
    assert entry.validation.reason == "exceeds_recurrence_limit"
    assert entry.execution is None
    assert store.list_events(EventQuery()) == []
    assert response.status == "failed"


@pytest.mark.asyncio
async def test_update_matching_nothing_is_success(settings, options, store, fake_openai):
    intent = {"ref": "i1", "kind": "update_event",
              "filter": {"title_contains": "Book Club"},
              "changes": {"start_time": "20:00"}}
    response, _ = await _run(settings, options, store, fake_openai, {"intents": [intent]})

    execution = response.entries[0].execution
    assert execution.succeeded
    assert execution.updated_ids == []
    assert "no matching events" in response.summary


@pytest.mark.asyncio
async def test_valid_intent_runs_next_to_invalid_one(settings, options, store, fake_openai):
    intents = [
        {"ref": "i1", "kind": "create_event", "title": "Yoga", "start": "2026-03-06T08:00"},
        {"ref": "i2", "kind": "create_event", "title": "Party", "start": "next-ish"},
    ]
    response, _ = await _run(settings, options, store, fake_openai, {"intents": intents})

    first, second = response.entries
    assert first.ok
    assert not second.validation.accepted
    assert second.validation.reason == "ambiguous_date"
    assert response.status == "partial"
    assert [e.title for e in store.list_events(EventQuery())] == ["Yoga"]
    assert "- i2 create_event rejected (ambiguous_date, start)" in response.summary


@pytest.mark.asyncio
async def test_event_at_rejected_venue_is_dependency_unresolved(settings, options, store,
                                                                fake_openai):
    intents = [
        {"ref": "i1", "kind": "create_venue", "name": ""},
        {"ref": "i2", "kind": "create_event", "title": "Meetup",
         "start": "2026-03-06T18:00", "venue_ref": "i1", "depends_on": ["i1"]},
    ]
    response, _ = await _run(settings, options, store, fake_openai, {"intents": intents})

    venue, event = response.entries
    assert venue.validation.reason == "missing_required_field"
    assert event.validation.accepted
    assert event.execution.error_code == "dependency_unresolved"
    assert store.list_events(EventQuery()) == []


@pytest.mark.asyncio
async def test_event_at_failed_venue_is_not_attempted(settings, options, store, fake_openai):
    def broken_create_venue(payload):
        raise EventSystemUnavailable("connection refused")

    store.create_venue = broken_create_venue
    intents = [
        {"ref": "i1", "kind": "create_venue", "name": "Riverside Hall"},
        {"ref": "i2", "kind": "create_event", "title": "Meetup",
         "start": "2026-03-06T18:00", "venue_ref": "i1", "depends_on": ["i1"]},
    ]
    response, _ = await _run(settings, options, store, fake_openai, {"intents": intents})

    venue, event = response.entries
    assert venue.execution.error_code == "unreachable"
    assert event.execution.error_code == "dependency_unresolved"
    assert store.list_events(EventQuery()) == []
    assert response.status == "failed"


@pytest.mark.asyncio
async def test_identical_prompts_create_distinct_events(settings, options, store,
                                                        fake_openai):
    output = {"intents": [{"ref": "i1", "kind": "create_event", "title": "Yoga",
                           "start": "2026-03-06T08:00"}]}
    first, _ = await _run(settings, options, store, fake_openai, output)
    second, _ = await _run(settings, options, store, fake_openai, output)

    first_id = first.entries[0].execution.created_ids[0]
    second_id = second.entries[0].execution.created_ids[0]
    assert first_id != second_id
    assert len(store.list_events(EventQuery(title_contains="Yoga"))) == 2


@pytest.mark.asyncio
async def test_completion_timeout_is_single_top_level_error(options, store, fake_openai,
                                                            settings):
    async def slow():
        await asyncio.sleep(1)

    fast_settings = settings.model_copy(update={"completion_timeout_seconds": 0.01})
    response, client = await _run(fast_settings, options, store, fake_openai, slow)

    assert response.status == "error"
    assert response.error.code == "timeout"
    assert response.entries == []
    assert len(client.completions.calls) == 1
    assert store.list_events(EventQuery()) == []


@pytest.mark.asyncio
async def test_schema_violation_is_top_level_error(settings, options, store, fake_openai):
    response, _ = await _run(settings, options, store, fake_openai,
                             {"intents": [{"ref": "i1", "kind": "delete_everything"}]})
    assert response.status == "error"
    assert response.error.code == "schema_violation"
    assert response.entries == []


@pytest.mark.asyncio
async def test_missing_credential_raises_before_pipeline(settings, options, store,
                                                         fake_openai):
    client = fake_openai([{"intents": []}])
    with pytest.raises(ConfigurationError):
        await process_prompt("list my events", settings=settings, credentials=options,
                             event_system=store, client=client)
    assert client.completions.calls == []


@pytest.mark.asyncio
async def test_empty_prompt_skips_completion(settings, store, fake_openai):
    client = fake_openai([])
    pipeline = AssistantPipeline.from_settings(settings, store, client=client)
    response = await pipeline.process_prompt("   ")
    assert response.status == "error"
    assert response.error.code == "empty_prompt"
    assert client.completions.calls == []


@pytest.mark.asyncio
async def test_book_club_then_move_to_eight(settings, options, store, fake_openai):
    await _run(settings, options, store, fake_openai, {"intents": [BOOK_CLUB]})
    response, _ = await _run(settings, options, store, fake_openai, {"intents": [{
        "ref": "i1", "kind": "update_event", "filter": {"title_contains": "Book Club"},
        "changes": {"start_time": "20:00"}}]})

    assert len(response.entries[0].execution.updated_ids) == 6
    starts = [e.start for e in store.list_events(EventQuery(title_contains="Book Club"))]
    assert all(start.endswith("T20:00") for start in starts)


@pytest.mark.asyncio
async def test_malformed_prior_context_is_top_level_error(settings, store, fake_openai):
    client = fake_openai([])
    pipeline = AssistantPipeline.from_settings(settings, store, client=client)
    response = await pipeline.process_prompt("move it to 8pm",
                                             prior_context=[{"response": "no prompt"}])
    assert response.status == "error"
    assert response.error.code == "invalid_prior_context"
    assert response.entries == []
    assert client.completions.calls == []


@pytest.mark.asyncio
async def test_write_failure_is_local_to_its_intent(settings, options, tmp_path, fake_openai):
    broken_store = InMemoryEventStore(tmp_path / "missing" / "events.json")
    intents = [
        {"ref": "i1", "kind": "create_event", "title": "Yoga", "start": "2026-03-06T08:00"},
        {"ref": "i2", "kind": "list_events", "filter": {"title_contains": "Yoga"}},
    ]
    response, _ = await _run(settings, options, broken_store, fake_openai,
                             {"intents": intents})

    created, listed = response.entries
    assert created.execution.error_code == "unreachable"
    assert listed.execution.succeeded
    assert listed.execution.items == []
    assert response.status == "partial"

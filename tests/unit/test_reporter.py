"""Tests for the deterministic result reporter."""

from event_assistant.agent.reporter import build_error_response, build_response
from event_assistant.agent.schemas import (CreateEventIntent, CreateVenueIntent,
                                           EventChanges, EventFilter, ExecutionResult,
                                           IntentOutcome, ListEventsIntent,
                                           UpdateEventIntent, ValidationResult)
from event_assistant.errors import CompletionTimeout
from event_assistant.models import RecurrenceRule


def _outcome(index, intent, validation=None, execution=None):
    return IntentOutcome(index=index, intent=intent,
                         validation=validation or ValidationResult.accept(),
                         execution=execution)


def _build(outcomes, clarification=None):
    return build_response("prompt", "UTC", "2026-03-02T10:00+00:00", outcomes, clarification)


def test_all_succeeded_is_completed():
    intent = CreateEventIntent(
        ref="i1", kind="create_event", title="Book Club", start="2026-03-17T19:00",
        recurrence=RecurrenceRule(freq="MONTHLY", byweekday=[1], bysetpos=3, count=6))
    execution = ExecutionResult(succeeded=True, created_ids=[1, 2, 3, 4, 5, 6],
                                items=[{"start": "2026-03-17T19:00", "title": "Book Club"}])
    response = _build([_outcome(0, intent, execution=execution)])
    assert response.status == "completed"
    assert response.summary.splitlines() == [
        "Processed 1 request: 1 succeeded, 0 failed.",
        '- i1 create_event: created 6 events "Book Club" (monthly on the 3rd Tuesday, '
        '6 times), first on 2026-03-17 19:00.',
    ]


def test_partial_lists_each_failure_with_reason():
    ok = _outcome(0, CreateVenueIntent(ref="i1", kind="create_venue", name="Hall"),
                  execution=ExecutionResult(succeeded=True, created_ids=[1]))
    rejected = _outcome(
        1, CreateEventIntent(ref="i2", kind="create_event", title="Standup"),
        validation=ValidationResult.reject("missing_required_field", "start",
                                           "The event needs a start date and time."))
    failed = _outcome(
        2, ListEventsIntent(ref="i3", kind="list_events"),
        execution=ExecutionResult(succeeded=False, error_code="unreachable",
                                  error="connection refused"))
    response = _build([ok, rejected, failed])

    assert response.status == "partial"
    assert [entry.index for entry in response.entries] == [0, 1, 2]
    assert ("- i2 create_event rejected (missing_required_field, start): "
            "The event needs a start date and time.") in response.summary
    assert "- i3 list_events failed (unreachable): connection refused" in response.summary


def test_update_with_no_matches_reported():
    intent = UpdateEventIntent(ref="i1", kind="update_event",
                               filter=EventFilter(title_contains="Gala"),
                               changes=EventChanges(title="Ball"))
    response = _build([_outcome(0, intent, execution=ExecutionResult(succeeded=True))])
    assert response.status == "completed"
    assert "- i1 update_event: no matching events." in response.summary


def test_all_failed_is_failed():
    intent = ListEventsIntent(ref="i1", kind="list_events")
    execution = ExecutionResult(succeeded=False, error_code="permission_denied",
                                error="Sorry, you are not allowed to do that.")
    assert _build([_outcome(0, intent, execution=execution)]).status == "failed"


def test_clarification_only():
    response = _build([], clarification="Which event do you mean?")
    assert response.status == "completed"
    assert response.entries == []
    assert response.summary == "Which event do you mean?"


def test_listing_is_truncated_in_summary_only():
    items = [{"title": f"Event {n}", "start": f"2026-03-{n:02d}T10:00"} for n in range(1, 13)]
    intent = ListEventsIntent(ref="i1", kind="list_events")
    response = _build([_outcome(0, intent,
                                execution=ExecutionResult(succeeded=True, items=items))])
    assert "found 12 events" in response.summary
    assert "… and 2 more" in response.summary
    assert len(response.entries[0].execution.items) == 12


def test_error_response_has_no_entries():
    response = build_error_response("prompt", "UTC", "2026-03-02T10:00+00:00",
                                    CompletionTimeout("Completion service did not answer."))
    assert response.status == "error"
    assert response.entries == []
    assert response.error.code == "timeout"
    assert "timeout" in response.summary

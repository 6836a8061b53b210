from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from attention_deck.models import LinkedEntity
from attention_deck.normalizers import (
    normalize_calendar,
    normalize_commitments,
    normalize_companies,
    normalize_inbox,
    normalize_tasks,
)


NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
TZ = ZoneInfo("America/New_York")


def test_tasks_map_schedule_flags_and_links() -> None:
    items = normalize_tasks(
        [
            {
                "id": "1",
                "content": "  Call   founder ",
                "priority": "high",
                "company_id": "acme",
                "scheduled_for": "2026-03-01",
            },
            {
                "id": "2",
                "title": "Prep memo",
                "pipeline_company_id": "beacon",
                "scheduled_for": "2026-03-01",
                "snoozed_until": "2026-03-04T14:00:00Z",
            },
            {"id": "3", "project_id": "p9", "scheduled_for": "not a date", "is_top_priority": True},
        ],
        now=NOW,
        tz=TZ,
    )
    first, second, third = items

    assert first.id == "task:1"
    assert first.source_type == "task"
    assert first.title == "Call founder"
    assert first.is_explicit_priority
    assert first.linked_entity == LinkedEntity(type="portfolio", id="acme")
    assert first.due_at == datetime(2026, 3, 1, tzinfo=TZ)

    assert not second.is_explicit_priority
    assert second.linked_entity == LinkedEntity(type="pipeline", id="beacon")
    assert second.due_at == datetime(2026, 3, 4, 14, 0, tzinfo=timezone.utc)

    # malformed dates keep the item, without a due date
    assert third.due_at is None
    assert third.title == "Untitled task"
    assert third.is_explicit_priority
    assert third.linked_entity == LinkedEntity(type="project", id="p9")
    assert third.created_at == NOW


def test_inbox_uses_snooze_as_due_date_and_skips_resolved() -> None:
    items = normalize_inbox(
        [
            {"id": "a", "subject": "Quarterly numbers", "received_at": "2026-02-27T10:00:00Z"},
            {
                "id": "b",
                "subject": "Follow up",
                "received_at": "2026-02-20T10:00:00Z",
                "snoozed_until": "2026-03-03T13:00:00Z",
                "related_company_id": "beacon",
                "related_company_type": "pipeline",
            },
            {"id": "c", "subject": "Done", "is_resolved": True},
            {"id": "d", "subject": "Spam", "is_deleted": True},
        ],
        now=NOW,
        tz=TZ,
    )

    assert [item.id for item in items] == ["email:a", "email:b"]
    plain, snoozed = items
    assert plain.due_at is None
    assert plain.created_at == datetime(2026, 2, 27, 10, 0, tzinfo=timezone.utc)
    assert snoozed.due_at == datetime(2026, 3, 3, 13, 0, tzinfo=timezone.utc)
    assert snoozed.linked_entity == LinkedEntity(type="pipeline", id="beacon")


def test_calendar_keeps_today_and_future_within_lookahead() -> None:
    items = normalize_calendar(
        [
            {"id": "past", "title": "Yesterday sync", "start_time": "2026-03-01T15:00:00Z"},
            {"id": "early", "title": "Breakfast", "start_time": "2026-03-02T13:00:00Z"},
            {"id": "soon", "title": "Board prep", "start_time": "2026-03-03T16:00:00Z"},
            {"id": "far", "title": "Offsite", "start_time": "2026-03-20T16:00:00Z"},
            {"id": "broken", "title": "Mystery", "start_time": "sometime"},
            {"id": "off", "title": "Cancelled call", "start_time": "2026-03-02T18:00:00Z", "is_cancelled": True},
        ],
        now=NOW,
        tz=TZ,
        lookahead_hours=48,
    )

    by_id = {item.source_id: item for item in items}
    assert set(by_id) == {"early", "soon", "broken", "off"}
    assert by_id["broken"].due_at is None
    assert by_id["off"].completed
    assert not by_id["early"].completed


def test_calendar_without_lookahead_keeps_far_events() -> None:
    items = normalize_calendar(
        [{"id": "far", "title": "Offsite", "start_time": "2026-03-20T16:00:00Z"}],
        now=NOW,
        tz=TZ,
        lookahead_hours=None,
    )
    assert [item.id for item in items] == ["calendar:far"]


def test_commitments_flag_owed_by_me_and_fall_back_to_expected_by() -> None:
    items = normalize_commitments(
        [
            {"id": "1", "title": "Send deck", "direction": "owed_by_me", "status": "open", "due_at": "2026-03-05"},
            {
                "id": "2",
                "title": "Data room",
                "direction": "owed_to_me",
                "status": "waiting_on",
                "expected_by": "2026-03-01",
                "person_id": "p-7",
            },
            {"id": "3", "title": "Old promise", "direction": "owed_by_me", "status": "fulfilled"},
        ],
        now=NOW,
        tz=TZ,
    )
    owed, waiting, done = items

    assert owed.is_explicit_priority
    assert owed.due_at == datetime(2026, 3, 5, tzinfo=TZ)
    assert not waiting.is_explicit_priority
    assert waiting.due_at == datetime(2026, 3, 1, tzinfo=TZ)
    assert waiting.linked_entity == LinkedEntity(type="person", id="p-7")
    assert done.completed
    assert not done.is_explicit_priority


def test_companies_skip_closed_records_and_read_overrides() -> None:
    companies = normalize_companies(
        portfolio=[
            {"id": "acme", "name": "Acme", "next_task": "  "},
            {"id": "gone", "name": "Gone", "status": "archived"},
            {
                "id": "zen",
                "name": "Zenith",
                "next_step": "Check in",
                "attention_overrides": [{"weight": -0.5, "description": "Founder on leave"}],
            },
        ],
        pipeline=[
            {"id": "beacon", "name": "Beacon", "next_steps": "Partner vote", "close_date": "2026-03-10"},
            {"id": "nope", "name": "Nope", "status": "passed"},
        ],
        now=NOW,
        tz=TZ,
    )

    by_id = {company.id: company for company in companies}
    assert set(by_id) == {"acme", "zen", "beacon"}
    assert by_id["acme"].next_step is None
    assert by_id["zen"].next_step == "Check in"
    assert by_id["beacon"].entity_type == "pipeline"
    assert by_id["beacon"].next_step == "Partner vote"
    assert by_id["beacon"].close_date == datetime(2026, 3, 10, tzinfo=TZ)

    (override,) = by_id["zen"].overrides
    assert override.source == "manual"
    assert override.weight == -0.5
    assert override.timestamp == NOW

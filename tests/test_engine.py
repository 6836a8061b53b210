from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

from attention_deck.brief import render_brief
from attention_deck.config import load_config
from attention_deck.dashboard_services import (
    bucket_counts,
    build_source_panels,
    companies_view,
    debug_view,
    source_counts,
)
from attention_deck.engine import PriorityEngine, SourceSnapshot
from attention_deck.models import priority_item_to_dict
from attention_deck.snapshot_producer import JsonFileRepository, fetch_snapshot
from attention_deck.suggestions import RecordSuggestionClient, collect_annotations


ROOT = Path(__file__).resolve().parents[1]
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
PAYLOAD = ROOT / "tests" / "fixtures" / "source_payload.json"

EXPECTED_ORDER = [
    "task:t1",
    "commitment:m2",
    "task:t2",
    "calendar:c1",
    "commitment:m1",
    "task:t5",
    "task:t3",
    "calendar:c2",
    "email:e1",
]


class FlakyRepository(JsonFileRepository):
    def fetch(self, source: str, *, user_id: str | None = None) -> list[dict]:
        if source == "calendar":
            raise ConnectionError("calendar backend unavailable")
        return super().fetch(source, user_id=user_id)


def _engine() -> PriorityEngine:
    return PriorityEngine(load_config(ROOT / "config" / "attention_deck.yaml"))


def _snapshot() -> SourceSnapshot:
    return fetch_snapshot(JsonFileRepository(PAYLOAD))


def _serialized(result) -> str:
    return json.dumps([priority_item_to_dict(item) for item in result.items], sort_keys=True)


def test_fixture_pass_ranks_by_bucket_then_score() -> None:
    result = _engine().compute(_snapshot(), NOW)

    assert [item.id for item in result.items] == EXPECTED_ORDER
    assert [item.priority_score for item in result.items] == [315, 295, 750, 210, 640, 170, 135, 130, 70]
    assert bucket_counts(result) == {"overdue": 2, "due_today": 2, "upcoming": 4, "none": 1}
    assert source_counts(result) == {"task": 4, "email": 1, "calendar": 2, "commitment": 2}
    assert dict(result.excluded) == {"email:e2": "superseded"}
    assert not result.is_degraded

    top = result.top(8)
    assert [item.id for item in top] == EXPECTED_ORDER[:8]
    assert result.items[0].reasoning == "Overdue by 3 days. Linked to portfolio:acme."
    assert result.items[4].reasoning == "Due in 3 days. You owe this. Linked to portfolio:acme."


def test_fixture_pass_builds_company_attention() -> None:
    result = _engine().compute(_snapshot(), NOW)

    assert [(state.company_id, state.status) for state in result.companies] == [
        ("acme", "red"),
        ("beacon", "yellow"),
        ("zenith", "green"),
    ]
    acme = result.company("acme")
    assert acme is not None
    assert acme.name == "Acme Corp"
    assert acme.score == pytest.approx(1.9 + 0.3 * (1 - (34 / 24) / 30))
    assert result.company("zenith").signals == ()
    assert result.company("oldco") is None
    assert companies_view(result)["summary"]["summary_text"] == "1 red • 1 yellow"


def test_identical_inputs_give_identical_output() -> None:
    engine = _engine()
    snapshot = _snapshot()
    shuffled = replace(
        snapshot,
        tasks=list(reversed(snapshot.tasks)),
        inbox=list(reversed(snapshot.inbox)),
        calendar=list(reversed(snapshot.calendar)),
        commitments=list(reversed(snapshot.commitments)),
    )

    first = engine.compute(snapshot, NOW)
    second = engine.compute(snapshot, NOW)
    third = engine.compute(shuffled, NOW)

    assert _serialized(first) == _serialized(second) == _serialized(third)
    assert first.companies == third.companies
    assert first.excluded == third.excluded


def test_failed_source_degrades_the_pass() -> None:
    snapshot = fetch_snapshot(FlakyRepository(PAYLOAD))
    result = _engine().compute(snapshot, NOW)

    assert snapshot.failed_sources == ("calendar",)
    assert result.degraded_sources == ("calendar",)
    assert result.is_degraded
    assert [item.id for item in result.items] == [i for i in EXPECTED_ORDER if not i.startswith("calendar:")]
    assert "> Partial data: calendar could not be loaded." in render_brief(result, NOW, 8)


def test_dismissed_and_completed_items_are_excluded() -> None:
    snapshot = replace(
        _snapshot(),
        tasks=[*_snapshot().tasks, {"id": "t9", "content": "Already done", "completed": True}],
    )
    result = _engine().compute(snapshot, NOW, dismissed={"task:t3"})

    excluded = dict(result.excluded)
    assert excluded["task:t3"] == "dismissed"
    assert excluded["task:t9"] == "completed"
    assert "task:t3" not in [item.id for item in result.items]
    assert "task:t9" not in [item.id for item in result.items]
    assert {item.id for item in result.all_items} >= {"task:t3", "task:t9", "email:e2"}


def test_annotations_ride_along_without_changing_scores() -> None:
    snapshot = _snapshot()
    annotations = collect_annotations(RecordSuggestionClient(), snapshot.inbox)
    plain = _engine().compute(snapshot, NOW)
    annotated = _engine().compute(snapshot, NOW, annotations=annotations)

    assert set(annotations) == {"email:e1"}
    email = next(item for item in annotated.items if item.id == "email:e1")
    assert email.item.annotations is not None
    assert email.item.annotations.intent == "intro_first_touch"
    assert email.item.annotations.suggestions[0].type == "CREATE_PIPELINE_COMPANY"
    assert [(i.id, i.priority_score) for i in annotated.items] == [(i.id, i.priority_score) for i in plain.items]


@pytest.mark.parametrize("edge", ["9999-12-31T23:00:00-05:00", "0001-01-01T00:30:00+05:00"])
def test_timestamp_at_edge_of_datetime_range_keeps_item_without_due_date(edge: str) -> None:
    snapshot = SourceSnapshot(tasks=[{"id": "ok", "content": "Fine"}, {"id": "x", "content": "Edge", "scheduled_for": edge}])

    result = _engine().compute(snapshot, NOW)

    by_id = {item.id: item for item in result.items}
    assert set(by_id) == {"task:ok", "task:x"}
    assert by_id["task:x"].due_at is None
    assert by_id["task:x"].bucket == "none"


def test_naive_now_is_rejected() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        _engine().compute(SourceSnapshot(), datetime(2026, 3, 2, 15, 0))


def test_empty_snapshot_gives_empty_result() -> None:
    result = _engine().compute(SourceSnapshot(), NOW)

    assert result.items == ()
    assert result.companies == ()
    assert bucket_counts(result) == {"overdue": 0, "due_today": 0, "upcoming": 0, "none": 0}
    assert "- Nothing needs attention right now." in render_brief(result, NOW, 8)


def test_debug_view_lists_every_item_with_rank_and_exclusion() -> None:
    result = _engine().compute(_snapshot(), NOW)

    view = debug_view(result)
    rows = {row["id"]: row for row in view["items"]}
    assert rows["task:t1"]["rank"] == 0
    assert rows["email:e2"]["rank"] is None
    assert rows["email:e2"]["excluded_reason"] == "superseded"
    assert view["items"][-1]["id"] == "email:e2"
    assert view["scores"]["count"] == 9
    assert view["scores"]["max"] == 750
    assert view["panels"]["task"] == ["task:t1", "task:t2", "task:t5", "task:t3"]
    assert view["panels"]["email"] == ["email:e1"]

    emails = debug_view(result, source="email")
    assert [row["id"] for row in emails["items"]] == ["email:e1", "email:e2"]
    assert emails["scores"] == {"count": 1, "avg": 70.0, "min": 70.0, "max": 70.0}

    panels = build_source_panels(result, limit=2)
    assert [item.id for item in panels["task"]] == ["task:t1", "task:t2"]
    assert panels["email"][0].id == "email:e1"


def test_brief_has_all_sections() -> None:
    result = _engine().compute(_snapshot(), NOW)
    brief = render_brief(result, NOW, 8)

    assert brief.startswith("# Attention Brief (2026-03-02)")
    for heading in ["## Top 8 Priorities", "## Counts", "## Overdue", "## Companies Needing Attention", "## Start Here"]:
        assert heading in brief
    assert "Overdue: 2 | Due Today: 2 | Upcoming: 4 | No Due Date: 1" in brief
    assert "**Acme Corp** (portfolio, red" in brief
    assert "Zenith Labs" not in brief
    assert brief.rstrip().endswith("Overdue by 3 days. Linked to portfolio:acme.")


def test_brief_heading_uses_local_date() -> None:
    engine = _engine()
    late_evening = datetime(2026, 3, 3, 3, 0, tzinfo=timezone.utc)
    result = engine.compute(SourceSnapshot(), late_evening)

    assert render_brief(result, late_evening, 8, tz=engine.config.tz).startswith("# Attention Brief (2026-03-02)")
    assert render_brief(result, late_evening, 8).startswith("# Attention Brief (2026-03-03)")

from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from pathlib import Path

import yaml
from fastapi.testclient import TestClient

from attention_deck.dashboard_app import create_app


ROOT = Path(__file__).resolve().parents[1]
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _write_test_config(tmp_path: Path) -> Path:
    base = yaml.safe_load((ROOT / "config" / "attention_deck.yaml").read_text(encoding="utf-8"))
    base["dashboard"]["db_path"] = str(tmp_path / "attention_deck.db")
    base["dashboard"]["snapshot_path"] = str(tmp_path / "latest_result.json")
    base["dashboard"]["payload_path"] = str(ROOT / "tests" / "fixtures" / "source_payload.json")
    base["dashboard"]["retention_days"] = 36500
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(base), encoding="utf-8")
    return config_path


def _client(tmp_path: Path):
    app = create_app(config_path=str(_write_test_config(tmp_path)), start_workers=False)
    ctx = app.state.dashboard_context
    # pin the clock so the fixture's dates land in known buckets
    ctx.scheduler._compute = partial(ctx.snapshot_producer.compute, now=NOW)
    return TestClient(app), ctx


def _fail(**kwargs):
    raise RuntimeError("source database unavailable")


def test_priority_endpoints_serve_one_ranked_pass(tmp_path) -> None:
    client, _ = _client(tmp_path)

    home = client.get("/")
    assert home.status_code == 200
    assert home.json()["title"] == "Attention Deck"
    assert home.json()["attention_summary"]["summary_text"] == "1 red • 1 yellow"

    priority = client.get("/api/priority")
    assert priority.status_code == 200
    body = priority.json()
    assert body["total_count"] == 9
    assert [item["id"] for item in body["items"]] == [
        "task:t1",
        "commitment:m2",
        "task:t2",
        "calendar:c1",
        "commitment:m1",
        "task:t5",
        "task:t3",
        "calendar:c2",
    ]
    assert body["items"][2]["is_top_priority"] is True
    assert body["items"][2]["score_reasons"] == ["+100 task source", "+150 due today", "+500 explicit priority"]
    assert body["degraded_sources"] == []

    limited = client.get("/api/priority", params={"limit": 3})
    assert [item["id"] for item in limited.json()["items"]] == ["task:t1", "commitment:m2", "task:t2"]
    assert client.get("/api/priority", params={"limit": -1}).status_code == 422

    counts = client.get("/api/priority/counts").json()
    assert counts["buckets"] == {"overdue": 2, "due_today": 2, "upcoming": 4, "none": 1}
    assert counts["sources"]["calendar"] == 2

    debug = client.get("/api/priority/debug", params={"source": "email"}).json()
    assert [row["id"] for row in debug["items"]] == ["email:e1", "email:e2"]
    assert debug["items"][1]["excluded_reason"] == "superseded"
    assert debug["items"][0]["annotations"]["intent"] == "intro_first_touch"
    assert debug["panels"]["calendar"] == ["calendar:c1", "calendar:c2"]
    assert client.get("/api/priority/debug", params={"source": "fax"}).status_code == 400

    brief = client.get("/api/brief")
    assert brief.status_code == 200
    assert brief.text.startswith("# Attention Brief (2026-03-02)")


def test_company_attention_endpoints(tmp_path) -> None:
    client, _ = _client(tmp_path)

    companies = client.get("/api/companies").json()
    assert [row["company_id"] for row in companies["companies"]] == ["acme", "beacon", "zenith"]
    assert companies["summary"] == {"red": 1, "yellow": 1, "green": 1, "summary_text": "1 red • 1 yellow"}

    beacon = client.get("/api/companies/beacon/attention")
    assert beacon.status_code == 200
    assert beacon.json()["status"] == "yellow"
    assert beacon.json()["signals"][0]["description"] == "Closing in 8 days"

    missing = client.get("/api/companies/nobody/attention")
    assert missing.status_code == 404


def test_dismiss_and_undismiss_items(tmp_path) -> None:
    client, ctx = _client(tmp_path)
    assert "task:t3" in [item["id"] for item in client.get("/api/priority").json()["items"]]

    dismissed = client.post("/api/items/dismiss", json={"source_type": "task", "source_id": "t3"})
    assert dismissed.status_code == 200
    assert ctx.storage.list_dismissed_ids() == {"task:t3"}
    after = client.get("/api/priority").json()
    assert "task:t3" not in [item["id"] for item in after["items"]]
    assert after["total_count"] == 8

    assert client.post("/api/items/dismiss", json={"source_type": "fax", "source_id": "1"}).status_code == 400
    assert client.post("/api/items/dismiss", json={"source_type": "task"}).status_code == 422

    restored = client.post("/api/items/undismiss", json={"source_type": "task", "source_id": "t3"})
    assert restored.status_code == 200
    assert client.get("/api/priority").json()["total_count"] == 9
    again = client.post("/api/items/undismiss", json={"source_type": "task", "source_id": "t3"})
    assert again.status_code == 404


def test_refresh_persists_snapshot_and_applies_cooldown(tmp_path) -> None:
    client, ctx = _client(tmp_path)
    assert client.get("/api/snapshot/latest").json() == {"snapshot": None}

    first_refresh = client.post("/api/refresh")
    assert first_refresh.status_code == 200
    assert first_refresh.json()["status"] == "queued"
    assert ctx.storage.get_last_refresh_event()["status"] == "success"

    latest = client.get("/api/snapshot/latest").json()["snapshot"]
    assert latest["source"] == "scheduler"
    assert latest["items"][0]["id"] == "task:t1"
    assert (tmp_path / "latest_result.json").exists()

    second_refresh = client.post("/api/refresh")
    assert second_refresh.status_code == 429


def test_refresh_does_not_fail_when_background_pass_errors(tmp_path) -> None:
    client, ctx = _client(tmp_path)
    ctx.scheduler._compute = _fail

    response = client.post("/api/refresh")
    assert response.status_code == 200
    event = ctx.storage.get_last_refresh_event()
    assert event["status"] == "failed"
    assert event["message"] == "source database unavailable"

    # a failed refresh does not start the cooldown
    assert client.post("/api/refresh").status_code == 200


def test_priority_is_unavailable_without_any_result(tmp_path) -> None:
    client, ctx = _client(tmp_path)
    ctx.scheduler._compute = _fail

    assert client.get("/api/priority").status_code == 503


def test_invalidate_marks_sources_stale(tmp_path) -> None:
    client, ctx = _client(tmp_path)

    response = client.post("/api/invalidate/tasks")
    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert "tasks" in ctx.scheduler.pending_sources

    assert client.post("/api/invalidate/voicemail").status_code == 400


def test_env_overrides_db_and_snapshot_paths(tmp_path, monkeypatch) -> None:
    config_path = _write_test_config(tmp_path)
    db_override = tmp_path / "override.db"
    snapshot_override = tmp_path / "override_result.json"
    monkeypatch.setenv("ATTENTION_DECK_DB_PATH", str(db_override))
    monkeypatch.setenv("ATTENTION_DECK_SNAPSHOT_PATH", str(snapshot_override))

    app = create_app(config_path=str(config_path), start_workers=False)
    ctx = app.state.dashboard_context

    assert ctx.storage.db_path == db_override
    assert ctx.snapshot_producer.snapshot_output_path == snapshot_override

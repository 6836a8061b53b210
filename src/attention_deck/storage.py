from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .dashboard_services import bucket_counts
from .engine import PriorityResult
from .models import (
    SOURCE_TYPES,
    CompanyAttentionState,
    company_state_from_dict,
    company_state_to_dict,
    parse_timestamp,
    priority_item_from_dict,
    priority_item_to_dict,
)


@dataclass(frozen=True)
class SnapshotRecord:
    id: int
    created_at: datetime
    result: PriorityResult
    source: str
    status: str
    metadata: dict[str, Any]


class Storage:
    """SQLite store for computed passes. Source records are never written here."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    computed_at TEXT NOT NULL,
                    bucket_counts_json TEXT NOT NULL,
                    items_json TEXT NOT NULL,
                    all_items_json TEXT NOT NULL,
                    excluded_json TEXT NOT NULL DEFAULT '[]',
                    degraded_json TEXT NOT NULL DEFAULT '[]',
                    flag_policy TEXT NOT NULL DEFAULT '',
                    source TEXT NOT NULL,
                    status TEXT NOT NULL,
                    metadata_json TEXT NOT NULL DEFAULT '{}'
                );

                CREATE TABLE IF NOT EXISTS company_attention (
                    snapshot_id INTEGER NOT NULL REFERENCES snapshots(id) ON DELETE CASCADE,
                    company_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    score REAL NOT NULL,
                    state_json TEXT NOT NULL,
                    PRIMARY KEY (snapshot_id, entity_type, company_id)
                );

                CREATE TABLE IF NOT EXISTS refresh_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    message TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS dismissed_items (
                    source_type TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    dismissed_at TEXT NOT NULL,
                    PRIMARY KEY (source_type, source_id)
                );
                """
            )
            conn.commit()

    def insert_snapshot(
        self,
        result: PriorityResult,
        *,
        created_at: datetime | None = None,
        source: str = "scheduled",
        status: str = "ready",
        metadata: dict[str, Any] | None = None,
    ) -> int:
        ts = (created_at or datetime.now(tz=timezone.utc)).isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO snapshots(
                    created_at, computed_at, bucket_counts_json, items_json, all_items_json,
                    excluded_json, degraded_json, flag_policy, source, status, metadata_json
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ts,
                    result.computed_at.isoformat(),
                    json.dumps(bucket_counts(result)),
                    json.dumps([priority_item_to_dict(item) for item in result.items], ensure_ascii=False),
                    json.dumps([priority_item_to_dict(item) for item in result.all_items], ensure_ascii=False),
                    json.dumps([list(pair) for pair in result.excluded]),
                    json.dumps(list(result.degraded_sources)),
                    result.flag_policy,
                    source,
                    status,
                    json.dumps(metadata or {}, ensure_ascii=False),
                ),
            )
            snapshot_id = int(cursor.lastrowid)
            conn.executemany(
                """
                INSERT INTO company_attention(snapshot_id, company_id, entity_type, status, score, state_json)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        snapshot_id,
                        state.company_id,
                        state.entity_type,
                        state.status,
                        state.score,
                        json.dumps(company_state_to_dict(state), ensure_ascii=False),
                    )
                    for state in result.companies
                ],
            )
            conn.commit()
            return snapshot_id

    def get_latest_snapshot(self) -> SnapshotRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM snapshots ORDER BY created_at DESC, id DESC LIMIT 1").fetchone()
            if row is None:
                return None
            company_rows = conn.execute(
                "SELECT state_json FROM company_attention WHERE snapshot_id = ? ORDER BY score DESC, entity_type, company_id",
                (row["id"],),
            ).fetchall()
        result = PriorityResult(
            computed_at=parse_timestamp(row["computed_at"]) or datetime.now(tz=timezone.utc),
            items=tuple(priority_item_from_dict(item) for item in json.loads(row["items_json"])),
            all_items=tuple(priority_item_from_dict(item) for item in json.loads(row["all_items_json"])),
            excluded=tuple((str(a), str(b)) for a, b in json.loads(row["excluded_json"])),
            companies=tuple(company_state_from_dict(json.loads(r["state_json"])) for r in company_rows),
            degraded_sources=tuple(json.loads(row["degraded_json"])),
            flag_policy=str(row["flag_policy"]),
        )
        return SnapshotRecord(
            id=int(row["id"]),
            created_at=parse_timestamp(row["created_at"]) or result.computed_at,
            result=result,
            source=str(row["source"]),
            status=str(row["status"]),
            metadata=dict(json.loads(row["metadata_json"] or "{}")),
        )

    def get_company_attention(self, company_id: str) -> CompanyAttentionState | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT ca.state_json FROM company_attention ca
                JOIN snapshots s ON s.id = ca.snapshot_id
                WHERE ca.company_id = ?
                ORDER BY s.created_at DESC, s.id DESC
                LIMIT 1
                """,
                (company_id,),
            ).fetchone()
        if row is None:
            return None
        return company_state_from_dict(json.loads(row["state_json"]))

    def dismiss_item(self, source_type: str, source_id: str) -> None:
        if source_type not in SOURCE_TYPES:
            raise ValueError(f"Unsupported source type: {source_type}")
        dismissed_at = datetime.now(tz=timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO dismissed_items(source_type, source_id, dismissed_at)
                VALUES(?, ?, ?)
                """,
                (source_type, source_id, dismissed_at),
            )
            conn.commit()

    def undismiss_item(self, source_type: str, source_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM dismissed_items WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def list_dismissed_ids(self) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT source_type, source_id FROM dismissed_items").fetchall()
        return {f"{row['source_type']}:{row['source_id']}" for row in rows}

    def record_refresh_event(self, *, kind: str, status: str, message: str = "") -> None:
        created_at = datetime.now(tz=timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO refresh_events(created_at, kind, status, message)
                VALUES(?, ?, ?, ?)
                """,
                (created_at, kind, status, message),
            )
            conn.commit()

    def get_last_refresh_event(self) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM refresh_events ORDER BY created_at DESC, id DESC LIMIT 1").fetchone()
        if row is None:
            return None
        return {
            "id": int(row["id"]),
            "created_at": parse_timestamp(row["created_at"]),
            "kind": str(row["kind"]),
            "status": str(row["status"]),
            "message": str(row["message"]),
        }

    def can_refresh_now(self, cooldown_minutes: int) -> tuple[bool, datetime | None]:
        last = self.get_last_refresh_event()
        if last is None or last["created_at"] is None:
            return True, None
        if last["status"] == "failed":
            return True, None
        next_allowed = last["created_at"] + timedelta(minutes=cooldown_minutes)
        if datetime.now(tz=timezone.utc) >= next_allowed:
            return True, next_allowed
        return False, next_allowed

    def cleanup_old(self, retention_days: int) -> None:
        cutoff = (datetime.now(tz=timezone.utc) - timedelta(days=retention_days)).isoformat()
        with self._connect() as conn:
            conn.execute("DELETE FROM snapshots WHERE created_at < ?", (cutoff,))
            conn.execute("DELETE FROM refresh_events WHERE created_at < ?", (cutoff,))
            conn.commit()

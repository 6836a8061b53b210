from __future__ import annotations

import argparse
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .config import EngineConfig, load_config
from .dashboard_services import bucket_counts, source_counts
from .engine import SNAPSHOT_SOURCES, PriorityEngine, PriorityResult, SourceSnapshot
from .logging_setup import configure_logging
from .models import company_state_to_dict, priority_item_to_dict
from .storage import Storage
from .suggestions import SuggestionClient, collect_annotations

logger = logging.getLogger(__name__)

PAYLOAD_ALIASES = {
    "tasks": ("tasks",),
    "inbox": ("inbox", "inbox_items"),
    "calendar": ("calendar", "calendar_events"),
    "commitments": ("commitments", "obligations"),
    "portfolio": ("portfolio", "portfolio_companies"),
    "pipeline": ("pipeline", "pipeline_companies"),
}


class SourceRepository(Protocol):
    def fetch(self, source: str, *, user_id: str | None = None) -> list[dict[str, Any]]:
        ...


def _owned_by(record: dict[str, Any], user_id: str | None) -> bool:
    if user_id is None:
        return True
    owner = record.get("owner_id", record.get("user_id"))
    return owner is None or str(owner) == user_id


def _is_active(source: str, record: dict[str, Any]) -> bool:
    if source == "tasks":
        return not record.get("completed")
    if source == "inbox":
        return not (record.get("is_resolved") or record.get("is_deleted"))
    if source == "commitments":
        return str(record.get("status") or "open") in ("open", "waiting_on")
    return True


class JsonFileRepository:
    """Serves source records from a JSON export, applying the same filters as the live tables."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Source payload root must be an object")
        return payload

    def fetch(self, source: str, *, user_id: str | None = None) -> list[dict[str, Any]]:
        if source not in PAYLOAD_ALIASES:
            raise ValueError(f"Unknown source: {source}")
        payload = self._load()
        rows: Any = []
        for key in PAYLOAD_ALIASES[source]:
            if key in payload:
                rows = payload[key]
                break
        if not isinstance(rows, list):
            raise ValueError(f"{source} must be a list")
        return [
            dict(row)
            for row in rows
            if isinstance(row, dict) and _owned_by(row, user_id) and _is_active(source, row)
        ]


def fetch_snapshot(
    repository: SourceRepository,
    *,
    user_id: str | None = None,
    sources: tuple[str, ...] = SNAPSHOT_SOURCES,
) -> SourceSnapshot:
    """Fetch every source in parallel. A failing source contributes no records and is reported."""
    records: dict[str, list[dict[str, Any]]] = {name: [] for name in SNAPSHOT_SOURCES}
    failed: list[str] = []
    with ThreadPoolExecutor(max_workers=len(sources) or 1, thread_name_prefix="source-fetch") as pool:
        futures = {name: pool.submit(repository.fetch, name, user_id=user_id) for name in sources}
        for name, future in futures.items():
            try:
                records[name] = list(future.result())
            except Exception:
                logger.warning("Source fetch failed for %s; continuing without it", name, exc_info=True)
                failed.append(name)
    return SourceSnapshot(failed_sources=tuple(failed), **records)


class SnapshotProducer:
    def __init__(
        self,
        *,
        config: EngineConfig,
        storage: Storage,
        repository: SourceRepository,
        project_root: Path,
        suggestion_client: SuggestionClient | None = None,
    ):
        self.config = config
        self.storage = storage
        self.repository = repository
        self.project_root = project_root
        self.engine = PriorityEngine(config)
        self.suggestion_client = suggestion_client
        self.snapshot_output_path = project_root / config.dashboard.snapshot_path

    def compute(self, *, snapshot: SourceSnapshot | None = None, now: datetime | None = None) -> PriorityResult:
        current = now or datetime.now(tz=timezone.utc)
        if snapshot is None:
            snapshot = fetch_snapshot(self.repository, user_id=self.config.user_id)
        annotations = None
        if self.suggestion_client is not None:
            annotations = collect_annotations(self.suggestion_client, snapshot.inbox)
        return self.engine.compute(
            snapshot,
            current,
            dismissed=self.storage.list_dismissed_ids(),
            annotations=annotations,
        )

    def produce(
        self,
        *,
        source: str = "scheduled",
        snapshot: SourceSnapshot | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        current = now or datetime.now(tz=timezone.utc)
        if snapshot is None:
            snapshot = fetch_snapshot(self.repository, user_id=self.config.user_id)
        result = self.compute(snapshot=snapshot, now=current)
        snapshot_id = self.persist(result, source=source, raw_counts=snapshot.raw_counts())
        return {
            "snapshot_id": snapshot_id,
            "computed_at": current.isoformat(),
            "item_count": len(result.items),
            "company_count": len(result.companies),
            "bucket_counts": bucket_counts(result),
            "source_counts": source_counts(result),
            "raw_counts": snapshot.raw_counts(),
            "degraded_sources": list(result.degraded_sources),
        }

    def persist(self, result: PriorityResult, *, source: str, raw_counts: dict[str, int] | None = None) -> int:
        snapshot_id = self.storage.insert_snapshot(
            result,
            created_at=result.computed_at,
            source=source,
            status="degraded" if result.is_degraded else "ready",
            metadata={"raw_counts": raw_counts or {}, "excluded_count": len(result.excluded)},
        )
        self.storage.cleanup_old(self.config.dashboard.retention_days)
        self._write_snapshot_file(snapshot_id=snapshot_id, result=result)
        return snapshot_id

    def safe_produce(self, *, source: str = "scheduled", snapshot: SourceSnapshot | None = None) -> dict[str, Any]:
        try:
            result = self.produce(source=source, snapshot=snapshot)
            status = "degraded" if result["degraded_sources"] else "success"
            self.storage.record_refresh_event(kind=source, status=status, message=f"snapshot:{result['snapshot_id']}")
            return result
        except Exception as exc:
            message = str(exc).strip()
            if len(message) > 400:
                message = f"{message[:397]}..."
            self.storage.record_refresh_event(kind=source, status="failed", message=message)
            raise

    def _write_snapshot_file(self, *, snapshot_id: int, result: PriorityResult) -> None:
        self.snapshot_output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "snapshot_id": snapshot_id,
            "computed_at": result.computed_at.isoformat(),
            "degraded_sources": list(result.degraded_sources),
            "bucket_counts": bucket_counts(result),
            "items": [priority_item_to_dict(item) for item in result.items],
            "companies": [company_state_to_dict(state) for state in result.companies],
        }
        self.snapshot_output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute and store an attention snapshot")
    parser.add_argument("--config", default="config/attention_deck.yaml")
    parser.add_argument("--source", default="scheduled", choices=["scheduled", "manual"])
    parser.add_argument("--input-json", help="Source payload JSON (defaults to dashboard.payload_path)")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    project_root = Path.cwd()
    config = load_config(args.config)
    configure_logging(config.logging.level, config.logging.json)
    storage = Storage(project_root / config.dashboard.db_path)
    storage.init_db()
    repository = JsonFileRepository(args.input_json or project_root / config.dashboard.payload_path)
    producer = SnapshotProducer(config=config, storage=storage, repository=repository, project_root=project_root)
    result = producer.safe_produce(source=args.source)
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

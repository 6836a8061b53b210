from __future__ import annotations

import os
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path

from fastapi import FastAPI

from .config import EngineConfig, load_config
from .dashboard_routes import DashboardContext, build_router
from .logging_setup import configure_logging
from .scheduler import RecomputeScheduler
from .snapshot_producer import JsonFileRepository, SnapshotProducer
from .storage import Storage
from .suggestions import OpenAISuggestionClient, RecordSuggestionClient, SuggestionClient


def create_app(
    *,
    config_path: str = "config/attention_deck.yaml",
    start_workers: bool = True,
) -> FastAPI:
    config_file = Path(config_path).resolve()
    if config_file.parent.name == "config":
        project_root = config_file.parent.parent
    else:
        project_root = Path.cwd()
    config = _with_runtime_overrides(load_config(config_path))

    storage = Storage(project_root / config.dashboard.db_path)
    storage.init_db()

    producer = SnapshotProducer(
        config=config,
        storage=storage,
        repository=JsonFileRepository(project_root / config.dashboard.payload_path),
        project_root=project_root,
        suggestion_client=_suggestion_client(config),
    )
    scheduler = RecomputeScheduler(
        producer.compute,
        coalesce_seconds=config.refresh.coalesce_seconds,
        cache_ttl_seconds=config.refresh.cache_ttl_seconds,
        on_publish=lambda result: producer.persist(result, source="scheduler"),
        start_worker=start_workers,
    )
    context = DashboardContext(
        config=config,
        storage=storage,
        snapshot_producer=producer,
        scheduler=scheduler,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(config.logging.level, config.logging.json)
        yield
        scheduler.shutdown()

    app = FastAPI(title="Attention Deck", version="0.1.0", lifespan=lifespan)
    app.include_router(build_router(context))
    app.state.dashboard_context = context

    return app


def _suggestion_client(config: EngineConfig) -> SuggestionClient:
    if config.runtime.suggestions_enabled and os.getenv("OPENAI_API_KEY"):
        return OpenAISuggestionClient(model=os.getenv("OPENAI_MODEL", config.runtime.openai_model))
    return RecordSuggestionClient()


def _with_runtime_overrides(config: EngineConfig) -> EngineConfig:
    db_path = os.getenv("ATTENTION_DECK_DB_PATH", "").strip()
    snapshot_path = os.getenv("ATTENTION_DECK_SNAPSHOT_PATH", "").strip()
    payload_path = os.getenv("ATTENTION_DECK_PAYLOAD_PATH", "").strip()
    if not db_path and not snapshot_path and not payload_path:
        return config

    dashboard = replace(
        config.dashboard,
        db_path=db_path or config.dashboard.db_path,
        snapshot_path=snapshot_path or config.dashboard.snapshot_path,
        payload_path=payload_path or config.dashboard.payload_path,
    )
    return replace(config, dashboard=dashboard)


app = create_app()

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .brief import render_brief
from .config import EngineConfig
from .dashboard_services import (
    bucket_counts,
    company_attention_for,
    companies_view,
    debug_view,
    source_counts,
    top_items,
)
from .engine import SNAPSHOT_SOURCES, PriorityResult
from .models import SOURCE_TYPES, company_state_to_dict, priority_item_to_dict
from .scheduler import RecomputeScheduler
from .snapshot_producer import SnapshotProducer
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class DashboardContext:
    config: EngineConfig
    storage: Storage
    snapshot_producer: SnapshotProducer
    scheduler: RecomputeScheduler


class DismissRequest(BaseModel):
    source_type: str
    source_id: str


def build_router(ctx: DashboardContext) -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def dashboard_home() -> JSONResponse:
        result = _current_result(ctx)
        can_refresh, next_allowed = ctx.storage.can_refresh_now(ctx.config.dashboard.refresh_cooldown_minutes)
        last_event = ctx.storage.get_last_refresh_event()
        return JSONResponse(
            {
                "title": "Attention Deck",
                "computed_at": result.computed_at.isoformat(),
                "degraded_sources": list(result.degraded_sources),
                "bucket_counts": bucket_counts(result),
                "top_items": [priority_item_to_dict(item) for item in result.top(ctx.config.ranking.top_n)],
                "attention_summary": companies_view(result)["summary"],
                "can_refresh": can_refresh,
                "next_refresh_allowed": next_allowed.isoformat() if next_allowed else None,
                "last_refresh_event": _event_to_dict(last_event),
            }
        )

    @router.get("/api/priority")
    def api_priority(limit: int | None = Query(default=None, ge=0)) -> JSONResponse:
        result = _current_result(ctx)
        n = ctx.config.ranking.top_n if limit is None else limit
        return JSONResponse(
            {
                "computed_at": result.computed_at.isoformat(),
                "degraded_sources": list(result.degraded_sources),
                "total_count": len(result.items),
                "bucket_counts": bucket_counts(result),
                "items": [priority_item_to_dict(item) for item in top_items(result, n)],
            }
        )

    @router.get("/api/priority/counts")
    def api_priority_counts() -> JSONResponse:
        result = _current_result(ctx)
        return JSONResponse({"buckets": bucket_counts(result), "sources": source_counts(result)})

    @router.get("/api/priority/debug")
    def api_priority_debug(source: str | None = None) -> JSONResponse:
        if source is not None and source not in SOURCE_TYPES:
            raise HTTPException(status_code=400, detail=f"Unknown source type: {source}")
        return JSONResponse(debug_view(_current_result(ctx), source=source))

    @router.get("/api/companies")
    def api_companies() -> JSONResponse:
        return JSONResponse(companies_view(_current_result(ctx)))

    @router.get("/api/companies/{company_id}/attention")
    def api_company_attention(company_id: str) -> JSONResponse:
        state = company_attention_for(_current_result(ctx), company_id)
        if state is None:
            state = ctx.storage.get_company_attention(company_id)
        if state is None:
            raise HTTPException(status_code=404, detail="Company not found")
        return JSONResponse(company_state_to_dict(state))

    @router.get("/api/brief")
    def api_brief() -> PlainTextResponse:
        result = _current_result(ctx)
        brief = render_brief(result, now=result.computed_at, max_items=ctx.config.ranking.top_n, tz=ctx.config.tz)
        return PlainTextResponse(brief)

    @router.get("/api/snapshot/latest")
    def api_latest_snapshot() -> JSONResponse:
        snapshot = ctx.storage.get_latest_snapshot()
        if snapshot is None:
            return JSONResponse({"snapshot": None})
        return JSONResponse(
            {
                "snapshot": {
                    "id": snapshot.id,
                    "created_at": snapshot.created_at.isoformat(),
                    "source": snapshot.source,
                    "status": snapshot.status,
                    "metadata": snapshot.metadata,
                    "bucket_counts": bucket_counts(snapshot.result),
                    "degraded_sources": list(snapshot.result.degraded_sources),
                    "items": [priority_item_to_dict(item) for item in snapshot.result.items],
                }
            }
        )

    @router.post("/api/refresh")
    def api_refresh(background_tasks: BackgroundTasks) -> JSONResponse:
        can_refresh, next_allowed = ctx.storage.can_refresh_now(ctx.config.dashboard.refresh_cooldown_minutes)
        if not can_refresh:
            when = next_allowed.isoformat() if next_allowed else "unknown"
            raise HTTPException(status_code=429, detail=f"Refresh cooldown active until {when}")
        ctx.storage.record_refresh_event(kind="manual", status="queued", message="refresh requested")
        token = ctx.scheduler.request_now("manual")
        background_tasks.add_task(_run_refresh_job, ctx)
        return JSONResponse({"status": "queued", "token": token})

    @router.post("/api/invalidate/{source}")
    def api_invalidate(source: str) -> JSONResponse:
        if source not in SNAPSHOT_SOURCES:
            raise HTTPException(status_code=400, detail=f"Unknown source: {source}")
        token = ctx.scheduler.invalidate(source)
        return JSONResponse({"status": "pending", "token": token})

    @router.post("/api/items/dismiss")
    def api_dismiss(payload: DismissRequest) -> JSONResponse:
        try:
            ctx.storage.dismiss_item(payload.source_type, payload.source_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        ctx.scheduler.request_now("dismissed")
        return JSONResponse({"dismissed": f"{payload.source_type}:{payload.source_id}"})

    @router.post("/api/items/undismiss")
    def api_undismiss(payload: DismissRequest) -> JSONResponse:
        removed = ctx.storage.undismiss_item(payload.source_type, payload.source_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Item was not dismissed")
        ctx.scheduler.request_now("dismissed")
        return JSONResponse({"restored": f"{payload.source_type}:{payload.source_id}"})

    return router


def _current_result(ctx: DashboardContext) -> PriorityResult:
    try:
        result = ctx.scheduler.get()
    except Exception:
        logger.exception("Priority pass failed; serving the last stored snapshot")
        result = None
    if result is not None:
        return result
    snapshot = ctx.storage.get_latest_snapshot()
    if snapshot is None:
        raise HTTPException(status_code=503, detail="No priority snapshot available yet")
    return snapshot.result


def _run_refresh_job(ctx: DashboardContext) -> None:
    # The HTTP response is already sent; outcomes are recorded as refresh events.
    try:
        result = ctx.scheduler.run_pending(force=True)
    except Exception as exc:
        logger.exception("Manual refresh failed")
        ctx.storage.record_refresh_event(kind="manual", status="failed", message=str(exc)[:400])
        return
    if result is None:
        ctx.storage.record_refresh_event(kind="manual", status="superseded", message="newer request pending")
        return
    status = "degraded" if result.is_degraded else "success"
    ctx.storage.record_refresh_event(kind="manual", status=status, message=f"{len(result.items)} items")


def _event_to_dict(event: dict[str, Any] | None) -> dict[str, Any] | None:
    if event is None:
        return None
    created_at = event.get("created_at")
    return {**event, "created_at": created_at.isoformat() if created_at else None}

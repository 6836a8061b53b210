from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from .classifier import build_company_attention, classify_bucket
from .config import EngineConfig
from .models import CompanyAttentionState, PriorityItem, SuggestionSet, WorkItem
from .normalizers import normalize_all, normalize_companies
from .ranking import rank_items
from .scoring import describe_item, score_item

logger = logging.getLogger(__name__)

SNAPSHOT_SOURCES = ("tasks", "inbox", "calendar", "commitments", "portfolio", "pipeline")


@dataclass(frozen=True)
class SourceSnapshot:
    """Read-only records borrowed from the persistence layer for one pass."""

    tasks: list[dict[str, Any]] = field(default_factory=list)
    inbox: list[dict[str, Any]] = field(default_factory=list)
    calendar: list[dict[str, Any]] = field(default_factory=list)
    commitments: list[dict[str, Any]] = field(default_factory=list)
    portfolio: list[dict[str, Any]] = field(default_factory=list)
    pipeline: list[dict[str, Any]] = field(default_factory=list)
    failed_sources: tuple[str, ...] = ()

    def raw_counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in SNAPSHOT_SOURCES}


@dataclass(frozen=True)
class PriorityResult:
    computed_at: datetime
    items: tuple[PriorityItem, ...]
    all_items: tuple[PriorityItem, ...]
    excluded: tuple[tuple[str, str], ...]
    companies: tuple[CompanyAttentionState, ...]
    degraded_sources: tuple[str, ...] = ()
    flag_policy: str = ""

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_sources)

    def top(self, n: int) -> tuple[PriorityItem, ...]:
        return self.items[: max(0, n)]

    def company(self, company_id: str) -> CompanyAttentionState | None:
        for state in self.companies:
            if state.company_id == company_id:
                return state
        return None


class PriorityEngine:
    def __init__(self, config: EngineConfig):
        self.config = config

    def prioritize(self, item: WorkItem, now: datetime) -> PriorityItem:
        tz = self.config.tz
        score, reasons = score_item(item, now, tz, self.config.scoring)
        return PriorityItem(
            item=item,
            priority_score=score,
            bucket=classify_bucket(item.due_at, now, tz),
            score_reasons=tuple(reasons),
            reasoning=describe_item(item, now, tz),
        )

    def compute(
        self,
        snapshot: SourceSnapshot,
        now: datetime,
        *,
        dismissed: Iterable[str] = (),
        annotations: Mapping[str, SuggestionSet] | None = None,
    ) -> PriorityResult:
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        tz = self.config.tz

        work_items = normalize_all(
            self.config,
            now,
            tasks=snapshot.tasks,
            inbox=snapshot.inbox,
            calendar=snapshot.calendar,
            commitments=snapshot.commitments,
        )
        if annotations:
            work_items = [
                replace(item, annotations=annotations[item.id]) if item.id in annotations else item
                for item in work_items
            ]
        scored = [self.prioritize(item, now) for item in work_items]

        dismissed_ids = set(dismissed)
        excluded: dict[str, str] = {}
        candidates: list[PriorityItem] = []
        for item in scored:
            if item.item.completed:
                excluded[item.id] = "completed"
            elif item.id in dismissed_ids:
                excluded[item.id] = "dismissed"
            else:
                candidates.append(item)

        ranked, dropped = rank_items(candidates, self.config.ranking.flag_policy)
        for item_id in dropped:
            excluded[item_id] = "superseded"

        companies = normalize_companies(snapshot.portfolio, snapshot.pipeline, now, tz)
        states = build_company_attention(companies, work_items, now, tz, self.config.attention)

        result = PriorityResult(
            computed_at=now,
            items=tuple(ranked),
            all_items=tuple(sorted(scored, key=lambda i: i.id)),
            excluded=tuple(sorted(excluded.items())),
            companies=tuple(states),
            degraded_sources=tuple(sorted(set(snapshot.failed_sources))),
            flag_policy=self.config.ranking.flag_policy,
        )
        logger.info(
            "Priority pass: %d ranked, %d excluded, %d companies, degraded=%s",
            len(result.items),
            len(result.excluded),
            len(result.companies),
            ",".join(result.degraded_sources) or "none",
        )
        return result

from __future__ import annotations

from collections import defaultdict
from typing import Any

from .classifier import summarize_attention
from .engine import PriorityResult
from .models import (
    BUCKETS,
    SOURCE_TYPES,
    CompanyAttentionState,
    PriorityItem,
    company_state_to_dict,
    priority_item_to_dict,
)


def top_items(result: PriorityResult, n: int) -> list[PriorityItem]:
    return list(result.top(n))


def bucket_counts(result: PriorityResult) -> dict[str, int]:
    counts = {bucket: 0 for bucket in BUCKETS}
    for item in result.items:
        counts[item.bucket] = counts.get(item.bucket, 0) + 1
    return counts


def source_counts(result: PriorityResult) -> dict[str, int]:
    counts = {source: 0 for source in SOURCE_TYPES}
    for item in result.items:
        counts[item.source_type] = counts.get(item.source_type, 0) + 1
    return counts


def group_by_bucket(result: PriorityResult) -> dict[str, list[PriorityItem]]:
    grouped: dict[str, list[PriorityItem]] = {bucket: [] for bucket in BUCKETS}
    for item in result.items:
        grouped.setdefault(item.bucket, []).append(item)
    return grouped


def build_source_panels(result: PriorityResult, limit: int = 8) -> dict[str, list[PriorityItem]]:
    by_source: dict[str, list[PriorityItem]] = defaultdict(list)
    for item in result.items:
        by_source[item.source_type].append(item)
    return {source: by_source.get(source, [])[:limit] for source in SOURCE_TYPES}


def score_distribution(items: list[PriorityItem]) -> dict[str, Any]:
    if not items:
        return {"count": 0, "avg": 0.0, "min": 0.0, "max": 0.0}
    scores = [item.priority_score for item in items]
    return {
        "count": len(scores),
        "avg": sum(scores) / len(scores),
        "min": min(scores),
        "max": max(scores),
    }


def debug_view(result: PriorityResult, source: str | None = None) -> dict[str, Any]:
    ranked_position = {item.id: idx for idx, item in enumerate(result.items)}
    excluded = dict(result.excluded)
    rows = []
    for item in result.all_items:
        if source and item.source_type != source:
            continue
        row = priority_item_to_dict(item)
        row["rank"] = ranked_position.get(item.id)
        row["excluded_reason"] = excluded.get(item.id)
        rows.append(row)
    rows.sort(key=lambda row: (row["rank"] is None, row["rank"] if row["rank"] is not None else 0, row["id"]))
    ranked = [item for item in result.items if not source or item.source_type == source]
    return {
        "computed_at": result.computed_at.isoformat(),
        "flag_policy": result.flag_policy,
        "degraded_sources": list(result.degraded_sources),
        "items": rows,
        "distribution": source_counts(result),
        "scores": score_distribution(ranked),
        "panels": {name: [item.id for item in panel] for name, panel in build_source_panels(result).items()},
    }


def company_attention_for(result: PriorityResult, company_id: str) -> CompanyAttentionState | None:
    return result.company(company_id)


def companies_view(result: PriorityResult) -> dict[str, Any]:
    return {
        "companies": [company_state_to_dict(state) for state in result.companies],
        "summary": summarize_attention(result.companies),
    }

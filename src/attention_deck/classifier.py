from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, tzinfo
from typing import Any, Iterable

from .config import AttentionConfig
from .models import AttentionSignal, CompanyAttentionState, CompanyRecord, LinkedEntity, WorkItem
from .scoring import day_delta

BUCKET_ORDER = {"overdue": 0, "due_today": 1, "upcoming": 2, "none": 3}


def classify_bucket(due_at: datetime | None, now: datetime, tz: tzinfo) -> str:
    if due_at is None:
        return "none"
    delta = day_delta(due_at, now, tz)
    if delta < 0:
        return "overdue"
    if delta == 0:
        return "due_today"
    return "upcoming"


def decay(age: timedelta, window_days: float) -> float:
    """Linear falloff: 1 at age zero, 0 at and beyond the window."""
    if age <= timedelta(0):
        return 1.0
    window = timedelta(days=window_days)
    if age >= window:
        return 0.0
    return 1.0 - age / window


def attention_score(signals: Iterable[AttentionSignal], now: datetime, window_days: float) -> float:
    return sum(signal.weight * decay(now - signal.timestamp, window_days) for signal in signals)


def status_for_score(score: float, attention: AttentionConfig) -> str:
    if score >= attention.red_threshold:
        return "red"
    if score >= attention.yellow_threshold:
        return "yellow"
    return "green"


def _newest_first(signals: Iterable[AttentionSignal]) -> tuple[AttentionSignal, ...]:
    return tuple(sorted(signals, key=lambda s: (-s.timestamp.timestamp(), s.source, s.description)))


def company_attention_state(
    company_id: str,
    entity_type: str,
    signals: Iterable[AttentionSignal],
    now: datetime,
    attention: AttentionConfig,
    *,
    name: str = "",
) -> CompanyAttentionState:
    ordered = _newest_first(signals)
    score = attention_score(ordered, now, attention.decay_window_days)
    return CompanyAttentionState(
        company_id=company_id,
        entity_type=entity_type,
        status=status_for_score(score, attention),
        score=score,
        signals=ordered,
        name=name,
    )


def derive_company_signals(
    company: CompanyRecord,
    items: Iterable[WorkItem],
    now: datetime,
    tz: tzinfo,
    attention: AttentionConfig,
) -> list[AttentionSignal]:
    entity = LinkedEntity(type=company.entity_type, id=company.id)
    linked = [item for item in items if item.linked_entity == entity and not item.completed]
    signals: list[AttentionSignal] = []

    if company.last_interaction_at is None:
        signals.append(AttentionSignal("interactions", 0.9, "No interactions recorded", now))
    else:
        days_since = (now - company.last_interaction_at).days
        if days_since > attention.dormant_after_days:
            signals.append(
                AttentionSignal("interactions", 0.9, f"No interaction in over {attention.dormant_after_days} days", now)
            )
        elif days_since >= attention.stale_after_days:
            signals.append(AttentionSignal("interactions", 0.5, f"Last touch was {days_since} days ago", now))

    open_tasks = [item for item in linked if item.source_type == "task"]
    if open_tasks and not company.next_step:
        signals.append(AttentionSignal("tasks", 0.8, "Open tasks with no clear next step", now))
    elif not company.next_step:
        signals.append(AttentionSignal("tasks", 0.3, "No next step defined", now))

    overdue = [item for item in open_tasks if classify_bucket(item.due_at, now, tz) == "overdue"]
    if overdue:
        label = "task" if len(overdue) == 1 else "tasks"
        signals.append(AttentionSignal("tasks", 0.6, f"{len(overdue)} overdue {label}", now))

    if company.close_date is not None:
        days_until_close = day_delta(company.close_date, now, tz)
        if 0 <= days_until_close <= attention.closing_soon_days:
            signals.append(AttentionSignal("calendar", 0.5, f"Closing in {days_until_close} days", now))

    for item in linked:
        if item.source_type == "email":
            signals.append(AttentionSignal("inbox", 0.3, f"Unresolved email: {item.title}", item.created_at))

    signals.extend(company.overrides)
    return signals


def build_company_attention(
    companies: Iterable[CompanyRecord],
    items: list[WorkItem],
    now: datetime,
    tz: tzinfo,
    attention: AttentionConfig,
) -> list[CompanyAttentionState]:
    states = []
    for company in companies:
        signals = derive_company_signals(company, items, now, tz, attention)
        states.append(
            company_attention_state(company.id, company.entity_type, signals, now, attention, name=company.name)
        )
    return sorted(states, key=lambda s: (-s.score, s.entity_type, s.company_id))


def summarize_attention(states: Iterable[CompanyAttentionState]) -> dict[str, Any]:
    counts = Counter(state.status for state in states)
    parts = [f"{counts[status]} {status}" for status in ("red", "yellow") if counts[status]]
    return {
        "red": counts["red"],
        "yellow": counts["yellow"],
        "green": counts["green"],
        "summary_text": " • ".join(parts) if parts else "All clear",
    }

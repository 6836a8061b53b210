from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

SOURCE_TYPES = ("task", "email", "calendar", "commitment")
BUCKETS = ("overdue", "due_today", "upcoming", "none")
ENTITY_TYPES = ("portfolio", "pipeline", "project", "person")
COMPANY_TYPES = ("portfolio", "pipeline")
SIGNAL_SOURCES = ("tasks", "interactions", "inbox", "calendar", "manual")
ATTENTION_STATUSES = ("red", "yellow", "green")


@dataclass(frozen=True)
class LinkedEntity:
    type: str
    id: str

    def key(self) -> str:
        return f"{self.type}:{self.id}"


@dataclass(frozen=True)
class Suggestion:
    id: str
    type: str
    title: str
    confidence: str = "low"
    effort_bucket: str = "quick"
    effort_minutes: int = 0
    rationale: str = ""
    company_id: str | None = None
    company_type: str | None = None


@dataclass(frozen=True)
class SuggestionSet:
    """Output of the intent classifier for one message. Never read by the scorer."""

    intent: str
    intent_confidence: str
    suggestions: tuple[Suggestion, ...] = ()
    asks: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkItem:
    """Canonical, source-tagged record produced once at the normalizer boundary.

    ``id`` is ``"<source_type>:<source_id>"`` so it stays stable across passes.
    ``supersedes`` optionally names the id of another item that represents the
    same logical action; the ranker uses it to collapse cross-source duplicates.
    """

    id: str
    source_type: str
    source_id: str
    title: str
    created_at: datetime
    due_at: datetime | None = None
    is_explicit_priority: bool = False
    linked_entity: LinkedEntity | None = None
    completed: bool = False
    supersedes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    annotations: SuggestionSet | None = None


@dataclass(frozen=True)
class PriorityItem:
    item: WorkItem
    priority_score: float
    bucket: str
    score_reasons: tuple[str, ...] = ()
    reasoning: str = ""

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def source_type(self) -> str:
        return self.item.source_type

    @property
    def title(self) -> str:
        return self.item.title

    @property
    def due_at(self) -> datetime | None:
        return self.item.due_at

    @property
    def is_top_priority(self) -> bool:
        return self.item.is_explicit_priority


@dataclass(frozen=True)
class AttentionSignal:
    source: str
    weight: float
    description: str
    timestamp: datetime


@dataclass(frozen=True)
class CompanyRecord:
    id: str
    entity_type: str
    name: str
    last_interaction_at: datetime | None = None
    next_step: str | None = None
    close_date: datetime | None = None
    overrides: tuple[AttentionSignal, ...] = ()


@dataclass(frozen=True)
class CompanyAttentionState:
    company_id: str
    entity_type: str
    status: str
    score: float
    signals: tuple[AttentionSignal, ...] = ()
    name: str = ""


# UTC offsets stay under a day, so anything inside these bounds converts to any zone.
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc) + timedelta(days=1)
_LATEST = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=1)


def _within_range(dt: datetime) -> datetime | None:
    try:
        utc = dt.astimezone(timezone.utc)
    except OverflowError:
        return None
    return dt if _EARLIEST <= utc <= _LATEST else None


def parse_timestamp(value: Any, default_tz: tzinfo = timezone.utc) -> datetime | None:
    """Parse ISO strings, dates, datetimes and epoch seconds.

    Naive values are read in ``default_tz``. Anything unparsable, or too close
    to the edge of the datetime range to convert between zones, yields ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _within_range(value if value.tzinfo else value.replace(tzinfo=default_tz))
    if isinstance(value, date):
        return _within_range(datetime(value.year, value.month, value.day, tzinfo=default_tz))
    if isinstance(value, (int, float)):
        try:
            return _within_range(datetime.fromtimestamp(float(value), tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        try:
            return _within_range(datetime.fromtimestamp(float(text), tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz)
    return _within_range(dt)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def linked_entity_to_dict(entity: LinkedEntity | None) -> dict[str, str] | None:
    if entity is None:
        return None
    return {"type": entity.type, "id": entity.id}


def linked_entity_from_dict(payload: dict[str, Any] | None) -> LinkedEntity | None:
    if not payload or not payload.get("type") or not payload.get("id"):
        return None
    return LinkedEntity(type=str(payload["type"]), id=str(payload["id"]))


def suggestion_set_to_dict(annotations: SuggestionSet | None) -> dict[str, Any] | None:
    if annotations is None:
        return None
    return {
        "intent": annotations.intent,
        "intent_confidence": annotations.intent_confidence,
        "asks": list(annotations.asks),
        "suggestions": [
            {
                "id": s.id,
                "type": s.type,
                "title": s.title,
                "confidence": s.confidence,
                "effort_bucket": s.effort_bucket,
                "effort_minutes": s.effort_minutes,
                "rationale": s.rationale,
                "company_id": s.company_id,
                "company_type": s.company_type,
            }
            for s in annotations.suggestions
        ],
    }


def suggestion_set_from_dict(payload: dict[str, Any] | None) -> SuggestionSet | None:
    if not payload:
        return None
    suggestions = []
    for idx, row in enumerate(payload.get("suggestions") or []):
        if not isinstance(row, dict):
            continue
        suggestions.append(
            Suggestion(
                id=str(row.get("id") or f"suggestion-{idx}"),
                type=str(row.get("type", "")),
                title=str(row.get("title", "")),
                confidence=str(row.get("confidence", "low")),
                effort_bucket=str(row.get("effort_bucket", "quick")),
                effort_minutes=int(row.get("effort_minutes") or 0),
                rationale=str(row.get("rationale", "")),
                company_id=str(row["company_id"]) if row.get("company_id") else None,
                company_type=str(row["company_type"]) if row.get("company_type") else None,
            )
        )
    return SuggestionSet(
        intent=str(payload.get("intent", "fyi_informational")),
        intent_confidence=str(payload.get("intent_confidence", "low")),
        suggestions=tuple(suggestions),
        asks=tuple(str(x) for x in payload.get("asks", [])),
    )


def work_item_to_dict(item: WorkItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "source_type": item.source_type,
        "source_id": item.source_id,
        "title": item.title,
        "created_at": item.created_at.isoformat(),
        "due_at": _isoformat(item.due_at),
        "is_explicit_priority": item.is_explicit_priority,
        "linked_entity": linked_entity_to_dict(item.linked_entity),
        "completed": item.completed,
        "supersedes": item.supersedes,
        "metadata": dict(item.metadata),
        "annotations": suggestion_set_to_dict(item.annotations),
    }


def work_item_from_dict(payload: dict[str, Any]) -> WorkItem:
    created_at = parse_timestamp(payload.get("created_at")) or datetime.fromtimestamp(0, tz=timezone.utc)
    return WorkItem(
        id=str(payload.get("id", "")),
        source_type=str(payload.get("source_type", "")),
        source_id=str(payload.get("source_id", "")),
        title=str(payload.get("title", "")),
        created_at=created_at,
        due_at=parse_timestamp(payload.get("due_at")),
        is_explicit_priority=bool(payload.get("is_explicit_priority", False)),
        linked_entity=linked_entity_from_dict(payload.get("linked_entity")),
        completed=bool(payload.get("completed", False)),
        supersedes=str(payload["supersedes"]) if payload.get("supersedes") else None,
        metadata=dict(payload.get("metadata") or {}),
        annotations=suggestion_set_from_dict(payload.get("annotations")),
    )


def priority_item_to_dict(item: PriorityItem) -> dict[str, Any]:
    payload = work_item_to_dict(item.item)
    payload.update(
        {
            "priority_score": item.priority_score,
            "bucket": item.bucket,
            "is_top_priority": item.is_top_priority,
            "score_reasons": list(item.score_reasons),
            "reasoning": item.reasoning,
        }
    )
    return payload


def priority_item_from_dict(payload: dict[str, Any]) -> PriorityItem:
    return PriorityItem(
        item=work_item_from_dict(payload),
        priority_score=float(payload.get("priority_score", 0)),
        bucket=str(payload.get("bucket", "none")),
        score_reasons=tuple(str(x) for x in payload.get("score_reasons", [])),
        reasoning=str(payload.get("reasoning", "")),
    )


def attention_signal_to_dict(signal: AttentionSignal) -> dict[str, Any]:
    return {
        "source": signal.source,
        "weight": signal.weight,
        "description": signal.description,
        "timestamp": signal.timestamp.isoformat(),
    }


def attention_signal_from_dict(payload: dict[str, Any], now: datetime) -> AttentionSignal:
    return AttentionSignal(
        source=str(payload.get("source", "manual")),
        weight=float(payload.get("weight", 0)),
        description=str(payload.get("description", "")),
        timestamp=parse_timestamp(payload.get("timestamp")) or now,
    )


def company_state_to_dict(state: CompanyAttentionState) -> dict[str, Any]:
    return {
        "company_id": state.company_id,
        "entity_type": state.entity_type,
        "name": state.name,
        "status": state.status,
        "score": state.score,
        "signals": [attention_signal_to_dict(s) for s in state.signals],
    }


def company_state_from_dict(payload: dict[str, Any]) -> CompanyAttentionState:
    epoch = datetime.fromtimestamp(0, tz=timezone.utc)
    return CompanyAttentionState(
        company_id=str(payload.get("company_id", "")),
        entity_type=str(payload.get("entity_type", "portfolio")),
        status=str(payload.get("status", "green")),
        score=float(payload.get("score", 0)),
        signals=tuple(attention_signal_from_dict(s, epoch) for s in payload.get("signals", [])),
        name=str(payload.get("name", "")),
    )

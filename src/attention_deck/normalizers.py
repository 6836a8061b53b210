from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Iterable

from .config import EngineConfig
from .models import (
    COMPANY_TYPES,
    AttentionSignal,
    CompanyRecord,
    LinkedEntity,
    WorkItem,
    attention_signal_from_dict,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

OPEN_COMMITMENT_STATUSES = ("open", "waiting_on")
ARCHIVED_COMPANY_STATUSES = {"portfolio": ("archived",), "pipeline": ("passed",)}


def _title(text: Any, fallback: str, limit: int = 200) -> str:
    trimmed = " ".join(str(text or "").split())
    if not trimmed:
        return fallback
    if len(trimmed) <= limit:
        return trimmed
    return f"{trimmed[:limit - 3]}..."


def _timestamp(record: dict[str, Any], key: str, tz: tzinfo, item_id: str) -> datetime | None:
    raw = record.get(key)
    parsed = parse_timestamp(raw, tz)
    if raw not in (None, "") and parsed is None:
        logger.debug("Unparsable %s=%r on %s; keeping item without it", key, raw, item_id)
    return parsed


def _company_entity(record: dict[str, Any], id_key: str, type_key: str) -> LinkedEntity | None:
    company_id = record.get(id_key)
    if not company_id:
        return None
    company_type = str(record.get(type_key) or "portfolio")
    if company_type not in COMPANY_TYPES:
        company_type = "portfolio"
    return LinkedEntity(type=company_type, id=str(company_id))


def _supersedes(record: dict[str, Any]) -> str | None:
    value = record.get("supersedes")
    return str(value) if value else None


def _deferred(due_at: datetime | None, snoozed_until: datetime | None, now: datetime) -> datetime | None:
    if snoozed_until is not None and snoozed_until > now:
        return snoozed_until
    return due_at


def normalize_tasks(tasks: Iterable[dict[str, Any]], now: datetime, tz: tzinfo) -> list[WorkItem]:
    output: list[WorkItem] = []
    for task in tasks:
        source_id = str(task.get("id") or "")
        item_id = f"task:{source_id}"
        due_at = _timestamp(task, "scheduled_for", tz, item_id)
        snoozed_until = _timestamp(task, "snoozed_until", tz, item_id)

        linked: LinkedEntity | None = None
        if task.get("company_id"):
            linked = LinkedEntity(type="portfolio", id=str(task["company_id"]))
        elif task.get("pipeline_company_id"):
            linked = LinkedEntity(type="pipeline", id=str(task["pipeline_company_id"]))
        elif task.get("project_id"):
            linked = LinkedEntity(type="project", id=str(task["project_id"]))

        priority = str(task.get("priority") or "").lower()
        output.append(
            WorkItem(
                id=item_id,
                source_type="task",
                source_id=source_id,
                title=_title(task.get("content") or task.get("title"), "Untitled task"),
                created_at=_timestamp(task, "created_at", tz, item_id) or now,
                due_at=_deferred(due_at, snoozed_until, now),
                is_explicit_priority=bool(task.get("is_top_priority")) or priority == "high",
                linked_entity=linked,
                completed=bool(task.get("completed")),
                supersedes=_supersedes(task),
                metadata={"priority": priority or None, "project_id": task.get("project_id")},
            )
        )
    return output


def normalize_inbox(messages: Iterable[dict[str, Any]], now: datetime, tz: tzinfo) -> list[WorkItem]:
    output: list[WorkItem] = []
    for message in messages:
        if message.get("is_resolved") or message.get("is_deleted"):
            continue
        source_id = str(message.get("id") or "")
        item_id = f"email:{source_id}"
        # receipt time only ranks staleness; a snooze is the only due date an email gets
        received_at = _timestamp(message, "received_at", tz, item_id)
        snoozed_until = _timestamp(message, "snoozed_until", tz, item_id)
        sender = str(message.get("sender_name") or message.get("sender_email") or "")
        output.append(
            WorkItem(
                id=item_id,
                source_type="email",
                source_id=source_id,
                title=_title(message.get("subject"), "No subject"),
                created_at=received_at or now,
                due_at=snoozed_until,
                is_explicit_priority=bool(message.get("is_top_priority")),
                linked_entity=_company_entity(message, "related_company_id", "related_company_type"),
                completed=False,
                supersedes=_supersedes(message),
                metadata={"sender": sender, "is_read": bool(message.get("is_read"))},
            )
        )
    return output


def normalize_calendar(
    events: Iterable[dict[str, Any]],
    now: datetime,
    tz: tzinfo,
    lookahead_hours: int | None = None,
) -> list[WorkItem]:
    output: list[WorkItem] = []
    today = now.astimezone(tz).date()
    end_window = now + timedelta(hours=lookahead_hours) if lookahead_hours is not None else None
    for event in events:
        source_id = str(event.get("id") or "")
        item_id = f"calendar:{source_id}"
        start = _timestamp(event, "start_time", tz, item_id)
        if start is not None:
            if start.astimezone(tz).date() < today:
                continue
            if end_window is not None and start > end_window:
                continue

        linked = _company_entity(event, "company_id", "company_type")
        if linked is None and event.get("project_id"):
            linked = LinkedEntity(type="project", id=str(event["project_id"]))
        output.append(
            WorkItem(
                id=item_id,
                source_type="calendar",
                source_id=source_id,
                title=_title(event.get("title") or event.get("subject"), "Calendar event"),
                created_at=_timestamp(event, "created_at", tz, item_id) or now,
                due_at=start,
                is_explicit_priority=bool(event.get("is_top_priority")),
                linked_entity=linked,
                completed=bool(event.get("is_cancelled")),
                supersedes=_supersedes(event),
                metadata={"location": event.get("location"), "end_time": event.get("end_time")},
            )
        )
    return output


def normalize_commitments(commitments: Iterable[dict[str, Any]], now: datetime, tz: tzinfo) -> list[WorkItem]:
    output: list[WorkItem] = []
    for commitment in commitments:
        source_id = str(commitment.get("id") or "")
        item_id = f"commitment:{source_id}"
        direction = str(commitment.get("direction") or "owed_by_me")
        status = str(commitment.get("status") or "open")
        is_open = status in OPEN_COMMITMENT_STATUSES

        due_at = _timestamp(commitment, "due_at", tz, item_id)
        if due_at is None and direction == "owed_to_me":
            due_at = _timestamp(commitment, "expected_by", tz, item_id)
        snoozed_until = _timestamp(commitment, "snoozed_until", tz, item_id)

        linked = _company_entity(commitment, "company_id", "company_type")
        if linked is None and commitment.get("person_id"):
            linked = LinkedEntity(type="person", id=str(commitment["person_id"]))
        output.append(
            WorkItem(
                id=item_id,
                source_type="commitment",
                source_id=source_id,
                title=_title(commitment.get("title") or commitment.get("content"), "Commitment"),
                created_at=_timestamp(commitment, "promised_at", tz, item_id)
                or _timestamp(commitment, "created_at", tz, item_id)
                or now,
                due_at=_deferred(due_at, snoozed_until, now),
                is_explicit_priority=direction == "owed_by_me" and is_open,
                linked_entity=linked,
                completed=not is_open,
                supersedes=_supersedes(commitment),
                metadata={
                    "direction": direction,
                    "status": status,
                    "person_name": commitment.get("person_name"),
                },
            )
        )
    return output


def normalize_companies(
    portfolio: Iterable[dict[str, Any]],
    pipeline: Iterable[dict[str, Any]],
    now: datetime,
    tz: tzinfo,
) -> list[CompanyRecord]:
    output: list[CompanyRecord] = []
    for entity_type, rows in (("portfolio", portfolio), ("pipeline", pipeline)):
        for row in rows:
            if str(row.get("status") or "") in ARCHIVED_COMPANY_STATUSES[entity_type]:
                continue
            company_id = str(row.get("id") or "")
            label = f"{entity_type}:{company_id}"
            next_step = row.get("next_steps") if entity_type == "pipeline" else row.get("next_task")
            next_step = str(next_step or row.get("next_step") or "").strip()
            overrides: list[AttentionSignal] = []
            for override in row.get("attention_overrides") or []:
                if isinstance(override, dict):
                    overrides.append(attention_signal_from_dict({"source": "manual", **override}, now))
            output.append(
                CompanyRecord(
                    id=company_id,
                    entity_type=entity_type,
                    name=str(row.get("name") or row.get("company_name") or company_id),
                    last_interaction_at=_timestamp(row, "last_interaction_at", tz, label),
                    next_step=next_step or None,
                    close_date=_timestamp(row, "close_date", tz, label),
                    overrides=tuple(overrides),
                )
            )
    return output


def normalize_all(
    config: EngineConfig,
    now: datetime,
    tasks: list[dict[str, Any]],
    inbox: list[dict[str, Any]],
    calendar: list[dict[str, Any]],
    commitments: list[dict[str, Any]],
) -> list[WorkItem]:
    tz = config.tz
    items: list[WorkItem] = []
    items.extend(normalize_tasks(tasks, now=now, tz=tz))
    items.extend(normalize_inbox(inbox, now=now, tz=tz))
    items.extend(
        normalize_calendar(calendar, now=now, tz=tz, lookahead_hours=config.ranking.calendar_lookahead_hours)
    )
    items.extend(normalize_commitments(commitments, now=now, tz=tz))
    return items

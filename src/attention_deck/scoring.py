from __future__ import annotations

from datetime import datetime, tzinfo

from .config import ScoringConfig
from .models import WorkItem


def day_delta(due_at: datetime, now: datetime, tz: tzinfo) -> int:
    """Calendar days from today to the due date, in the user's timezone."""
    return (due_at.astimezone(tz).date() - now.astimezone(tz).date()).days


def _fmt(points: float) -> str:
    return f"{points:g}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def urgency_points(due_at: datetime | None, now: datetime, tz: tzinfo, scoring: ScoringConfig) -> tuple[float, str]:
    if due_at is None:
        return 0.0, ""
    delta = day_delta(due_at, now, tz)
    if delta < 0:
        days_overdue = -delta
        points = scoring.overdue_base + min(days_overdue, scoring.overdue_cap_days) * scoring.overdue_per_day
        return points, f"overdue by {_plural(days_overdue, 'day')}"
    if delta == 0:
        return scoring.due_today, "due today"
    if delta <= scoring.soon_days:
        return scoring.soon_base - delta * scoring.soon_per_day, f"due in {_plural(delta, 'day')}"
    return max(0.0, scoring.later_base - delta), f"due in {_plural(delta, 'day')}"


def score_item(item: WorkItem, now: datetime, tz: tzinfo, scoring: ScoringConfig) -> tuple[float, list[str]]:
    base = scoring.weight_for(item.source_type)
    reasons = [f"+{_fmt(base)} {item.source_type} source"]

    urgency, label = urgency_points(item.due_at, now, tz, scoring)
    if label:
        reasons.append(f"+{_fmt(urgency)} {label}")
    else:
        reasons.append("+0 no due date")

    flag_bonus = scoring.flag_bonus if item.is_explicit_priority else 0.0
    if flag_bonus:
        reasons.append(f"+{_fmt(flag_bonus)} explicit priority")

    return base + urgency + flag_bonus, reasons


def describe_item(item: WorkItem, now: datetime, tz: tzinfo) -> str:
    parts: list[str] = []
    if item.due_at is not None:
        delta = day_delta(item.due_at, now, tz)
        if delta < 0:
            parts.append(f"Overdue by {_plural(-delta, 'day')}")
        elif delta == 0:
            parts.append("Starts today" if item.source_type == "calendar" else "Due today")
        elif delta == 1:
            parts.append("Due tomorrow")
        else:
            parts.append(f"Due in {_plural(delta, 'day')}")
    elif item.source_type == "email":
        age = max(0, -day_delta(item.created_at, now, tz))
        if age == 0:
            parts.append("Received today")
        elif age == 1:
            parts.append("Received yesterday")
        else:
            parts.append(f"Received {age} days ago")

    if item.is_explicit_priority:
        if item.source_type == "commitment":
            parts.append("You owe this")
        else:
            parts.append("High priority")

    if item.linked_entity is not None:
        parts.append(f"Linked to {item.linked_entity.key()}")

    if not parts:
        return "Needs attention."
    return ". ".join(parts) + "."

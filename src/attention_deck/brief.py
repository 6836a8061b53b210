from __future__ import annotations

from datetime import datetime, tzinfo

from .dashboard_services import bucket_counts, group_by_bucket
from .engine import PriorityResult
from .models import CompanyAttentionState, PriorityItem

BUCKET_HEADINGS = {
    "overdue": "Overdue",
    "due_today": "Due Today",
    "upcoming": "Upcoming",
    "none": "No Due Date",
}


def _fmt_item(item: PriorityItem) -> str:
    flag = " ⚑" if item.is_top_priority else ""
    reasons = f" | {'; '.join(item.score_reasons)}" if item.score_reasons else ""
    return (
        f"- [{item.source_type}] **{item.title}**{flag} (score: {item.priority_score:g}){reasons}\n"
        f"  - {item.reasoning}"
    )


def _fmt_company(state: CompanyAttentionState) -> str:
    label = state.name or state.company_id
    top_signal = state.signals[0].description if state.signals else "No recent signals"
    return f"- **{label}** ({state.entity_type}, {state.status}, score {state.score:.2f}): {top_signal}"


def render_brief(result: PriorityResult, now: datetime, max_items: int, tz: tzinfo | None = None) -> str:
    """Markdown brief for one result; the heading date is taken in ``tz`` when given."""
    top = result.top(max_items)
    counts = bucket_counts(result)
    grouped = group_by_bucket(result)
    needs_attention = [state for state in result.companies if state.status != "green"]

    lines: list[str] = []
    local_now = now.astimezone(tz) if tz is not None else now
    lines.append(f"# Attention Brief ({local_now.date().isoformat()})")
    if result.degraded_sources:
        lines.append("")
        lines.append(f"> Partial data: {', '.join(result.degraded_sources)} could not be loaded.")

    lines.append("")
    lines.append(f"## Top {max_items} Priorities")
    if top:
        lines.extend(_fmt_item(item) for item in top)
    else:
        lines.append("- Nothing needs attention right now.")

    lines.append("")
    lines.append("## Counts")
    lines.append(" | ".join(f"{BUCKET_HEADINGS[bucket]}: {count}" for bucket, count in counts.items()))

    lines.append("")
    lines.append("## Overdue")
    if grouped["overdue"]:
        lines.extend(_fmt_item(item) for item in grouped["overdue"][:5])
    else:
        lines.append("- Nothing overdue.")

    lines.append("")
    lines.append("## Companies Needing Attention")
    if needs_attention:
        lines.extend(_fmt_company(state) for state in needs_attention)
    else:
        lines.append("- All clear.")

    lines.append("")
    lines.append("## Start Here")
    if top:
        lines.append(_fmt_item(top[0]))
    else:
        lines.append("- Review the inbox and upcoming calendar.")

    return "\n".join(lines)

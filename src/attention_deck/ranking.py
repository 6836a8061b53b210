from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from .classifier import BUCKET_ORDER
from .config import FLAG_POLICY_PROMOTE, FLAG_POLICY_WITHIN_BUCKET
from .models import PriorityItem

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def sort_key(item: PriorityItem, flag_policy: str = FLAG_POLICY_WITHIN_BUCKET) -> tuple:
    due_key = item.due_at.astimezone(timezone.utc) if item.due_at else _FAR_FUTURE
    key = (BUCKET_ORDER.get(item.bucket, len(BUCKET_ORDER)), -item.priority_score, due_key, item.id)
    if flag_policy == FLAG_POLICY_PROMOTE:
        return (0 if item.is_top_priority else 1, *key)
    return key


def deduplicate(items: Iterable[PriorityItem]) -> tuple[list[PriorityItem], list[str]]:
    """Collapse pairs joined by a ``supersedes`` hint on the same linked entity.

    The higher-scoring item of a pair survives (the declaring item wins an exact
    tie). Items that supersede each other are both kept. Returns the survivors
    in input order and the ids that were dropped.
    """
    items = list(items)
    by_id = {item.id: item for item in items}
    dropped: set[str] = set()

    for claimant in sorted(items, key=lambda i: i.id):
        target_id = claimant.item.supersedes
        if not target_id or target_id == claimant.id:
            continue
        target = by_id.get(target_id)
        if target is None:
            continue
        if target.item.supersedes == claimant.id:
            logger.debug("Conflicting supersede hints between %s and %s; keeping both", claimant.id, target.id)
            continue
        if claimant.item.linked_entity is None or claimant.item.linked_entity != target.item.linked_entity:
            continue
        if claimant.id in dropped or target.id in dropped:
            continue
        loser = target if claimant.priority_score >= target.priority_score else claimant
        dropped.add(loser.id)
        logger.debug("Collapsed %s into %s", loser.id, target.id if loser is claimant else claimant.id)

    return [item for item in items if item.id not in dropped], sorted(dropped)


def rank_items(
    items: Iterable[PriorityItem],
    flag_policy: str = FLAG_POLICY_WITHIN_BUCKET,
) -> tuple[list[PriorityItem], list[str]]:
    survivors, dropped = deduplicate(item for item in items if not item.item.completed)
    ranked = sorted(survivors, key=lambda item: sort_key(item, flag_policy))
    return ranked, dropped

"""Attention Deck package."""

from .brief import render_brief
from .config import EngineConfig, load_config
from .engine import PriorityEngine, PriorityResult, SourceSnapshot
from .models import CompanyAttentionState, PriorityItem, WorkItem
from .ranking import rank_items
from .storage import Storage

__all__ = [
    "CompanyAttentionState",
    "EngineConfig",
    "PriorityEngine",
    "PriorityItem",
    "PriorityResult",
    "SourceSnapshot",
    "Storage",
    "WorkItem",
    "load_config",
    "rank_items",
    "render_brief",
]

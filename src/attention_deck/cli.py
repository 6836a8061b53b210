from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path

from .brief import render_brief
from .config import load_config
from .dashboard_services import bucket_counts, companies_view, debug_view
from .engine import PriorityEngine
from .logging_setup import configure_logging
from .models import priority_item_to_dict
from .snapshot_producer import JsonFileRepository, fetch_snapshot


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rank today's work items and company attention.")
    parser.add_argument("--config", required=True, help="Path to attention_deck.yaml")
    parser.add_argument("--input-json", required=True, help="Source payload JSON (tasks, inbox, calendar, ...)")
    parser.add_argument("--now", help="Optional ISO timestamp for deterministic runs")
    parser.add_argument("--format", choices=["brief", "json", "debug"], default="brief")
    parser.add_argument("--top", type=int, help="Override ranking.top_n")
    parser.add_argument("--output-file", help="Write output to file instead of stdout")
    return parser.parse_args()


def _parse_now(text: str | None) -> datetime:
    if not text:
        return datetime.now(tz=timezone.utc)
    value = text.replace("Z", "+00:00")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def main() -> int:
    args = _parse_args()
    config = load_config(args.config)
    configure_logging(config.logging.level, config.logging.json)
    now = _parse_now(args.now)
    top_n = args.top if args.top is not None else config.ranking.top_n

    snapshot = fetch_snapshot(JsonFileRepository(args.input_json), user_id=config.user_id)
    result = PriorityEngine(config).compute(snapshot, now)

    if args.format == "brief":
        output = render_brief(result, now=now, max_items=top_n, tz=config.tz)
    elif args.format == "debug":
        output = json.dumps(debug_view(result), indent=2, ensure_ascii=False)
    else:
        output = json.dumps(
            {
                "computed_at": result.computed_at.isoformat(),
                "degraded_sources": list(result.degraded_sources),
                "bucket_counts": bucket_counts(result),
                "items": [priority_item_to_dict(item) for item in result.top(top_n)],
                **companies_view(result),
            },
            indent=2,
            ensure_ascii=False,
        )

    if args.output_file:
        Path(args.output_file).write_text(output, encoding="utf-8")
    else:
        print(output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

FLAG_POLICY_WITHIN_BUCKET = "within_bucket"
FLAG_POLICY_PROMOTE = "promote_above_buckets"
FLAG_POLICIES = (FLAG_POLICY_WITHIN_BUCKET, FLAG_POLICY_PROMOTE)

DEFAULT_SOURCE_WEIGHTS = {
    "task": 100.0,
    "commitment": 90.0,
    "email": 70.0,
    "calendar": 60.0,
}


@dataclass(frozen=True)
class ScoringConfig:
    source_weights: tuple[tuple[str, float], ...]
    default_weight: float = 10.0
    flag_bonus: float = 500.0
    overdue_base: float = 200.0
    overdue_per_day: float = 5.0
    overdue_cap_days: int = 30
    due_today: float = 150.0
    soon_days: int = 3
    soon_base: float = 80.0
    soon_per_day: float = 10.0
    later_base: float = 40.0

    def weight_for(self, source_type: str) -> float:
        return dict(self.source_weights).get(source_type, self.default_weight)

    def max_unflagged_score(self) -> float:
        max_weight = max([self.default_weight, *(w for _, w in self.source_weights)])
        max_urgency = max(
            self.overdue_base + self.overdue_cap_days * self.overdue_per_day,
            self.due_today,
            self.soon_base,
            self.later_base,
        )
        return max_weight + max_urgency

    def validate(self) -> None:
        if self.flag_bonus <= self.max_unflagged_score():
            raise ValueError("scoring.flag_bonus must exceed the largest unflagged score")
        if not self.overdue_base > self.due_today > self.soon_base - self.soon_per_day:
            raise ValueError("scoring must keep overdue > due_today > due soon urgency")
        if self.soon_base - self.soon_days * self.soon_per_day < self.later_base:
            raise ValueError("scoring.soon_* must not fall below scoring.later_base")


@dataclass(frozen=True)
class RankingConfig:
    top_n: int = 8
    flag_policy: str = FLAG_POLICY_WITHIN_BUCKET
    calendar_lookahead_hours: int | None = 48


@dataclass(frozen=True)
class AttentionConfig:
    decay_window_days: float = 30.0
    yellow_threshold: float = 0.4
    red_threshold: float = 1.2
    stale_after_days: int = 14
    dormant_after_days: int = 30
    closing_soon_days: int = 14

    def validate(self) -> None:
        if not self.red_threshold > self.yellow_threshold > 0:
            raise ValueError("attention thresholds must satisfy red > yellow > 0")
        if self.decay_window_days <= 0:
            raise ValueError("attention.decay_window_days must be positive")


@dataclass(frozen=True)
class RefreshConfig:
    coalesce_seconds: float = 20.0
    cache_ttl_seconds: float = 300.0


@dataclass(frozen=True)
class DashboardConfig:
    host: str
    port: int
    refresh_cooldown_minutes: int
    retention_days: int
    db_path: str
    snapshot_path: str
    payload_path: str


@dataclass(frozen=True)
class RuntimeConfig:
    openai_model: str
    suggestions_enabled: bool


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool | None = None


@dataclass(frozen=True)
class EngineConfig:
    timezone: str
    user_id: str | None
    scoring: ScoringConfig
    ranking: RankingConfig
    attention: AttentionConfig
    refresh: RefreshConfig
    dashboard: DashboardConfig
    runtime: RuntimeConfig
    logging: LoggingConfig

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EngineConfig":
        for key in ["timezone", "scoring", "ranking", "attention"]:
            if key not in data:
                raise ValueError(f"Missing required config key: {key}")

        scoring = data["scoring"] or {}
        ranking = data["ranking"] or {}
        attention = data["attention"] or {}
        refresh = data.get("refresh") or {}
        dashboard = data.get("dashboard") or {}
        runtime = data.get("runtime") or {}
        logging_section = data.get("logging") or {}

        timezone_name = str(data["timezone"])
        try:
            ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {timezone_name}") from exc

        weights = dict(DEFAULT_SOURCE_WEIGHTS)
        weights.update({str(k): float(v) for k, v in (scoring.get("source_weights") or {}).items()})

        flag_policy = str(ranking.get("flag_policy", FLAG_POLICY_WITHIN_BUCKET))
        if flag_policy not in FLAG_POLICIES:
            raise ValueError(f"Unsupported ranking.flag_policy: {flag_policy}")
        lookahead = ranking.get("calendar_lookahead_hours", 48)

        config = EngineConfig(
            timezone=timezone_name,
            user_id=str(data["user_id"]) if data.get("user_id") else None,
            scoring=ScoringConfig(
                source_weights=tuple(sorted(weights.items())),
                default_weight=float(scoring.get("default_weight", 10)),
                flag_bonus=float(scoring.get("flag_bonus", 500)),
                overdue_base=float(scoring.get("overdue_base", 200)),
                overdue_per_day=float(scoring.get("overdue_per_day", 5)),
                overdue_cap_days=int(scoring.get("overdue_cap_days", 30)),
                due_today=float(scoring.get("due_today", 150)),
                soon_days=int(scoring.get("soon_days", 3)),
                soon_base=float(scoring.get("soon_base", 80)),
                soon_per_day=float(scoring.get("soon_per_day", 10)),
                later_base=float(scoring.get("later_base", 40)),
            ),
            ranking=RankingConfig(
                top_n=int(ranking.get("top_n", 8)),
                flag_policy=flag_policy,
                calendar_lookahead_hours=int(lookahead) if lookahead is not None else None,
            ),
            attention=AttentionConfig(
                decay_window_days=float(attention.get("decay_window_days", 30)),
                yellow_threshold=float(attention.get("yellow_threshold", 0.4)),
                red_threshold=float(attention.get("red_threshold", 1.2)),
                stale_after_days=int(attention.get("stale_after_days", 14)),
                dormant_after_days=int(attention.get("dormant_after_days", 30)),
                closing_soon_days=int(attention.get("closing_soon_days", 14)),
            ),
            refresh=RefreshConfig(
                coalesce_seconds=float(refresh.get("coalesce_seconds", 20)),
                cache_ttl_seconds=float(refresh.get("cache_ttl_seconds", 300)),
            ),
            dashboard=DashboardConfig(
                host=str(dashboard.get("host", "127.0.0.1")),
                port=int(dashboard.get("port", 2026)),
                refresh_cooldown_minutes=int(dashboard.get("refresh_cooldown_minutes", 1)),
                retention_days=int(dashboard.get("retention_days", 30)),
                db_path=str(dashboard.get("db_path", "data/attention_deck.db")),
                snapshot_path=str(dashboard.get("snapshot_path", "data/latest_result.json")),
                payload_path=str(dashboard.get("payload_path", "data/source_payload.json")),
            ),
            runtime=RuntimeConfig(
                openai_model=str(runtime.get("openai_model", "gpt-4.1-mini")),
                suggestions_enabled=bool(runtime.get("suggestions_enabled", False)),
            ),
            logging=LoggingConfig(
                level=str(logging_section.get("level", "INFO")).upper(),
                json=logging_section.get("json"),
            ),
        )
        config.scoring.validate()
        config.attention.validate()
        return config


def default_config() -> EngineConfig:
    return EngineConfig.from_dict({"timezone": "UTC", "scoring": {}, "ranking": {}, "attention": {}})


def load_config(path: str | Path) -> EngineConfig:
    config_path = Path(path)
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Configuration root must be a mapping.")
    return EngineConfig.from_dict(raw)

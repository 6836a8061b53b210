from __future__ import annotations

import json
import logging
import threading
from typing import Any, Iterable, Protocol

from openai import OpenAI

from .models import SuggestionSet, suggestion_set_from_dict

logger = logging.getLogger(__name__)

EMAIL_INTENTS = (
    "intro_first_touch",
    "pipeline_follow_up",
    "portfolio_update",
    "intro_request",
    "scheduling",
    "personal_todo",
    "fyi_informational",
)
SUGGESTION_TYPES = (
    "LINK_COMPANY",
    "CREATE_PIPELINE_COMPANY",
    "CREATE_FOLLOW_UP_TASK",
    "CREATE_PERSONAL_TASK",
    "CREATE_INTRO_TASK",
    "CREATE_WAITING_ON",
    "SET_STATUS",
    "EXTRACT_UPDATE_HIGHLIGHTS",
)


class SuggestionClient(Protocol):
    def suggest(self, message: dict[str, Any]) -> SuggestionSet | None:
        ...


class RecordSuggestionClient:
    """Reads suggestions the classifier service already stored on the inbox row."""

    def suggest(self, message: dict[str, Any]) -> SuggestionSet | None:
        payload = message.get("suggestions")
        return suggestion_set_from_dict(payload) if isinstance(payload, dict) else None


class OpenAISuggestionClient:
    """Asks the model once per message id; later passes reuse the stored answer."""

    def __init__(self, model: str, *, client: Any | None = None, max_cached: int = 2000):
        self.model = model
        self._client = client
        self.max_cached = max_cached
        self._cache: dict[str, SuggestionSet | None] = {}
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def suggest(self, message: dict[str, Any]) -> SuggestionSet | None:
        message_id = str(message.get("id") or "")
        if message_id:
            with self._lock:
                if message_id in self._cache:
                    return self._cache[message_id]
        result = self._request(message)
        if message_id:
            with self._lock:
                self._cache[message_id] = result
                while len(self._cache) > self.max_cached:
                    self._cache.pop(next(iter(self._cache)))
        return result

    def _request(self, message: dict[str, Any]) -> SuggestionSet | None:
        system = (
            "You classify email for a venture investor's dashboard. "
            "No external side effects are allowed. Produce JSON only."
        )
        user = (
            f"Subject: {message.get('subject') or '(no subject)'}\n"
            f"From: {message.get('sender_name') or message.get('sender_email') or 'unknown'}\n"
            f"Body:\n{str(message.get('preview') or message.get('body') or '')[:2000]}\n\n"
            f"Return valid JSON with keys: intent (one of {', '.join(EMAIL_INTENTS)}), "
            "intent_confidence (low|medium|high), asks (array of strings), suggestions "
            f"(array of objects with type (one of {', '.join(SUGGESTION_TYPES)}), title, "
            "confidence (low|medium|high), effort_bucket (quick|medium|long), effort_minutes, rationale)."
        )
        response = self._get_client().responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        text = getattr(response, "output_text", "") or ""
        payload = _parse_json_object(text)
        if payload is None:
            logger.warning("Suggestion response for message %s was not a JSON object", message.get("id"))
            return None
        return suggestion_set_from_dict(payload)


def collect_annotations(client: SuggestionClient, messages: Iterable[dict[str, Any]]) -> dict[str, SuggestionSet]:
    annotations: dict[str, SuggestionSet] = {}
    for message in messages:
        if message.get("is_resolved") or message.get("is_deleted"):
            continue
        item_id = f"email:{message.get('id') or ''}"
        try:
            result = client.suggest(message)
        except Exception:
            logger.warning("Suggestion lookup failed for %s; leaving it unannotated", item_id, exc_info=True)
            continue
        if result is not None:
            annotations[item_id] = result
    return annotations


def _parse_json_object(text: str) -> dict[str, Any] | None:
    raw = text.strip()
    if not raw:
        return None
    if raw.startswith("```"):
        raw = raw.strip("`")
        if raw.startswith("json"):
            raw = raw[4:].strip()
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        parsed = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None

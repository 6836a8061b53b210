from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .engine import PriorityResult

logger = logging.getLogger(__name__)


class RecomputeScheduler:
    """Coalesces source invalidations into single engine passes.

    Every ``invalidate`` bumps a generation token. A pass captures the token it
    was started for; when it finishes, its result is published only if no newer
    invalidation arrived meanwhile. Superseded results are dropped whole, so
    the published result is always one complete pass.
    """

    def __init__(
        self,
        compute: Callable[[], PriorityResult],
        *,
        coalesce_seconds: float,
        cache_ttl_seconds: float,
        on_publish: Callable[[PriorityResult], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        start_worker: bool = True,
    ):
        self._compute = compute
        self.coalesce_seconds = coalesce_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self._on_publish = on_publish
        self._clock = clock
        self._cond = threading.Condition()
        self._requested = 0
        self._published_generation = 0
        self._first_pending_at: float | None = None
        self._stale_sources: set[str] = set()
        self._latest: PriorityResult | None = None
        self._published_at: float | None = None
        self._stopped = False
        self._thread: threading.Thread | None = None
        if start_worker:
            self.start()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stopped = False
        self._thread = threading.Thread(target=self._worker_loop, name="recompute-scheduler", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
        if self._thread:
            self._thread.join(timeout=2)

    def invalidate(self, source: str = "all") -> int:
        with self._cond:
            self._requested += 1
            self._stale_sources.add(source)
            if self._first_pending_at is None:
                self._first_pending_at = self._clock()
            self._cond.notify_all()
            return self._requested

    def request_now(self, source: str = "all") -> int:
        with self._cond:
            token = self.invalidate(source)
            self._first_pending_at = self._clock() - self.coalesce_seconds
            self._cond.notify_all()
            return token

    @property
    def pending_sources(self) -> frozenset[str]:
        with self._cond:
            return frozenset(self._stale_sources)

    def latest(self) -> PriorityResult | None:
        with self._cond:
            return self._latest

    def is_expired(self) -> bool:
        with self._cond:
            if self._published_at is None:
                return True
            return self._clock() - self._published_at >= self.cache_ttl_seconds

    def get(self) -> PriorityResult | None:
        """Latest result, recomputing synchronously when none exists, the TTL lapsed or a pass is due."""
        if self.is_expired():
            self.run_pending(force=True)
        else:
            self.run_pending()
        return self.latest()

    def _is_due(self) -> bool:
        if self._first_pending_at is None:
            return False
        return self._clock() - self._first_pending_at >= self.coalesce_seconds

    def run_pending(self, *, force: bool = False) -> PriorityResult | None:
        with self._cond:
            if not force and not self._is_due():
                return None
            generation = self._requested
            stale = set(self._stale_sources)
            pending_since = self._first_pending_at
            self._stale_sources.clear()
            self._first_pending_at = None

        logger.debug("Starting pass %d for stale sources %s", generation, ",".join(sorted(stale)) or "none")
        try:
            result = self._compute()
        except Exception:
            self._restore_pending(stale, pending_since)
            raise
        return self._publish(generation, result)

    def _restore_pending(self, stale: set[str], pending_since: float | None) -> None:
        # A failed pass leaves its sources stale; the next pass picks them up.
        with self._cond:
            self._stale_sources |= stale
            if pending_since is not None and (
                self._first_pending_at is None or pending_since < self._first_pending_at
            ):
                self._first_pending_at = pending_since

    def _publish(self, generation: int, result: PriorityResult) -> PriorityResult | None:
        with self._cond:
            if generation < self._requested or generation < self._published_generation:
                logger.info("Discarding pass %d; superseded by request %d", generation, self._requested)
                return None
            self._latest = result
            self._published_generation = generation
            self._published_at = self._clock()
        if self._on_publish is not None:
            self._on_publish(result)
        return result

    def _seconds_until_due(self) -> float | None:
        if self._first_pending_at is None:
            return None
        return max(0.0, self._first_pending_at + self.coalesce_seconds - self._clock())

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                if self._stopped:
                    return
                wait_for = self._seconds_until_due()
                if wait_for is None or wait_for > 0:
                    self._cond.wait(timeout=wait_for)
                    continue
            try:
                self.run_pending()
            except Exception:
                logger.exception("Recompute pass failed; keeping the previous result")
                with self._cond:
                    if not self._stopped:
                        self._cond.wait(timeout=max(self.coalesce_seconds, 1.0))

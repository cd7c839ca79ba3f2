"""
Pending-verification poller.

The hosted backend confirms writes asynchronously by replacing the
``"pending"`` blockchain_tx_id sentinel with a transaction id, and offers no
push channel for it. A poller tracks the ids of entities still pending and
re-fetches them on a fixed interval until each one resolves.

Rules:
  1. Only entities whose verification is pending are tracked; unverified and
     verified entities never enter the pending set.
  2. One tick fetches every pending id concurrently, then applies all results
     at once under the lock: resolved ids leave the set, the cached list is
     patched by id, and ``on_resolved`` fires once per resolved entity.
  3. A failed or empty re-fetch leaves the id pending. There is no retry cap.
  4. The interval job is removed as soon as the set is empty and re-added
     when a new pending entity is tracked. ``max_instances=1`` keeps ticks
     from overlapping.
  5. After ``stop()`` the poller is closed: its job is gone and results of a
     tick still in flight are discarded.
"""

import concurrent.futures
import logging
import threading
import uuid
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger("medchain.poller")

DEFAULT_INTERVAL_SECONDS = 5.0


class PendingVerificationPoller:
    """Re-fetches pending entities until their verification resolves."""

    def __init__(
        self,
        fetch: Callable[[str], Optional[object]],
        interval: float = DEFAULT_INTERVAL_SECONDS,
        on_resolved: Optional[Callable[[object], None]] = None,
        scheduler=None,
        max_workers: int = 4,
        name: str = "verification",
    ):
        self._fetch = fetch
        self._interval = interval
        self._on_resolved = on_resolved
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._max_workers = max(1, max_workers)
        self._job_id = f"{name}-poll-{uuid.uuid4().hex[:8]}"

        self._lock = threading.Lock()
        self._entities: list = []
        self._pending: dict[str, None] = {}  # insertion-ordered set
        self._job = None
        self._closed = False

    # --- Read-only views ---

    @property
    def pending_ids(self) -> frozenset:
        with self._lock:
            return frozenset(self._pending)

    @property
    def entities(self) -> list:
        with self._lock:
            return list(self._entities)

    @property
    def running(self) -> bool:
        with self._lock:
            return self._job is not None

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Tracking ---

    def load(self, entities: list) -> None:
        """Replace the cached list and track every pending entity in it."""
        with self._lock:
            if self._closed:
                return
            self._entities = list(entities)
            self._pending = {e.entity_id: None for e in entities if e.verification.is_pending}
            if self._pending:
                self._start_timer_locked()
            else:
                self._cancel_timer_locked()

    def track(self, entity) -> None:
        """Add a newly inserted entity to the cached list, polling it if pending."""
        with self._lock:
            if self._closed:
                return
            if not self._replace_locked(entity):
                self._entities.insert(0, entity)
            if entity.verification.is_pending:
                self._pending[entity.entity_id] = None
                self._start_timer_locked()

    def rebind(self, fetch: Callable[[str], Optional[object]]) -> None:
        """Swap the re-fetch function; the next tick uses the new one."""
        with self._lock:
            self._fetch = fetch

    # --- Polling ---

    def tick(self) -> list:
        """Run one polling pass. Returns the entities resolved by this pass."""
        with self._lock:
            if self._closed:
                return []
            ids = list(self._pending)
            fetch = self._fetch
            if not ids:
                self._cancel_timer_locked()
                return []

        results = self._fetch_all(fetch, ids)

        resolved = []
        with self._lock:
            if self._closed:
                logger.debug("Discarding poll results for closed poller %s", self._job_id)
                return []
            for entity_id in ids:
                fresh = results.get(entity_id)
                if fresh is None or fresh.verification.is_pending:
                    continue
                self._pending.pop(entity_id, None)
                self._replace_locked(fresh)
                resolved.append(fresh)
            if not self._pending:
                self._cancel_timer_locked()

        for entity in resolved:
            logger.info("Verification resolved for %s", entity.entity_id)
            self._notify(entity)
        return resolved

    def _fetch_all(self, fetch, ids: list[str]) -> dict:
        results = {}
        workers = min(self._max_workers, len(ids))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(fetch, entity_id): entity_id for entity_id in ids}
            for future in concurrent.futures.as_completed(futures):
                entity_id = futures[future]
                try:
                    results[entity_id] = future.result()
                except Exception as exc:
                    logger.warning("Re-fetch of %s failed, keeping it pending: %s", entity_id, exc)
                    results[entity_id] = None
        return results

    def _notify(self, entity) -> None:
        if self._on_resolved is None:
            return
        try:
            self._on_resolved(entity)
        except Exception as exc:
            logger.error("Resolution callback failed for %s: %s", entity.entity_id, exc, exc_info=True)

    def _replace_locked(self, entity) -> bool:
        for index, existing in enumerate(self._entities):
            if existing.entity_id == entity.entity_id:
                self._entities[index] = entity
                return True
        return False

    # --- Timer ---

    def _start_timer_locked(self) -> None:
        if self._job is not None:
            return
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(daemon=True)
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()
        self._job = self._scheduler.add_job(
            func=self._run_tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=self._job_id,
            name="Re-fetch entities pending verification",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug("Polling started (%s, every %ss)", self._job_id, self._interval)

    def _cancel_timer_locked(self) -> None:
        if self._job is None:
            return
        job, self._job = self._job, None
        job.remove()
        logger.debug("Polling stopped (%s)", self._job_id)

    def _run_tick(self) -> None:
        """Scheduled job wrapper: a failing tick must not kill the job."""
        try:
            self.tick()
        except Exception as exc:
            logger.error("Verification poll tick failed: %s", exc, exc_info=True)

    def stop(self) -> None:
        """Cancel polling for good. Safe to call more than once."""
        with self._lock:
            self._closed = True
            self._cancel_timer_locked()
            self._pending.clear()
        if self._owns_scheduler and self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

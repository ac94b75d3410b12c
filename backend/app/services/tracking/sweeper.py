"""
Bulk status sweeper.

Periodically finds in-flight tasks inside the recency window and fans out
one one-shot poll per task. At most one sweep runs at a time: the sweep is
guarded by a lease lock and a skipped sweep is logged, never queued.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.locks import SWEEP_LAST_RUN_KEY, SWEEP_LOCK_KEY, LeaseLock
from app.core.logging import get_logger
from app.db.repositories.task import TaskRepository
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import TaskDispatcher

logger = get_logger(__name__)


class BulkSweeper:
    """Scan-and-dispatch cycle for in-flight tasks."""

    def __init__(
        self,
        db: Session,
        dispatcher: TaskDispatcher,
        lock_backend,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.lock_backend = lock_backend
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)

    def make_lock(self) -> LeaseLock:
        return LeaseLock(
            self.lock_backend,
            SWEEP_LOCK_KEY,
            ttl=self.settings.sweep_lock_ttl_minutes * 60,
        )

    def _ran_recently(self) -> bool:
        return self.lock_backend.get(SWEEP_LAST_RUN_KEY) is not None

    def _mark_run(self, now: datetime) -> None:
        interval = self.settings.sweep_min_interval_minutes * 60
        if interval > 0:
            self.lock_backend.set(SWEEP_LAST_RUN_KEY, now.isoformat(), ttl=interval)

    def run(self, now: Optional[datetime] = None, ignore_interval: bool = False) -> Dict[str, Any]:
        """
        Run one sweep.

        Args:
            now: Reference time for the recency window
            ignore_interval: Skip the minimum-interval guard (the lock still applies)

        Returns:
            Result dict with status "completed" or "skipped"
        """
        now = now or datetime.now()

        if not ignore_interval and self._ran_recently():
            logger.info("bulk_status_check_skipped", reason="min_interval")
            return {"status": "skipped", "reason": "min_interval", "dispatched": 0}

        lock = self.make_lock()
        if not lock.acquire():
            logger.info("bulk_status_check_skipped", reason="already_running", lock_key=lock.key)
            return {"status": "skipped", "reason": "already_running", "dispatched": 0}

        try:
            result = self._sweep(now)
            self._mark_run(now)
            return result
        finally:
            lock.release()

    def _sweep(self, now: datetime) -> Dict[str, Any]:
        window_start = now - timedelta(minutes=self.settings.sweep_max_age_minutes)
        stale_cutoff = now - timedelta(minutes=self.settings.stale_timeout_minutes)
        tasks = self.tasks.list_sweepable(window_start, stale_cutoff)

        batch_size = max(1, self.settings.sweep_batch_size)
        batch_delay = self.settings.sweep_batch_delay
        dispatched = 0
        batches = 0

        logger.info("bulk_status_check_started", found=len(tasks), batch_size=batch_size)

        for batch_index, start in enumerate(range(0, len(tasks), batch_size)):
            batch = tasks[start:start + batch_size]
            countdown = batch_index * batch_delay
            for task in batch:
                self.dispatcher.dispatch_poll(task.correlation_id, PollState.one_shot(), countdown=countdown)
                dispatched += 1
            batches += 1
            logger.debug(
                "bulk_status_check_batch_dispatched",
                batch=batch_index,
                size=len(batch),
                countdown=countdown,
            )

        logger.info("bulk_status_check_completed", found=len(tasks), dispatched=dispatched, batches=batches)
        return {
            "status": "completed",
            "found": len(tasks),
            "dispatched": dispatched,
            "batches": batches,
        }

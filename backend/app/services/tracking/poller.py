"""
Per-task status poller.

One call performs exactly one vendor status query. While the task is still
in flight the poller re-enqueues itself with the next delay from the backoff
table instead of holding a worker; the state needed for the next attempt is
carried in a PollState value.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import ErrorKind, VendorRejectedError, VendorTransientError
from app.core.locks import VENDOR_RATE_KEY, RateCounter
from app.core.logging import get_logger, log_error
from app.db.models.task import TaskORM
from app.db.repositories.task import TaskRepository
from app.services.tracking.backoff import PollState, delay_for_attempt, is_exhausted
from app.services.tracking.dispatch import TaskDispatcher
from app.services.tracking.transitions import apply_vendor_status, mark_failed, merge_meta

logger = get_logger(__name__)


class StatusPoller:
    """Polls the vendor for one task and decides whether to continue."""

    def __init__(
        self,
        db: Session,
        vendor,
        dispatcher: TaskDispatcher,
        lock_backend,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.vendor = vendor
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)
        self.rate_counter = RateCounter(
            lock_backend,
            VENDOR_RATE_KEY,
            limit=self.settings.vendor_calls_per_minute,
            window=60,
        )

    def poll(
        self,
        correlation_id: str,
        state: Optional[PollState] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Run one poll attempt.

        Returns:
            Result dict with an "outcome" of missing, already_terminal,
            completed, failed, timed_out, rescheduled or in_flight
        """
        state = state or PollState()
        now = now or datetime.now()
        log = logger.bind(correlation_id=correlation_id, attempt=state.attempt)

        task = self.tasks.get_by_correlation_id(correlation_id)
        if task is None:
            log.warning("task_poll_missing_task")
            return {"outcome": "missing", "correlation_id": correlation_id}

        # Cancelled by the stale-task failer or an operator
        if task.is_terminal:
            log.info("task_poll_skipped_terminal", status=task.status)
            return {"outcome": "already_terminal", "correlation_id": correlation_id, "status": task.status}

        merge_meta(task, poll_state=state.to_dict())

        if not self.rate_counter.hit():
            log.info("task_poll_rate_limited")
            return self._continue(task, state, now, reason="rate_limited")

        try:
            result = self.vendor.get_task_status(correlation_id)
        except VendorRejectedError as e:
            log_error(log, e)
            mark_failed(
                self.db,
                task,
                message=e.message,
                kind=e.kind,
                code=e.error_code,
                now=now,
            )
            return {"outcome": "failed", "correlation_id": correlation_id, "error_kind": e.kind.value}
        except VendorTransientError as e:
            log_error(log, e)
            return self._continue(task, state, now, reason="transient_error")

        if apply_vendor_status(self.db, task, result, now=now):
            log.info("task_poll_terminal", status=task.status)
            return {"outcome": task.status, "correlation_id": correlation_id}

        return self._continue(task, state, now, reason="in_flight")

    def _continue(
        self,
        task: TaskORM,
        state: PollState,
        now: datetime,
        reason: str,
    ) -> Dict[str, Any]:
        """Reschedule the next attempt, or give up once the budget is spent."""
        correlation_id = task.correlation_id

        if not state.follow_up:
            logger.debug("task_poll_one_shot_done", correlation_id=correlation_id, reason=reason)
            return {"outcome": "in_flight", "correlation_id": correlation_id, "reason": reason}

        if is_exhausted(state.attempt, self.settings.poll_max_attempts):
            total_seconds = self.settings.poll_initial_delay + state.elapsed_seconds
            minutes = max(1, round(total_seconds / 60))
            mark_failed(
                self.db,
                task,
                message=(
                    f"Status polling timed out after {state.attempt + 1} attempts "
                    f"({minutes} minutes)"
                ),
                kind=ErrorKind.TIMEOUT,
                code="poll_timeout",
                now=now,
            )
            logger.warning(
                "task_poll_exhausted",
                correlation_id=correlation_id,
                attempts=state.attempt + 1,
                elapsed_seconds=total_seconds,
            )
            return {"outcome": "timed_out", "correlation_id": correlation_id}

        delay = delay_for_attempt(state.attempt, self.settings.poll_backoff)
        next_state = state.advance(delay)
        self.dispatcher.dispatch_poll(correlation_id, next_state, countdown=delay)

        logger.info(
            "task_poll_rescheduled",
            correlation_id=correlation_id,
            next_attempt=next_state.attempt,
            countdown=delay,
            reason=reason,
        )
        return {
            "outcome": "rescheduled",
            "correlation_id": correlation_id,
            "next_attempt": next_state.attempt,
            "countdown": delay,
            "reason": reason,
        }

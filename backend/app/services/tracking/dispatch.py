"""Background job dispatch seam between tracking services and the queue."""
from typing import Any, Callable, List, Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.services.tracking.backoff import PollState

logger = get_logger(__name__)


class TaskDispatcher(Protocol):
    """Schedules poll and sweep jobs. The Celery implementation lives in the worker module."""

    def dispatch_poll(self, correlation_id: str, state: PollState, countdown: int = 0) -> None:
        ...

    def dispatch_sweep(self, countdown: int = 0) -> None:
        ...


class CommitBoundDispatcher:
    """
    Holds dispatches until the session commits.

    A worker reads the task in its own session, so a poll sent before the
    commit can observe the pre-transition row. Queued dispatches are sent
    from the session's after_commit event and dropped on rollback.
    """

    def __init__(self, db: Session, dispatcher: TaskDispatcher):
        self.db = db
        self.dispatcher = dispatcher
        self._pending: List[Callable[[], Any]] = []
        event.listen(db, "after_commit", self._send_pending)
        event.listen(db, "after_rollback", self._drop_pending)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch_poll(self, correlation_id: str, state: PollState, countdown: int = 0) -> None:
        self._pending.append(lambda: self.dispatcher.dispatch_poll(correlation_id, state, countdown=countdown))

    def dispatch_sweep(self, countdown: int = 0) -> None:
        self._pending.append(lambda: self.dispatcher.dispatch_sweep(countdown=countdown))

    def _send_pending(self, session: Session) -> None:
        pending, self._pending = self._pending, []
        for send in pending:
            send()

    def _drop_pending(self, session: Session) -> None:
        if self._pending:
            logger.info("dispatches_dropped_on_rollback", count=len(self._pending))
        self._pending = []

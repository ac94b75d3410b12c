"""Operator-triggered status checks."""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import GenerationNotFoundError, InvalidTaskStateError, TaskNotFoundError
from app.core.locks import SWEEP_LOCK_KEY, LeaseLock
from app.core.logging import get_logger
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import TaskDispatcher

logger = get_logger(__name__)


class StatusCheckService:
    """Dispatches one-shot polls and controls the sweep on demand."""

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
        self.generations = GenerationRepository(db)

    def check_task(self, correlation_id: str, force: bool = False) -> List[str]:
        task = self.tasks.get_by_correlation_id(correlation_id)
        if task is None:
            raise TaskNotFoundError(correlation_id)
        if task.is_terminal and not force:
            raise InvalidTaskStateError(correlation_id, task.status, "check status")

        self.dispatcher.dispatch_poll(correlation_id, PollState.one_shot(), countdown=0)
        logger.info("manual_status_check_dispatched", correlation_id=correlation_id, status=task.status)
        return [correlation_id]

    def check_generation(self, generation_id: str, force: bool = False) -> List[str]:
        generation = self.generations.get_by_generation_id(generation_id)
        if generation is None:
            raise GenerationNotFoundError(generation_id)

        dispatched = []
        for task in self.tasks.list_by_generation(generation.id):
            if not task.correlation_id or (task.is_terminal and not force):
                continue
            self.dispatcher.dispatch_poll(task.correlation_id, PollState.one_shot(), countdown=0)
            dispatched.append(task.correlation_id)

        logger.info("manual_generation_check_dispatched", generation_id=generation_id, dispatched=len(dispatched))
        return dispatched

    def check_pending(self, hours: int = 6, limit: int = 100, now: Optional[datetime] = None) -> List[str]:
        """One-shot polls for every in-flight task created in the last `hours`."""
        now = now or datetime.now()
        tasks = self.tasks.list_in_flight_since(now - timedelta(hours=hours), limit=limit)

        batch_size = max(1, self.settings.sweep_batch_size)
        dispatched = []
        for index, task in enumerate(tasks):
            countdown = (index // batch_size) * self.settings.sweep_batch_delay
            self.dispatcher.dispatch_poll(task.correlation_id, PollState.one_shot(), countdown=countdown)
            dispatched.append(task.correlation_id)

        logger.info("manual_pending_check_dispatched", hours=hours, dispatched=len(dispatched))
        return dispatched

    def start_sweep(self) -> None:
        self.dispatcher.dispatch_sweep(countdown=0)
        logger.info("manual_sweep_dispatched")

    def stop_sweep(self) -> bool:
        """Force-release the sweep lock."""
        lock = LeaseLock(self.lock_backend, SWEEP_LOCK_KEY, ttl=self.settings.sweep_lock_ttl_minutes * 60)
        return lock.force_release()

    def sweep_status(self) -> Dict[str, object]:
        return {
            "running": self.lock_backend.get(SWEEP_LOCK_KEY) is not None,
            "ttl": self.lock_backend.ttl(SWEEP_LOCK_KEY),
        }

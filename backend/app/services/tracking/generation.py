"""Generation submission and read views."""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import (
    ErrorKind,
    GenerationNotFoundError,
    VendorRejectedError,
    VendorTransientError,
)
from app.core.logging import get_logger, log_error
from app.db.models.generation import GenerationORM
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.models.generation import GenerationRead, StatusChange
from app.models.task import TaskRead
from app.services.tracking.aggregation import recompute_generation, summarize
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import TaskDispatcher
from app.services.tracking.transitions import mark_failed

logger = get_logger(__name__)

DEFAULT_TASK_COUNT = 2


def new_generation_id() -> str:
    """Opaque external id, gen_ followed by 12 hex chars."""
    return f"gen_{uuid4().hex[:12]}"


class GenerationService:
    """Creates generations and their tasks, and builds read views."""

    def __init__(
        self,
        db: Session,
        vendor=None,
        dispatcher: Optional[TaskDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.vendor = vendor
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.generations = GenerationRepository(db)
        self.tasks = TaskRepository(db)

    def create_generation(
        self,
        device_id: Optional[str],
        mode: str,
        request_data: Dict[str, Any],
        task_count: int = DEFAULT_TASK_COUNT,
        now: Optional[datetime] = None,
    ) -> GenerationORM:
        """
        Create a generation with `task_count` pending tasks and submit it.

        Correlation ids returned by the vendor are assigned in order and one
        poll chain is scheduled per task. If submission fails every task is
        failed with the classified error.
        """
        if self.vendor is None or self.dispatcher is None:
            raise ValueError("create_generation needs a vendor client and a dispatcher")

        now = now or datetime.now()

        generation = self.generations.create(
            generation_id=new_generation_id(),
            device_id=device_id,
            mode=mode,
            request_data=request_data,
            task_count=task_count,
            created_at=now,
            updated_at=now,
        )
        tasks = [
            self.tasks.create(
                generation_id=generation.id,
                title=request_data.get("title"),
                prompt=request_data.get("prompt"),
                content_type=mode or "music",
                created_at=now,
                updated_at=now,
            )
            for _ in range(task_count)
        ]

        log = logger.bind(generation_id=generation.generation_id, device_id=device_id)
        log.info("generation_created", task_count=task_count, mode=mode)

        try:
            correlation_ids = self.vendor.submit_generation(request_data)
        except (VendorRejectedError, VendorTransientError) as e:
            log_error(log, e)
            kind = e.kind if isinstance(e, VendorRejectedError) else ErrorKind.SUBMISSION
            for task in tasks:
                mark_failed(
                    self.db,
                    task,
                    message=f"Submission failed: {e.message}",
                    kind=kind,
                    code=getattr(e, "error_code", None) or "submission_failed",
                    now=now,
                    trigger="submission",
                )
            return generation

        for task, correlation_id in zip(tasks, correlation_ids):
            task.correlation_id = correlation_id
        self.db.flush()

        if len(correlation_ids) < len(tasks):
            log.warning("generation_missing_task_ids", expected=len(tasks), received=len(correlation_ids))
            for task in tasks[len(correlation_ids):]:
                mark_failed(
                    self.db,
                    task,
                    message="Submission failed: vendor returned fewer task ids than requested",
                    kind=ErrorKind.SUBMISSION,
                    code="missing_task_id",
                    now=now,
                    trigger="submission",
                )

        for task in tasks:
            if task.correlation_id:
                self.dispatcher.dispatch_poll(
                    task.correlation_id,
                    PollState(),
                    countdown=self.settings.poll_initial_delay,
                )

        recompute_generation(self.db, generation.id, trigger="submission", now=now)
        log.info("generation_submitted", task_ids=correlation_ids[: len(tasks)])
        return generation

    def get_view(self, generation_id: str) -> GenerationRead:
        """Read view of a generation, its tasks and status history."""
        generation = self.generations.get_by_generation_id(generation_id)
        if generation is None:
            raise GenerationNotFoundError(generation_id)

        tasks = self.tasks.list_by_generation(generation.id)
        history = (generation.meta or {}).get("status_changes") or []

        return GenerationRead(
            generation_id=generation.generation_id,
            device_id=generation.device_id,
            mode=generation.mode,
            status=generation.status,
            task_count=generation.task_count,
            created_at=generation.created_at,
            completed_at=generation.completed_at,
            status_changes=[StatusChange(**entry) for entry in history],
            summary=summarize(task.status for task in tasks),
            tasks=[TaskRead.model_validate(task) for task in tasks],
        )

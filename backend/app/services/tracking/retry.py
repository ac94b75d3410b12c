"""
Operator retry of failed tasks.

A task is retryable when forced, or when its error kind is retryable and its
retry count is under the cap. Retrying forces the task back to pending and
restarts its poll chain from attempt 0.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import (
    NON_RETRYABLE_KINDS,
    GenerationNotFoundError,
    InvalidTaskStateError,
    TaskNotFoundError,
    TaskNotRetryableError,
)
from app.core.logging import get_logger
from app.db.models.task import TaskORM
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.models.task import TaskStatus
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import TaskDispatcher
from app.services.tracking.transitions import reset_for_retry, task_error_kind

logger = get_logger(__name__)


def retry_block_reason(task: TaskORM, force: bool = False, max_retries: int = 3) -> Optional[str]:
    """
    Why a task may not be retried, or None if it may.

    The force flag bypasses both the error-kind and the retry-count checks.
    """
    if force:
        return None
    kind = task_error_kind(task)
    if kind in NON_RETRYABLE_KINDS:
        return f"non-retryable error ({kind.value})"
    if (task.retry_count or 0) >= max_retries:
        return f"retry limit reached ({task.retry_count}/{max_retries})"
    return None


def is_retryable(task: TaskORM, force: bool = False, max_retries: int = 3) -> bool:
    return retry_block_reason(task, force=force, max_retries=max_retries) is None


@dataclass
class RetryReport:
    """Outcome of one retry command."""

    dry_run: bool = False
    retried: List[str] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.retried) + len(self.skipped)


class RetryService:
    """Selects and retries failed tasks."""

    def __init__(
        self,
        db: Session,
        dispatcher: TaskDispatcher,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)
        self.generations = GenerationRepository(db)

    def retry_task(
        self,
        correlation_id: str,
        force: bool = False,
        dry_run: bool = False,
        retried_by: str = "operator",
        now: Optional[datetime] = None,
    ) -> RetryReport:
        """
        Retry one task by correlation id.

        Raises:
            TaskNotFoundError: No such task
            InvalidTaskStateError: Task is not failed and force is off
            TaskNotRetryableError: Error kind or retry count blocks the retry
        """
        task = self.tasks.get_by_correlation_id(correlation_id)
        if task is None:
            raise TaskNotFoundError(correlation_id)

        if task.status != TaskStatus.FAILED.value and not force:
            raise InvalidTaskStateError(correlation_id, task.status, "retry")

        reason = retry_block_reason(task, force=force, max_retries=self.settings.retry_max_count)
        if reason is not None:
            raise TaskNotRetryableError(correlation_id, reason)

        report = RetryReport(dry_run=dry_run)
        if not dry_run:
            self._retry(task, retried_by=retried_by, reason="manual_retry_task", now=now)
        report.retried.append(correlation_id)
        return report

    def retry_generation(
        self,
        generation_id: str,
        force: bool = False,
        dry_run: bool = False,
        retried_by: str = "operator",
        now: Optional[datetime] = None,
    ) -> RetryReport:
        """Retry every failed task of one generation."""
        generation = self.generations.get_by_generation_id(generation_id)
        if generation is None:
            raise GenerationNotFoundError(generation_id)

        candidates = self.tasks.list_failed(generation_id=generation.id)
        return self._retry_many(
            candidates,
            force=force,
            dry_run=dry_run,
            retried_by=retried_by,
            reason="manual_retry_generation",
            now=now,
        )

    def retry_failed(
        self,
        age_hours: int = 24,
        limit: int = 50,
        force: bool = False,
        dry_run: bool = False,
        retried_by: str = "operator",
        now: Optional[datetime] = None,
    ) -> RetryReport:
        """Retry failed tasks that failed within the last `age_hours`."""
        now = now or datetime.now()
        candidates = self.tasks.list_failed(failed_after=now - timedelta(hours=age_hours), limit=limit)
        return self._retry_many(
            candidates,
            force=force,
            dry_run=dry_run,
            retried_by=retried_by,
            reason="manual_retry_batch",
            now=now,
        )

    def failed_candidates(self, age_hours: int = 24, limit: int = 50, now: Optional[datetime] = None) -> List[TaskORM]:
        now = now or datetime.now()
        return self.tasks.list_failed(failed_after=now - timedelta(hours=age_hours), limit=limit)

    def failure_analysis(self, age_hours: int = 24, now: Optional[datetime] = None) -> Dict[str, int]:
        """Failed task counts grouped by error kind, most common first."""
        now = now or datetime.now()
        failed = self.tasks.list_failed(failed_after=now - timedelta(hours=age_hours))
        counts = Counter(task_error_kind(task).value for task in failed)
        return dict(counts.most_common())

    def _retry_many(
        self,
        candidates: Iterable[TaskORM],
        force: bool,
        dry_run: bool,
        retried_by: str,
        reason: str,
        now: Optional[datetime],
    ) -> RetryReport:
        report = RetryReport(dry_run=dry_run)
        for task in candidates:
            label = task.correlation_id or f"#{task.id}"
            if not task.correlation_id:
                report.skipped.append({"correlation_id": label, "reason": "no correlation id"})
                continue

            block = retry_block_reason(task, force=force, max_retries=self.settings.retry_max_count)
            if block is not None:
                report.skipped.append({"correlation_id": label, "reason": block})
                continue

            if not dry_run:
                self._retry(task, retried_by=retried_by, reason=reason, now=now)
            report.retried.append(label)

        logger.info(
            "retry_batch_processed",
            retried=len(report.retried),
            skipped=len(report.skipped),
            dry_run=dry_run,
            force=force,
        )
        return report

    def _retry(self, task: TaskORM, retried_by: str, reason: str, now: Optional[datetime]) -> None:
        reset_for_retry(self.db, task, retried_by=retried_by, reason=reason, now=now)
        self.dispatcher.dispatch_poll(task.correlation_id, PollState(), countdown=0)

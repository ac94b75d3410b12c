"""
Task repository.

Synchronous data access for generated_content rows. Shared by Celery
workers, the operator CLI and the HTTP API.
"""
from sqlalchemy.orm import Session
from sqlalchemy import select, func, or_
from typing import Optional, List, Dict
from datetime import datetime

from app.db.models.task import TaskORM
from app.models.task import IN_FLIGHT_STATUSES, TaskStatus


class TaskRepository:
    """Repository for Task database operations."""

    def __init__(self, db: Session) -> None:
        """Initialize repository with database session."""
        self._db = db

    def get_by_id(self, task_id: int) -> Optional[TaskORM]:
        """Get task by primary key."""
        return self._db.get(TaskORM, task_id)

    def get_by_correlation_id(self, correlation_id: str) -> Optional[TaskORM]:
        """Get task by vendor correlation id."""
        result = self._db.execute(
            select(TaskORM).where(TaskORM.correlation_id == correlation_id)
        )
        return result.scalar_one_or_none()

    def create(self, **fields) -> TaskORM:
        """Create new task."""
        fields.setdefault("status", TaskStatus.PENDING.value)
        fields.setdefault("meta", {})
        task = TaskORM(**fields)
        self._db.add(task)
        self._db.flush()
        return task

    def list_by_generation(self, generation_id: int) -> List[TaskORM]:
        """List tasks of one generation in creation order."""
        result = self._db.execute(
            select(TaskORM)
            .where(TaskORM.generation_id == generation_id)
            .order_by(TaskORM.id)
        )
        return list(result.scalars().all())

    def statuses_for_generation(self, generation_id: int) -> List[str]:
        """Current status of every child task of a generation."""
        result = self._db.execute(
            select(TaskORM.status).where(TaskORM.generation_id == generation_id)
        )
        return list(result.scalars().all())

    def list_sweepable(
        self, window_start: datetime, stale_cutoff: datetime
    ) -> List[TaskORM]:
        """
        In-flight tasks with a correlation id, created inside the recency
        window and not yet old enough for the stale-task failer.

        Tasks without a correlation id cannot be polled and are skipped.
        """
        result = self._db.execute(
            select(TaskORM)
            .where(
                TaskORM.status.in_(IN_FLIGHT_STATUSES),
                TaskORM.correlation_id.is_not(None),
                TaskORM.correlation_id != "",
                TaskORM.created_at >= window_start,
                TaskORM.created_at > stale_cutoff,
            )
            .order_by(TaskORM.created_at)
        )
        return list(result.scalars().all())

    def list_stale(self, created_before: datetime) -> List[TaskORM]:
        """
        In-flight tasks created before the cutoff.

        An operator retry stamps last_accessed_at, which restarts the clock.
        """
        result = self._db.execute(
            select(TaskORM)
            .where(
                TaskORM.status.in_(IN_FLIGHT_STATUSES),
                TaskORM.created_at < created_before,
                or_(
                    TaskORM.last_accessed_at.is_(None),
                    TaskORM.last_accessed_at < created_before,
                ),
            )
            .order_by(TaskORM.created_at)
        )
        return list(result.scalars().all())

    def list_in_flight_since(self, created_after: datetime, limit: int = 100) -> List[TaskORM]:
        """In-flight tasks with a correlation id created after the cutoff."""
        result = self._db.execute(
            select(TaskORM)
            .where(
                TaskORM.status.in_(IN_FLIGHT_STATUSES),
                TaskORM.correlation_id.is_not(None),
                TaskORM.created_at >= created_after,
            )
            .order_by(TaskORM.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    def list_failed(
        self,
        failed_after: Optional[datetime] = None,
        generation_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[TaskORM]:
        """Failed tasks, newest first, optionally filtered."""
        stmt = select(TaskORM).where(TaskORM.status == TaskStatus.FAILED.value)
        if failed_after is not None:
            stmt = stmt.where(TaskORM.completed_at >= failed_after)
        if generation_id is not None:
            stmt = stmt.where(TaskORM.generation_id == generation_id)
        stmt = stmt.order_by(TaskORM.completed_at.desc(), TaskORM.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._db.execute(stmt).scalars().all())

    def count_by_status(self) -> Dict[str, int]:
        """Task counts grouped by status."""
        result = self._db.execute(
            select(TaskORM.status, func.count(TaskORM.id)).group_by(TaskORM.status)
        )
        counts = {status.value: 0 for status in TaskStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    def count_updated_since(self, since: datetime, status: Optional[str] = None) -> int:
        """Count tasks updated after the cutoff, optionally by status."""
        stmt = select(func.count(TaskORM.id)).where(TaskORM.updated_at >= since)
        if status is not None:
            stmt = stmt.where(TaskORM.status == status)
        return self._db.execute(stmt).scalar_one()

    def list_archivable_content(
        self, completed_before: datetime, accessed_before: datetime
    ) -> List[TaskORM]:
        """Completed tasks past retention that have not been accessed recently."""
        result = self._db.execute(
            select(TaskORM).where(
                TaskORM.status == TaskStatus.COMPLETED.value,
                TaskORM.completed_at.is_not(None),
                TaskORM.completed_at < completed_before,
                or_(
                    TaskORM.last_accessed_at.is_(None),
                    TaskORM.last_accessed_at < accessed_before,
                ),
            )
        )
        return [task for task in result.scalars().all() if not (task.meta or {}).get("archived_at")]

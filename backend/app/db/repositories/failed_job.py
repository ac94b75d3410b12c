"""Failed job repository."""
from sqlalchemy.orm import Session
from sqlalchemy import select, func, delete
from typing import Any, Optional, List, Dict
from datetime import datetime

from app.db.models.failed_job import FailedJobORM


class FailedJobRepository:
    """Repository for FailedJob database operations."""

    def __init__(self, db: Session) -> None:
        """Initialize repository with database session."""
        self._db = db

    def create(
        self,
        job_name: str,
        error: str,
        payload: Optional[Dict[str, Any]] = None,
        failed_at: Optional[datetime] = None,
    ) -> FailedJobORM:
        """Record one failed job run."""
        job = FailedJobORM(
            job_name=job_name,
            payload=payload or {},
            error=error,
            failed_at=failed_at or datetime.now(),
        )
        self._db.add(job)
        self._db.flush()
        return job

    def count(self) -> int:
        """Count all failed job records."""
        return self._db.execute(select(func.count(FailedJobORM.id))).scalar_one()

    def count_older_than(self, cutoff: datetime) -> int:
        """Count records that failed before the cutoff."""
        return self._db.execute(
            select(func.count(FailedJobORM.id)).where(FailedJobORM.failed_at < cutoff)
        ).scalar_one()

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete records that failed before the cutoff."""
        result = self._db.execute(delete(FailedJobORM).where(FailedJobORM.failed_at < cutoff))
        return result.rowcount or 0

    def list_recent(self, limit: int = 20) -> List[FailedJobORM]:
        """Most recent failures first."""
        result = self._db.execute(
            select(FailedJobORM).order_by(FailedJobORM.failed_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

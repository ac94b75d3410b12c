"""Retention cleanup: failed-job purge and archival of aged rows."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.locks import clear_tracking_keys
from app.core.logging import get_logger
from app.db.repositories.failed_job import FailedJobRepository
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.services.tracking.transitions import merge_meta

logger = get_logger(__name__)


@dataclass
class CleanupReport:
    """Counts of rows affected (or that would be, on a dry run)."""

    dry_run: bool = False
    failed_jobs_deleted: int = 0
    content_archived: int = 0
    generations_archived: int = 0
    cache_keys_cleared: int = 0


class CleanupService:
    """
    Deletes old failed-job records and archives aged content and generations.

    Tasks and generations are never deleted; archival sets
    metadata.archived_at.
    """

    def __init__(self, db: Session, lock_backend=None, settings: Optional[Settings] = None):
        self.db = db
        self.lock_backend = lock_backend
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)
        self.generations = GenerationRepository(db)
        self.failed_jobs = FailedJobRepository(db)

    def run(
        self,
        failed_jobs_days: Optional[int] = None,
        content_days: Optional[int] = None,
        generation_days: Optional[int] = None,
        include_cache: bool = False,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> CleanupReport:
        now = now or datetime.now()
        report = CleanupReport(dry_run=dry_run)

        report.failed_jobs_deleted = self.purge_failed_jobs(
            failed_jobs_days if failed_jobs_days is not None else self.settings.cleanup_failed_jobs_days,
            dry_run=dry_run,
            now=now,
        )
        report.content_archived = self.archive_content(
            content_days if content_days is not None else self.settings.cleanup_completed_content_days,
            dry_run=dry_run,
            now=now,
        )
        report.generations_archived = self.archive_generations(
            generation_days if generation_days is not None else self.settings.cleanup_generations_days,
            dry_run=dry_run,
            now=now,
        )
        if include_cache and not dry_run and self.lock_backend is not None:
            report.cache_keys_cleared = clear_tracking_keys(self.lock_backend)

        logger.info(
            "cleanup_completed",
            dry_run=dry_run,
            failed_jobs_deleted=report.failed_jobs_deleted,
            content_archived=report.content_archived,
            generations_archived=report.generations_archived,
            cache_keys_cleared=report.cache_keys_cleared,
        )
        return report

    def purge_failed_jobs(self, days: int, dry_run: bool = False, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.now()) - timedelta(days=days)
        if dry_run:
            return self.failed_jobs.count_older_than(cutoff)
        return self.failed_jobs.delete_older_than(cutoff)

    def archive_content(self, days: int, dry_run: bool = False, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        candidates = self.tasks.list_archivable_content(
            completed_before=now - timedelta(days=days),
            accessed_before=now - timedelta(days=self.settings.cleanup_content_idle_days),
        )
        if not dry_run:
            for task in candidates:
                merge_meta(task, archived_at=now.isoformat())
            self.db.flush()
        return len(candidates)

    def archive_generations(self, days: int, dry_run: bool = False, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        candidates = self.generations.list_archivable(created_before=now - timedelta(days=days))
        if not dry_run:
            for generation in candidates:
                meta = dict(generation.meta or {})
                meta["archived_at"] = now.isoformat()
                generation.meta = meta
            self.db.flush()
        return len(candidates)

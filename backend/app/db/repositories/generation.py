"""Generation repository."""
from sqlalchemy.orm import Session
from sqlalchemy import select, func, exists
from typing import Optional, List, Dict
from datetime import datetime

from app.db.models.generation import GenerationORM
from app.db.models.task import TaskORM
from app.models.generation import GenerationStatus
from app.models.task import IN_FLIGHT_STATUSES


class GenerationRepository:
    """Repository for Generation database operations."""

    def __init__(self, db: Session) -> None:
        """Initialize repository with database session."""
        self._db = db

    def get_by_id(self, generation_pk: int) -> Optional[GenerationORM]:
        """Get generation by primary key."""
        return self._db.get(GenerationORM, generation_pk)

    def get_by_generation_id(self, generation_id: str) -> Optional[GenerationORM]:
        """Get generation by its external id."""
        result = self._db.execute(
            select(GenerationORM).where(GenerationORM.generation_id == generation_id)
        )
        return result.scalar_one_or_none()

    def create(self, **fields) -> GenerationORM:
        """Create new generation."""
        fields.setdefault("status", GenerationStatus.PROCESSING.value)
        fields.setdefault("meta", {})
        fields.setdefault("request_data", {})
        generation = GenerationORM(**fields)
        self._db.add(generation)
        self._db.flush()
        return generation

    def count_by_status(self) -> Dict[str, int]:
        """Generation counts grouped by status."""
        result = self._db.execute(
            select(GenerationORM.status, func.count(GenerationORM.id)).group_by(
                GenerationORM.status
            )
        )
        counts = {status.value: 0 for status in GenerationStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    def list_archivable(self, created_before: datetime) -> List[GenerationORM]:
        """
        Terminal generations older than the cutoff with no in-flight child.
        """
        in_flight_child = exists().where(
            TaskORM.generation_id == GenerationORM.id,
            TaskORM.status.in_(IN_FLIGHT_STATUSES),
        )
        result = self._db.execute(
            select(GenerationORM).where(
                GenerationORM.created_at < created_before,
                GenerationORM.status.in_(
                    (
                        GenerationStatus.COMPLETED.value,
                        GenerationStatus.FAILED.value,
                        GenerationStatus.MIXED.value,
                    )
                ),
                ~in_flight_child,
            )
        )
        return [
            generation
            for generation in result.scalars().all()
            if not (generation.meta or {}).get("archived_at")
        ]

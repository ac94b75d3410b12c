"""
Generation status aggregation.

A generation's status is a pure function of the multiset of its child task
statuses. The checks form a priority order: in-flight children win, then
unanimity, then majority, and a tie reports mixed.
"""
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models.generation import GenerationORM
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.models.generation import GenerationStatus, GenerationSummary
from app.models.task import TaskStatus

logger = get_logger(__name__)

HISTORY_LIMIT = 10
DEFAULT_TRIGGER = "auto_update"


def aggregate_status(statuses: Iterable[str]) -> GenerationStatus:
    """Derive the generation status from child task statuses."""
    counts = Counter(str(getattr(status, "value", status)) for status in statuses)

    if not counts:
        return GenerationStatus.PROCESSING

    if counts[TaskStatus.PENDING.value] or counts[TaskStatus.PROCESSING.value]:
        return GenerationStatus.PROCESSING

    completed = counts[TaskStatus.COMPLETED.value]
    failed = counts[TaskStatus.FAILED.value]
    total = sum(counts.values())

    if completed == total:
        return GenerationStatus.COMPLETED
    if failed == total:
        return GenerationStatus.FAILED

    if completed and failed:
        if completed > failed:
            return GenerationStatus.COMPLETED
        return GenerationStatus.MIXED

    # Unknown child states
    return GenerationStatus.PROCESSING


def status_change_reason(statuses: Iterable[str]) -> str:
    """Human-readable reason for a status transition."""
    counts = Counter(str(getattr(status, "value", status)) for status in statuses)
    completed = counts[TaskStatus.COMPLETED.value]
    failed = counts[TaskStatus.FAILED.value]
    in_flight = counts[TaskStatus.PENDING.value] + counts[TaskStatus.PROCESSING.value]

    if completed and not failed and not in_flight:
        return f"All {completed} tasks completed successfully"
    if failed and not completed and not in_flight:
        return f"All {failed} tasks failed"
    if in_flight:
        return f"{in_flight} tasks still processing"
    if completed and failed:
        return f"{completed} completed, {failed} failed"
    return "Status updated based on task changes"


def summarize(statuses: Iterable[str]) -> GenerationSummary:
    """Counts and completion percentage for a set of child statuses."""
    counts = Counter(str(getattr(status, "value", status)) for status in statuses)
    total = sum(counts.values())
    completed = counts[TaskStatus.COMPLETED.value]
    return GenerationSummary(
        total=total,
        completed=completed,
        failed=counts[TaskStatus.FAILED.value],
        processing=counts[TaskStatus.PENDING.value] + counts[TaskStatus.PROCESSING.value],
        progress=int(completed / total * 100) if total else 0,
    )


def append_status_change(
    history: Optional[List[Dict[str, Any]]],
    entry: Dict[str, Any],
    limit: int = HISTORY_LIMIT,
) -> List[Dict[str, Any]]:
    """Return a new history with the entry appended, keeping the last `limit` entries."""
    updated = list(history or [])
    updated.append(entry)
    return updated[-limit:]


def apply_status(
    generation: GenerationORM,
    statuses: List[str],
    trigger: str = DEFAULT_TRIGGER,
    now: Optional[datetime] = None,
) -> bool:
    """
    Recompute and store the status of a generation from its child statuses.

    Returns:
        True if the stored status changed
    """
    now = now or datetime.now()
    old_status = generation.status
    new_status = aggregate_status(statuses).value

    if old_status == new_status:
        return False

    meta = dict(generation.meta or {})
    meta["status_changes"] = append_status_change(
        meta.get("status_changes"),
        {
            "status": new_status,
            "reason": status_change_reason(statuses),
            "timestamp": now.isoformat(),
            "trigger": trigger,
        },
    )

    generation.status = new_status
    generation.meta = meta
    generation.updated_at = now

    if new_status == GenerationStatus.COMPLETED.value and generation.completed_at is None:
        generation.completed_at = now

    summary = summarize(statuses)
    logger.info(
        "generation_status_updated",
        generation_id=generation.generation_id,
        old_status=old_status,
        new_status=new_status,
        task_count=summary.total,
        completed_tasks=summary.completed,
        failed_tasks=summary.failed,
        processing_tasks=summary.processing,
        trigger=trigger,
    )
    return True


def recompute_generation(
    db: Session,
    generation_pk: Optional[int],
    trigger: str = DEFAULT_TRIGGER,
    now: Optional[datetime] = None,
) -> Optional[GenerationORM]:
    """
    Reload the current child statuses and recompute the owning generation.

    Safe to call concurrently from sibling tasks: the result depends only on
    the child rows visible at recompute time.
    """
    if generation_pk is None:
        return None

    generation = GenerationRepository(db).get_by_id(generation_pk)
    if generation is None:
        logger.warning("generation_not_found_for_recompute", generation_pk=generation_pk)
        return None

    db.flush()
    statuses = TaskRepository(db).statuses_for_generation(generation_pk)
    apply_status(generation, statuses, trigger=trigger, now=now)
    db.flush()
    return generation

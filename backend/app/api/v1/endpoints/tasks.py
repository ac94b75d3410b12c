"""Task status endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_request_id, get_db
from app.core.api import ApiResponse
from app.core.errors import TaskNotFoundError
from app.core.logging import get_logger
from app.db.repositories.task import TaskRepository
from app.models.task import TaskRead, TaskStatus

logger = get_logger(__name__)
router = APIRouter()


@router.get("/{correlation_id}", response_model=ApiResponse[TaskRead])
def get_task(
    correlation_id: str,
    db: Session = Depends(get_db),
    request_id: str = Depends(get_current_request_id),
):
    """Single task by vendor correlation id."""
    task = TaskRepository(db).get_by_correlation_id(correlation_id)
    if task is None:
        raise TaskNotFoundError(correlation_id)

    # Reads of finished content keep it out of idle-content archival
    if task.status == TaskStatus.COMPLETED.value:
        task.last_accessed_at = datetime.now()

    return ApiResponse.success_response(data=TaskRead.model_validate(task), request_id=request_id)

"""Monitoring endpoint."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_request_id, get_db, get_locks
from app.core.api import ApiResponse
from app.models.monitor import MonitorSnapshot
from app.services.tracking.monitor import MonitorService

router = APIRouter()


@router.get("", response_model=ApiResponse[MonitorSnapshot])
def get_monitor_snapshot(
    db: Session = Depends(get_db),
    lock_backend=Depends(get_locks),
    request_id: str = Depends(get_current_request_id),
):
    """Queue depths, status counts and health."""
    snapshot = MonitorService(db, lock_backend).snapshot()
    return ApiResponse.success_response(data=snapshot, request_id=request_id)

"""Generation submission and status endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_request_id, get_db, get_dispatcher, get_vendor
from app.core.api import ApiResponse
from app.core.logging import get_logger
from app.models.generation import GenerationCreate, GenerationRead
from app.services.tracking.generation import GenerationService

logger = get_logger(__name__)
router = APIRouter()


@router.post("", response_model=ApiResponse[GenerationRead], status_code=status.HTTP_201_CREATED)
def create_generation(
    request: GenerationCreate,
    db: Session = Depends(get_db),
    vendor=Depends(get_vendor),
    dispatcher=Depends(get_dispatcher),
    request_id: str = Depends(get_current_request_id),
):
    """
    Create a generation, submit it to the vendor and schedule its polls.

    A submission failure is not an HTTP error: the generation is returned
    with its tasks failed and the classified error on each task.
    """
    service = GenerationService(db, vendor=vendor, dispatcher=dispatcher)
    generation = service.create_generation(
        device_id=request.device_id,
        mode=request.mode,
        request_data=request.request_data,
        task_count=request.task_count,
    )
    view = service.get_view(generation.generation_id)
    return ApiResponse.success_response(data=view, request_id=request_id)


@router.get("/{generation_id}", response_model=ApiResponse[GenerationRead])
def get_generation(
    generation_id: str,
    db: Session = Depends(get_db),
    request_id: str = Depends(get_current_request_id),
):
    """
    Generation with its tasks, per-status summary and status history.

    GenerationNotFoundError is turned into a 404 by the app exception handler.
    """
    view = GenerationService(db).get_view(generation_id)
    return ApiResponse.success_response(data=view, request_id=request_id)

"""API dependencies."""
from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.locks import get_lock_backend
from app.core.middleware import get_request_id
from app.db.session import get_db as get_db_session
from app.services.tracking.dispatch import CommitBoundDispatcher
from app.services.vendor.client import get_vendor_client


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    yield from get_db_session()


def get_locks():
    """Shared lock backend."""
    return get_lock_backend()


def get_vendor():
    """Process-wide vendor client."""
    return get_vendor_client()


def get_dispatcher(db: Session = Depends(get_db)):
    """
    Celery dispatcher bound to the request session.

    Polls are sent only after get_db commits the request transaction.
    """
    from app.services.worker import CeleryDispatcher

    return CommitBoundDispatcher(db, CeleryDispatcher())


def get_current_request_id(request: Request) -> str:
    """
    현재 요청의 Request ID를 가져옵니다.

    Args:
        request: FastAPI 요청 객체
    """
    return get_request_id(request)

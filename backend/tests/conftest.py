"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.db.models  # noqa: F401
from app.core.config import Settings
from app.core.errors import VendorTransientError
from app.core.locks import InMemoryLockBackend
from app.db.models.generation import GenerationORM
from app.db.models.task import TaskORM
from app.db.session import Base
from app.models.task import TaskStatus, VendorTaskStatus
from app.services.tracking.aggregation import recompute_generation
from app.services.tracking.backoff import PollState

# 테스트 기준 시각 (naive local time, 애플리케이션과 동일)
NOW = datetime(2026, 3, 2, 12, 0, 0)


# =============================================================================
# Database Fixtures
# =============================================================================
@pytest.fixture(scope="function")
def engine():
    """
    테스트용 인메모리 SQLite 엔진.

    StaticPool로 모든 세션이 하나의 연결을 공유합니다.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """CLI/워커 테스트에서 SessionLocal 대신 주입할 세션 팩토리."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    테스트용 DB 세션.

    각 테스트 함수마다 독립된 인메모리 DB를 사용합니다.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Settings / Coordination Fixtures
# =============================================================================
@pytest.fixture
def settings() -> Settings:
    """최소 실행 간격 가드를 끈 테스트 설정."""
    return Settings(
        database_url="sqlite://",
        vendor_api_key="test-key",
        sweep_min_interval_minutes=0,
    )


@pytest.fixture
def lock_backend() -> InMemoryLockBackend:
    """Redis 대신 사용하는 인메모리 락 백엔드."""
    return InMemoryLockBackend()


class RecordingDispatcher:
    """Celery 대신 디스패치 호출을 기록합니다."""

    def __init__(self):
        self.polls: List[Dict[str, Any]] = []
        self.sweeps: List[int] = []

    def dispatch_poll(self, correlation_id: str, state: PollState, countdown: int = 0) -> None:
        self.polls.append({"correlation_id": correlation_id, "state": state, "countdown": countdown})

    def dispatch_sweep(self, countdown: int = 0) -> None:
        self.sweeps.append(countdown)

    @property
    def polled_ids(self) -> List[str]:
        return [poll["correlation_id"] for poll in self.polls]


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


class FakeVendor:
    """
    벤더 클라이언트 대역.

    correlation id별 응답 큐를 소비하며, 큐가 비면 마지막 응답을 반복합니다.
    응답이 예외 인스턴스이면 그대로 발생시킵니다.
    """

    def __init__(self, submit_ids: Optional[Sequence[str]] = None):
        self.submit_ids = list(submit_ids or [])
        self.submit_error: Optional[Exception] = None
        self.responses: Dict[str, List[Any]] = {}
        self.status_calls: List[str] = []
        self.submitted: List[Dict[str, Any]] = []

    def respond(self, correlation_id: str, *responses: Any) -> None:
        self.responses.setdefault(correlation_id, []).extend(responses)

    def submit_generation(self, payload: Dict[str, Any]) -> List[str]:
        self.submitted.append(payload)
        if self.submit_error is not None:
            raise self.submit_error
        return list(self.submit_ids)

    def get_task_status(self, correlation_id: str) -> VendorTaskStatus:
        self.status_calls.append(correlation_id)
        queue = self.responses.get(correlation_id) or [VendorTaskStatus(state=TaskStatus.PENDING)]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


def vendor_status(state: str, **kwargs: Any) -> VendorTaskStatus:
    """VendorTaskStatus 단축 생성자."""
    return VendorTaskStatus(state=TaskStatus(state), **kwargs)


def transient_error(correlation_id: str = "cid") -> VendorTransientError:
    return VendorTransientError(
        message="HTTP 503: Service Unavailable",
        operation="get_task_status",
        status_code=503,
        correlation_id=correlation_id,
    )


# =============================================================================
# Data Factories
# =============================================================================
def make_generation(
    db: Session,
    statuses: Sequence[str] = ("pending", "pending"),
    created_at: Optional[datetime] = None,
    generation_id: str = "gen_test",
    correlation_ids: Optional[Sequence[Optional[str]]] = None,
    **task_fields: Any,
) -> GenerationORM:
    """
    상태 목록대로 태스크를 가진 생성 요청을 만들고 상태를 재계산합니다.

    correlation id를 지정하지 않으면 "{generation_id}-{index}" 형식을 사용합니다.
    """
    created_at = created_at or NOW
    generation = GenerationORM(
        generation_id=generation_id,
        device_id="device-1",
        mode="music",
        request_data={"prompt": "lofi beats"},
        task_count=len(statuses),
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(generation)
    db.flush()

    if correlation_ids is None:
        correlation_ids = [f"{generation_id}-{index}" for index in range(len(statuses))]

    for status, correlation_id in zip(statuses, correlation_ids):
        fields = {
            "generation_id": generation.id,
            "correlation_id": correlation_id,
            "status": status,
            "created_at": created_at,
            "updated_at": created_at,
        }
        if status in (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value):
            fields["completed_at"] = created_at
        fields.update(task_fields)
        db.add(TaskORM(**fields))
    db.flush()

    recompute_generation(db, generation.id, trigger="test_setup", now=created_at)
    return generation


def minutes_ago(minutes: int, now: datetime = NOW) -> datetime:
    return now - timedelta(minutes=minutes)

"""
커밋 이후 디스패치 테스트.

워커는 자체 세션으로 태스크를 읽으므로, 재시도/제출에서 보낸 폴링은
상태 전이가 커밋된 뒤에만 큐에 들어가야 합니다. 파일 기반 SQLite로
세션 간 가시성을 실제와 같게 재현합니다.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db.repositories.task import TaskRepository
from app.db.session import Base
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import CommitBoundDispatcher
from app.services.tracking.poller import StatusPoller
from app.services.tracking.retry import RetryService

from conftest import RecordingDispatcher, make_generation, minutes_ago, vendor_status


@pytest.fixture
def file_session_factory(tmp_path):
    """프로세스 간 공유를 흉내내는 파일 기반 세션 팩토리."""
    engine = create_engine(f"sqlite:///{tmp_path / 'tracker.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


class InlineWorker:
    """디스패치된 폴링을 워커처럼 별도 세션에서 즉시 실행합니다."""

    def __init__(self, session_factory, vendor, lock_backend, settings):
        self.session_factory = session_factory
        self.vendor = vendor
        self.lock_backend = lock_backend
        self.settings = settings
        self.follow_ups = RecordingDispatcher()
        self.results = []

    def dispatch_poll(self, correlation_id, state, countdown=0):
        db = self.session_factory()
        try:
            poller = StatusPoller(db, self.vendor, self.follow_ups, self.lock_backend, self.settings)
            self.results.append(poller.poll(correlation_id, state))
            db.commit()
        finally:
            db.close()

    def dispatch_sweep(self, countdown=0):
        pass


@pytest.fixture
def seeded(file_session_factory):
    db = file_session_factory()
    make_generation(
        db,
        statuses=("completed", "failed"),
        created_at=minutes_ago(60),
        error_kind="timeout",
        error_message="Generation timed out",
        retry_count=1,
    )
    db.commit()
    db.close()
    return file_session_factory


@pytest.fixture
def inline_worker(seeded, vendor, lock_backend, settings):
    return InlineWorker(seeded, vendor, lock_backend, settings)


def task_status(session_factory, correlation_id):
    db = session_factory()
    try:
        return TaskRepository(db).get_by_correlation_id(correlation_id).status
    finally:
        db.close()


class TestRetryDispatchAfterCommit:
    def test_restarted_poll_sees_committed_pending_state(self, seeded, inline_worker, vendor, settings):
        vendor.respond("gen_test-1", vendor_status("processing", progress=10))

        db = seeded()
        try:
            service = RetryService(db, CommitBoundDispatcher(db, inline_worker), settings)
            service.retry_task("gen_test-1")

            # 커밋 전에는 워커가 아무것도 받지 않음
            assert inline_worker.results == []
            db.commit()
        finally:
            db.close()

        assert [result["outcome"] for result in inline_worker.results] == ["rescheduled"]
        assert inline_worker.follow_ups.polls[0]["state"] == PollState(attempt=1, elapsed_seconds=120)
        assert task_status(seeded, "gen_test-1") == "processing"

    def test_rollback_drops_pending_polls(self, seeded, inline_worker, settings):
        db = seeded()
        try:
            dispatcher = CommitBoundDispatcher(db, inline_worker)
            RetryService(db, dispatcher, settings).retry_task("gen_test-1")
            assert dispatcher.pending == 1
            db.rollback()
            assert dispatcher.pending == 0
        finally:
            db.close()

        assert inline_worker.results == []
        assert task_status(seeded, "gen_test-1") == "failed"


class TestCommitBoundDispatcher:
    def test_sends_in_order_on_commit(self, db_session, dispatcher):
        bound = CommitBoundDispatcher(db_session, dispatcher)
        bound.dispatch_poll("cid-1", PollState(), countdown=0)
        bound.dispatch_sweep(countdown=5)
        bound.dispatch_poll("cid-2", PollState.one_shot(), countdown=2)

        assert dispatcher.polls == []
        assert dispatcher.sweeps == []

        db_session.commit()

        assert dispatcher.polled_ids == ["cid-1", "cid-2"]
        assert dispatcher.polls[1]["countdown"] == 2
        assert dispatcher.polls[1]["state"].follow_up is False
        assert dispatcher.sweeps == [5]
        assert bound.pending == 0

    def test_second_commit_does_not_resend(self, db_session, dispatcher):
        bound = CommitBoundDispatcher(db_session, dispatcher)
        bound.dispatch_poll("cid-1", PollState())
        db_session.commit()
        db_session.commit()

        assert dispatcher.polled_ids == ["cid-1"]

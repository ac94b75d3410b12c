"""
운영자 재시도 서비스 테스트.

- 재시도 가능 판정 (에러 종류, 재시도 횟수, force)
- 재시도 이력 기록과 폴링 체인 재시작
"""
from datetime import timedelta

import pytest

from app.core.errors import InvalidTaskStateError, TaskNotFoundError, TaskNotRetryableError, GenerationNotFoundError
from app.db.repositories.task import TaskRepository
from app.services.tracking.backoff import PollState
from app.services.tracking.retry import RetryService, is_retryable, retry_block_reason

from conftest import NOW, make_generation, minutes_ago


@pytest.fixture
def service(db_session, dispatcher, settings):
    return RetryService(db_session, dispatcher, settings)


def failed_generation(db_session, kind="timeout", retry_count=1, message="Generation timed out", **kwargs):
    kwargs.setdefault("created_at", minutes_ago(60))
    return make_generation(
        db_session,
        statuses=kwargs.pop("statuses", ("completed", "failed")),
        error_kind=kind,
        error_message=message,
        retry_count=retry_count,
        **kwargs,
    )


class TestRetryEligibility:
    def test_retryable_kind_under_cap(self, db_session):
        failed_generation(db_session)
        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert retry_block_reason(task) is None
        assert is_retryable(task)

    @pytest.mark.parametrize("kind", ["validation", "auth", "content_policy"])
    def test_non_retryable_kinds(self, db_session, kind):
        failed_generation(db_session, kind=kind)
        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert retry_block_reason(task) == f"non-retryable error ({kind})"
        assert is_retryable(task, force=True)

    def test_retry_cap(self, db_session):
        failed_generation(db_session, retry_count=3)
        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert retry_block_reason(task, max_retries=3) == "retry limit reached (3/3)"
        assert is_retryable(task, force=True, max_retries=3)

    def test_legacy_rows_classified_from_message(self, db_session):
        failed_generation(db_session, kind=None, message="Lyrics rejected: content policy")
        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert retry_block_reason(task) == "non-retryable error (content_policy)"


class TestRetryTask:
    def test_resets_and_restarts_poll_chain(self, db_session, service, dispatcher):
        generation = failed_generation(db_session)
        assert generation.status == "mixed"

        report = service.retry_task("gen_test-1", retried_by="ops", now=NOW)

        assert report.retried == ["gen_test-1"]
        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert task.status == "pending"
        assert task.error_message is None
        assert task.error_kind is None
        assert task.completed_at is None
        assert task.last_accessed_at == NOW
        # 실패 시점에만 증가
        assert task.retry_count == 1

        history = task.meta["retry_history"]
        assert history[-1]["retried_by"] == "ops"
        assert history[-1]["previous_status"] == "failed"
        assert history[-1]["previous_error_kind"] == "timeout"

        assert dispatcher.polls == [{"correlation_id": "gen_test-1", "state": PollState(), "countdown": 0}]
        assert generation.status == "processing"
        assert generation.meta["status_changes"][-1]["trigger"] == "manual_retry"

    def test_dry_run(self, db_session, service, dispatcher):
        failed_generation(db_session)

        report = service.retry_task("gen_test-1", dry_run=True)

        assert report.dry_run is True
        assert report.retried == ["gen_test-1"]
        assert dispatcher.polls == []
        assert TaskRepository(db_session).get_by_correlation_id("gen_test-1").status == "failed"

    def test_missing_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.retry_task("nope")

    def test_not_failed_requires_force(self, db_session, service, dispatcher):
        failed_generation(db_session)
        with pytest.raises(InvalidTaskStateError):
            service.retry_task("gen_test-0")
        assert dispatcher.polls == []

        report = service.retry_task("gen_test-0", force=True, now=NOW)
        assert report.retried == ["gen_test-0"]

    def test_non_retryable_raises_without_force(self, db_session, service):
        failed_generation(db_session, kind="validation")
        with pytest.raises(TaskNotRetryableError) as exc_info:
            service.retry_task("gen_test-1")
        assert "validation" in exc_info.value.reason

        assert service.retry_task("gen_test-1", force=True, now=NOW).retried == ["gen_test-1"]


class TestBatchRetry:
    def test_retry_failed_window_and_skips(self, db_session, service, dispatcher):
        failed_generation(db_session, generation_id="gen_a", statuses=("failed", "failed"))
        failed_generation(db_session, generation_id="gen_b", statuses=("failed",), kind="auth")
        failed_generation(
            db_session,
            generation_id="gen_old",
            statuses=("failed",),
            created_at=NOW - timedelta(hours=30),
        )

        report = service.retry_failed(age_hours=24, now=NOW)

        assert sorted(report.retried) == ["gen_a-0", "gen_a-1"]
        assert report.skipped == [{"correlation_id": "gen_b-0", "reason": "non-retryable error (auth)"}]
        assert report.total == 3
        assert len(dispatcher.polls) == 2

    def test_retry_failed_limit(self, db_session, service):
        failed_generation(db_session, statuses=("failed",) * 5)
        report = service.retry_failed(limit=2, now=NOW)
        assert len(report.retried) == 2

    def test_tasks_without_correlation_id_skipped(self, db_session, service):
        failed_generation(db_session, statuses=("failed",), correlation_ids=[None])
        report = service.retry_failed(now=NOW)
        assert report.retried == []
        assert report.skipped[0]["reason"] == "no correlation id"

    def test_retry_generation(self, db_session, service):
        failed_generation(db_session, statuses=("failed", "completed", "failed"))
        report = service.retry_generation("gen_test", now=NOW)
        assert sorted(report.retried) == ["gen_test-0", "gen_test-2"]

    def test_retry_unknown_generation(self, service):
        with pytest.raises(GenerationNotFoundError):
            service.retry_generation("gen_missing")

    def test_failure_analysis(self, db_session, service):
        failed_generation(db_session, generation_id="gen_a", statuses=("failed", "failed"))
        failed_generation(db_session, generation_id="gen_b", statuses=("failed",), kind="auth")

        assert service.failure_analysis(now=NOW) == {"timeout": 2, "auth": 1}

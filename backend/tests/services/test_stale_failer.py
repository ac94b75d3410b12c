"""
오래된 태스크 실패 처리 테스트.

타임아웃을 넘긴 pending/processing 태스크를 failed로 바꾸고 생성 요청을
재계산합니다. 재실행은 no-op입니다.
"""
from app.db.repositories.task import TaskRepository
from app.services.tracking.stale import STALE_MESSAGE, StaleTaskFailer

from conftest import NOW, make_generation, minutes_ago


class TestStaleTaskFailer:
    def test_fails_old_in_flight_tasks(self, db_session, settings):
        generation = make_generation(db_session, statuses=("completed", "pending"), created_at=minutes_ago(20))

        result = StaleTaskFailer(db_session, settings).run(now=NOW)

        assert result["failed"] == 1
        assert result["task_ids"] == ["gen_test-1"]
        assert result["generations_updated"] == 1

        task = TaskRepository(db_session).get_by_correlation_id("gen_test-1")
        assert task.status == "failed"
        assert task.error_message == STALE_MESSAGE.format(minutes=15)
        assert task.error_message == "Generation timed out after 15 minutes and was automatically marked as failed."
        assert task.error_kind == "timeout"
        assert task.error_code == "stale_timeout"

        assert generation.status == "mixed"
        last_change = generation.meta["status_changes"][-1]
        assert last_change["trigger"] == "stale_task_failer"
        assert last_change["reason"] == "1 completed, 1 failed"

    def test_young_tasks_untouched(self, db_session, settings):
        make_generation(db_session, created_at=minutes_ago(10))
        result = StaleTaskFailer(db_session, settings).run(now=NOW)
        assert result["failed"] == 0

    def test_idempotent(self, db_session, settings):
        make_generation(db_session, created_at=minutes_ago(20))
        failer = StaleTaskFailer(db_session, settings)

        assert failer.run(now=NOW)["failed"] == 2
        assert failer.run(now=NOW)["failed"] == 0

    def test_dry_run_changes_nothing(self, db_session, settings):
        make_generation(db_session, created_at=minutes_ago(20))

        result = StaleTaskFailer(db_session, settings).run(now=NOW, dry_run=True)

        assert result["found"] == 2
        assert result["dry_run"] is True
        assert TaskRepository(db_session).get_by_correlation_id("gen_test-0").status == "pending"

    def test_custom_timeout(self, db_session, settings):
        make_generation(db_session, created_at=minutes_ago(20))

        result = StaleTaskFailer(db_session, settings).run(now=NOW, timeout_minutes=30)

        assert result["failed"] == 0

    def test_tasks_without_correlation_id_are_failed(self, db_session, settings):
        make_generation(db_session, statuses=("pending",), correlation_ids=[None], created_at=minutes_ago(60))

        result = StaleTaskFailer(db_session, settings).run(now=NOW)

        assert result["failed"] == 1
        assert result["task_ids"][0].startswith("#")

"""
생성 요청 수명주기 통합 테스트.

제출 → 폴링 → 오래된 태스크 실패 처리 → 운영자 재시도까지 실제 서비스와
인메모리 DB로 한 흐름을 따라갑니다.
"""
from datetime import timedelta

from app.db.repositories.task import TaskRepository
from app.services.tracking.backoff import PollState
from app.services.tracking.generation import GenerationService
from app.services.tracking.poller import StatusPoller
from app.services.tracking.retry import RetryService
from app.services.tracking.stale import StaleTaskFailer
from app.services.tracking.sweeper import BulkSweeper

from conftest import NOW, FakeVendor, vendor_status


def test_completed_and_stale_sibling_then_forced_retry(db_session, dispatcher, lock_backend, settings):
    vendor = FakeVendor(submit_ids=["task-a", "task-b"])
    vendor.respond(
        "task-a",
        vendor_status("completed", result_urls={"content_url": "https://cdn.test/a.mp3"}),
    )
    vendor.respond("task-b", vendor_status("pending"))

    # 1. 제출: 두 태스크 모두 pending
    generation = GenerationService(db_session, vendor, dispatcher, settings).create_generation(
        "device-1", "music", {"prompt": "lofi"}, now=NOW
    )
    tasks = TaskRepository(db_session)
    assert [t.status for t in tasks.list_by_generation(generation.id)] == ["pending", "pending"]
    assert generation.status == "processing"

    # 2. 첫 폴링: A 완료, B 재예약
    poller = StatusPoller(db_session, vendor, dispatcher, lock_backend, settings)
    first_poll = NOW + timedelta(seconds=settings.poll_initial_delay)
    assert poller.poll("task-a", PollState(), now=first_poll)["outcome"] == "completed"
    assert poller.poll("task-b", PollState(), now=first_poll)["outcome"] == "rescheduled"

    task_a = tasks.get_by_correlation_id("task-a")
    assert task_a.content_url == "https://cdn.test/a.mp3"
    assert generation.status == "processing"

    # 3. 15분 경과: B는 여전히 pending → 오래된 태스크로 실패 처리
    later = NOW + timedelta(minutes=16)
    result = StaleTaskFailer(db_session, settings).run(now=later)
    assert result["task_ids"] == ["task-b"]

    task_b = tasks.get_by_correlation_id("task-b")
    assert task_b.status == "failed"
    assert "timed out" in task_b.error_message
    assert generation.status == "mixed"

    # 늦게 도착한 B의 예약 폴링은 건드리지 않음
    dispatcher.polls.clear()
    assert poller.poll("task-b", PollState(attempt=1, elapsed_seconds=120), now=later)["outcome"] == "already_terminal"

    # 4. 운영자 강제 재시도: pending으로 복귀, 시도 횟수 0부터
    report = RetryService(db_session, dispatcher, settings).retry_task("task-b", force=True, now=later)
    assert report.retried == ["task-b"]
    assert task_b.status == "pending"
    assert dispatcher.polls == [{"correlation_id": "task-b", "state": PollState(), "countdown": 0}]
    assert generation.status == "processing"

    # 재시도 직후 오래된 태스크 처리기가 다시 실패시키지 않음
    assert StaleTaskFailer(db_session, settings).run(now=later + timedelta(minutes=1))["failed"] == 0

    # 5. 재시도된 B 완료 → 생성 요청 완료
    vendor.responses["task-b"] = [vendor_status("completed", result_urls={"content_url": "https://cdn.test/b.mp3"})]
    assert poller.poll("task-b", PollState(), now=later + timedelta(minutes=2))["outcome"] == "completed"
    assert generation.status == "completed"
    assert generation.completed_at == later + timedelta(minutes=2)

    statuses = [change["status"] for change in generation.meta["status_changes"]]
    assert statuses == ["mixed", "processing", "completed"]


def test_sweep_recovers_lost_poll(db_session, dispatcher, lock_backend, settings):
    """폴링 체인이 유실된 태스크를 스윕이 한 번 더 확인."""
    vendor = FakeVendor(submit_ids=["task-a", "task-b"])
    generation = GenerationService(db_session, vendor, dispatcher, settings).create_generation(
        None, "music", {"prompt": "x"}, now=NOW
    )
    dispatcher.polls.clear()

    sweep_time = NOW + timedelta(minutes=10)
    result = BulkSweeper(db_session, dispatcher, lock_backend, settings).run(now=sweep_time)
    assert result["dispatched"] == 2

    vendor.respond("task-a", vendor_status("completed", result_urls={"content_url": "u"}))
    vendor.respond("task-b", vendor_status("completed", result_urls={"content_url": "v"}))
    poller = StatusPoller(db_session, vendor, dispatcher, lock_backend, settings)
    for poll in list(dispatcher.polls):
        poller.poll(poll["correlation_id"], poll["state"], now=sweep_time)

    assert generation.status == "completed"

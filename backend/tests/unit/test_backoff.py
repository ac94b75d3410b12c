"""
폴링 백오프 테이블 단위 테스트.

- 가장 가까운 하위 키 조회
- 시도 예산 소진
- PollState 직렬화
"""
import pytest

from app.services.tracking.backoff import (
    DEFAULT_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    PollState,
    delay_for_attempt,
    is_exhausted,
)


class TestDelayForAttempt:
    """백오프 테이블 조회 테스트."""

    @pytest.mark.parametrize(
        "attempt,expected",
        [
            (0, 120),
            (1, 90),
            (2, 90),
            (3, 120),
            (5, 120),
            (6, 180),
            (8, 180),
            (10, 300),
            (12, 300),
            (15, 600),
            (20, 600),
        ],
    )
    def test_nearest_lower_key(self, attempt, expected):
        assert delay_for_attempt(attempt) == expected

    def test_custom_table(self):
        table = {0: 5, 4: 50}
        assert delay_for_attempt(3, table) == 5
        assert delay_for_attempt(4, table) == 50
        assert delay_for_attempt(99, table) == 50

    def test_string_keys_from_env(self):
        """환경 변수 JSON에서 온 문자열 키도 처리."""
        assert delay_for_attempt(7, {"0": 10, "6": 60}) == 60

    def test_below_first_key_uses_first_entry(self):
        assert delay_for_attempt(0, {2: 30, 5: 60}) == 30


class TestExhaustion:
    def test_default_budget(self):
        assert DEFAULT_MAX_ATTEMPTS == 15
        assert not is_exhausted(14)
        assert is_exhausted(15)

    def test_default_table_is_unchanged(self):
        assert DEFAULT_BACKOFF == {0: 120, 1: 90, 3: 120, 6: 180, 10: 300, 15: 600}


class TestPollState:
    def test_advance_accumulates(self):
        state = PollState().advance(120).advance(90)
        assert state.attempt == 2
        assert state.elapsed_seconds == 210
        assert state.follow_up is True

    def test_dict_round_trip(self):
        state = PollState(attempt=4, elapsed_seconds=510, follow_up=False)
        assert PollState.from_dict(state.to_dict()) == state

    def test_from_empty_payload(self):
        assert PollState.from_dict(None) == PollState()
        assert PollState.from_dict({}) == PollState()

    def test_one_shot(self):
        state = PollState.one_shot()
        assert state.attempt == 0
        assert state.follow_up is False

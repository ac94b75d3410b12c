"""
Progressive poll schedule.

The schedule is a sparse table keyed by attempt index; lookups use the
largest key not above the attempt. Kept free of queueing and storage so it
can be tested on its own.
"""
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Mapping, Optional

DEFAULT_BACKOFF: Dict[int, int] = {
    0: 120,
    1: 90,
    3: 120,
    6: 180,
    10: 300,
    15: 600,
}
DEFAULT_MAX_ATTEMPTS = 15


def delay_for_attempt(attempt: int, table: Optional[Mapping[int, int]] = None) -> int:
    """
    Seconds to wait after the given attempt before polling again.

    Args:
        attempt: Zero-based attempt index
        table: Sparse attempt -> seconds table (default schedule if None)

    Returns:
        Delay in seconds from the nearest lower table key
    """
    schedule = {int(key): int(seconds) for key, seconds in (table or DEFAULT_BACKOFF).items()}
    keys = sorted(schedule)

    chosen = keys[0]
    for key in keys:
        if key > attempt:
            break
        chosen = key
    return schedule[chosen]


def is_exhausted(attempt: int, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
    """True once the attempt index has used up the poll budget."""
    return attempt >= max_attempts


@dataclass(frozen=True)
class PollState:
    """
    State carried forward by a self-rescheduling poll.

    Attributes:
        attempt: Zero-based index of the poll about to run
        elapsed_seconds: Sum of delays scheduled so far
        follow_up: Whether this poll may schedule the next one
    """

    attempt: int = 0
    elapsed_seconds: int = 0
    follow_up: bool = True

    def advance(self, delay: int) -> "PollState":
        return replace(self, attempt=self.attempt + 1, elapsed_seconds=self.elapsed_seconds + delay)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PollState":
        if not data:
            return cls()
        return cls(
            attempt=int(data.get("attempt", 0)),
            elapsed_seconds=int(data.get("elapsed_seconds", 0)),
            follow_up=bool(data.get("follow_up", True)),
        )

    @classmethod
    def one_shot(cls) -> "PollState":
        """Single poll that never reschedules (sweeps, manual checks)."""
        return cls(follow_up=False)

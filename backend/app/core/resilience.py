"""Retry decorator for outbound calls."""
import logging
from typing import Any, Callable, Optional, TypeVar
from functools import wraps
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from app.core.errors import TransientError
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def with_retry(
    max_attempts: int = 2,
    wait_min: float = 0.5,
    wait_max: float = 4.0,
    retry_on: tuple[type[Exception], ...] = (TransientError,),
    correlation_id_param: Optional[str] = "correlation_id",
):
    """
    지수 백오프를 사용하는 동기 재시도 데코레이터.

    Worker 안에서 짧게 재시도할 때만 사용합니다. 분 단위 재시도는
    상태 폴러의 백오프 테이블이 담당합니다.

    Args:
        max_attempts: 최대 시도 횟수
        wait_min: 최소 대기 시간 (초)
        wait_max: 최대 대기 시간 (초)
        retry_on: 재시도할 예외 타입
        correlation_id_param: correlation_id 파라미터 이름 (로깅용)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            correlation_id = kwargs.get(correlation_id_param) if correlation_id_param else None

            retryer = retry(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=wait_min, min=wait_min, max=wait_max),
                retry=retry_if_exception_type(retry_on),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            retried_func = retryer(func)

            try:
                return retried_func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    "retry_failed",
                    function=func.__name__,
                    correlation_id=correlation_id,
                    attempts=max_attempts,
                    error=str(e),
                )
                raise

        return sync_wrapper  # type: ignore

    return decorator

"""
분산 락/카운터 백엔드.

Worker 프로세스 간에 공유되는 짧은 상태를 다룹니다.
- 스윕 리스 락: SET key token NX EX ttl, 토큰 비교 후 삭제
- 최소 실행 간격 마커
- 벤더 호출 레이트 카운터 (INCR + EXPIRE)
- Redis/인메모리 백엔드 추상화
"""
import threading
import time
from typing import Optional, Dict, Any, List
from uuid import uuid4

import redis

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# 키 정의
# =============================================================================
SWEEP_LOCK_KEY = "bulk_status_check_running"
SWEEP_LAST_RUN_KEY = "bulk_status_check_last_run"
VENDOR_RATE_KEY = "vendor_api_calls"

TRACKING_KEYS = (SWEEP_LOCK_KEY, SWEEP_LAST_RUN_KEY, VENDOR_RATE_KEY)

# Lua: 토큰이 일치할 때만 삭제
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


# =============================================================================
# 인메모리 백엔드 (테스트/단일 프로세스용)
# =============================================================================
class InMemoryLockBackend:
    """인메모리 락 백엔드 (Redis fallback)."""

    def __init__(self):
        self._store: Dict[str, tuple[str, Optional[float]]] = {}
        self._mutex = threading.Lock()

    def _alive(self, key: str) -> Optional[str]:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if expiry is not None and expiry <= time.time():
            del self._store[key]
            return None
        return value

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """키가 없을 때만 값을 저장합니다."""
        with self._mutex:
            if self._alive(key) is not None:
                return False
            self._store[key] = (value, time.time() + ttl)
            return True

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._mutex:
            expiry = time.time() + ttl if ttl else None
            self._store[key] = (value, expiry)

    def get(self, key: str) -> Optional[str]:
        with self._mutex:
            return self._alive(key)

    def delete_if_equals(self, key: str, value: str) -> bool:
        """저장된 값이 일치할 때만 삭제합니다."""
        with self._mutex:
            if self._alive(key) != value:
                return False
            del self._store[key]
            return True

    def delete(self, *keys: str) -> int:
        with self._mutex:
            removed = 0
            for key in keys:
                if self._alive(key) is not None:
                    removed += 1
                self._store.pop(key, None)
            return removed

    def incr(self, key: str, ttl: int) -> int:
        """카운터를 증가시키고, 새 카운터면 TTL을 설정합니다."""
        with self._mutex:
            current = self._alive(key)
            if current is None:
                self._store[key] = ("1", time.time() + ttl)
                return 1
            value = int(current) + 1
            self._store[key] = (str(value), self._store[key][1])
            return value

    def ttl(self, key: str) -> Optional[int]:
        with self._mutex:
            if self._alive(key) is None:
                return None
            expiry = self._store[key][1]
            return None if expiry is None else max(0, int(expiry - time.time()))

    def queue_length(self, queue: str) -> Optional[int]:
        return None

    def info(self) -> Dict[str, Any]:
        return {"backend": "memory", "keys": len(self._store)}


# =============================================================================
# Redis 백엔드
# =============================================================================
class RedisLockBackend:
    """Redis 락 백엔드."""

    def __init__(self, client: "redis.Redis", broker: Optional["redis.Redis"] = None):
        """
        Args:
            client: 락/카운터용 Redis 클라이언트
            broker: 큐 길이 조회용 Celery 브로커 클라이언트
        """
        self._redis = client
        self._broker = broker or client
        self._release = self._redis.register_script(_RELEASE_SCRIPT)

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(self._redis.set(key, value, nx=True, ex=ttl))

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._redis.set(key, value, ex=ttl)

    def get(self, key: str) -> Optional[str]:
        return self._redis.get(key)

    def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(self._release(keys=[key], args=[value]))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._redis.delete(*keys))

    def incr(self, key: str, ttl: int) -> int:
        count = int(self._redis.incr(key))
        if count == 1:
            self._redis.expire(key, ttl)
        return count

    def ttl(self, key: str) -> Optional[int]:
        remaining = self._redis.ttl(key)
        return remaining if remaining is not None and remaining >= 0 else None

    def queue_length(self, queue: str) -> Optional[int]:
        return int(self._broker.llen(queue))

    def info(self) -> Dict[str, Any]:
        raw = self._redis.info()
        return {
            "backend": "redis",
            "redis_version": raw.get("redis_version"),
            "connected_clients": raw.get("connected_clients"),
            "used_memory_human": raw.get("used_memory_human"),
            "uptime_in_seconds": raw.get("uptime_in_seconds"),
        }


# =============================================================================
# 리스 락
# =============================================================================
class LeaseLock:
    """
    만료 시간이 있는 소유 토큰 락.

    획득은 단일 원자적 조건부 쓰기(SET NX EX)이고, 해제는 토큰이 여전히
    일치할 때만 삭제합니다. 비정상 종료된 소유자의 락은 TTL로 회수됩니다.
    """

    def __init__(self, backend, key: str, ttl: int):
        self._backend = backend
        self.key = key
        self.ttl = ttl
        self.token: Optional[str] = None

    def acquire(self) -> bool:
        token = uuid4().hex
        if self._backend.set_if_absent(self.key, token, self.ttl):
            self.token = token
            logger.debug("lease_lock_acquired", key=self.key, ttl=self.ttl)
            return True
        return False

    def release(self) -> bool:
        if self.token is None:
            return False
        released = self._backend.delete_if_equals(self.key, self.token)
        if not released:
            logger.warning("lease_lock_lost", key=self.key)
        self.token = None
        return released

    def is_held(self) -> bool:
        """누구든 현재 락을 보유 중인지 확인합니다."""
        return self._backend.get(self.key) is not None

    def force_release(self) -> bool:
        """소유자와 무관하게 락을 제거합니다 (운영자 명령용)."""
        removed = self._backend.delete(self.key) > 0
        logger.info("lease_lock_force_released", key=self.key, removed=removed)
        return removed


# =============================================================================
# 레이트 카운터
# =============================================================================
class RateCounter:
    """고정 윈도우 호출 카운터."""

    def __init__(self, backend, key: str, limit: int, window: int = 60):
        self._backend = backend
        self.key = key
        self.limit = limit
        self.window = window

    def hit(self) -> bool:
        """
        호출 1회를 기록합니다.

        Returns:
            윈도우 내 허용 범위이면 True
        """
        count = self._backend.incr(self.key, self.window)
        if count > self.limit:
            logger.info("vendor_rate_limited", key=self.key, count=count, limit=self.limit)
            return False
        return True


# =============================================================================
# 전역 백엔드 인스턴스
# =============================================================================
_backend = None


def create_lock_backend(use_redis: bool = True, settings=None):
    """
    락 백엔드를 생성합니다.

    인메모리 락은 프로세스 간에 공유되지 않으므로, Redis 연결 실패 시
    인메모리 백엔드로의 대체는 debug 또는 lock_memory_fallback 설정에서만
    허용합니다. 그 외에는 Redis 오류를 그대로 발생시킵니다.

    Raises:
        redis.RedisError: Redis 연결 실패 (대체 허용되지 않음)
    """
    settings = settings or get_settings()
    if use_redis:
        try:
            client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
            client.ping()
            broker = redis.Redis.from_url(settings.get_celery_broker_url(), decode_responses=True)
            logger.info("lock_redis_initialized", url=settings.redis_url)
            return RedisLockBackend(client, broker)
        except redis.RedisError as e:
            if not (settings.debug or settings.lock_memory_fallback):
                logger.error("lock_redis_unavailable", url=settings.redis_url, error=str(e))
                raise
            logger.warning("lock_redis_init_failed", error=str(e), fallback="memory")

    logger.info("lock_memory_initialized")
    return InMemoryLockBackend()


def get_lock_backend():
    """전역 락 백엔드 인스턴스를 반환합니다."""
    global _backend

    if _backend is None:
        _backend = create_lock_backend()

    return _backend


def set_lock_backend(backend) -> None:
    """전역 락 백엔드를 교체합니다."""
    global _backend
    _backend = backend


def clear_tracking_keys(backend, keys: List[str] = None) -> int:
    """스윕 락, 마지막 실행 마커, 레이트 카운터 키를 삭제합니다."""
    removed = backend.delete(*(keys or TRACKING_KEYS))
    logger.info("tracking_keys_cleared", removed=removed)
    return removed

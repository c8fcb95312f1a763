# whisperhub/whisper_match/redis_store.py
import functools
from datetime import datetime, timezone as dt_timezone

from django.utils import timezone
from loguru import logger
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .domain import WaitingEntry
from .errors import StoreUnavailable
from .pool import WaitPool

POOL_KEY = "whisper_match:pool"
PAIRING_LOCK_KEY = "whisper_match:pairing"

PAIRING_LOCK_TIMEOUT_SEC = 10  # 락 잡은 프로세스가 죽어도 이 시간 뒤 풀림
PAIRING_LOCK_WAIT_SEC = 5


def _to_score(value: datetime) -> int:
    # float 정밀도 안에서 딱 떨어지게 마이크로초 정수로 저장
    return int(round(value.timestamp() * 1_000_000))


def _from_score(score) -> datetime:
    return datetime.fromtimestamp(int(score) / 1_000_000, tz=dt_timezone.utc)


def _translate_redis_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailable(str(e)) from e

    return wrapper


class RedisWaitPool(WaitPool):
    """
    멀티 인스턴스용 대기열. sorted set(score=enqueuedAt 마이크로초).
    꺼낼 때는 WATCH/MULTI 로 조건부 삭제라서 두 프로세스가 같은 사람을 가져가지 못함.
    """

    def __init__(self, redis_client, store=None, clock=timezone.now, max_size=None, key=POOL_KEY):
        super().__init__(store=store, clock=clock, max_size=max_size)
        self.redis = redis_client
        self.key = key

    def _new_entry(self, user_id):
        # redis 에서 다시 읽었을 때와 같은 값이 되도록 score 로 한번 왕복
        return WaitingEntry(user_id=user_id, enqueued_at=_from_score(_to_score(self.clock())))

    @_translate_redis_errors
    def _add(self, entry):
        return bool(self.redis.zadd(self.key, {entry.user_id: _to_score(entry.enqueued_at)}, nx=True))

    @_translate_redis_errors
    def dequeue_oldest(self, excluding=None):
        excluding = str(excluding) if excluding is not None else None

        def claim(pipe):
            head = pipe.zrange(self.key, 0, 1, withscores=True)
            picked = next(((m, s) for m, s in head if m != excluding), None)
            pipe.multi()
            if picked is not None:
                pipe.zrem(self.key, picked[0])
            return picked

        picked = self.redis.transaction(claim, self.key, value_from_callable=True)
        if picked is None:
            return None
        member, score = picked
        return WaitingEntry(user_id=member, enqueued_at=_from_score(score))

    @_translate_redis_errors
    def remove(self, user_id):
        return bool(self.redis.zrem(self.key, str(user_id)))

    @_translate_redis_errors
    def get(self, user_id):
        score = self.redis.zscore(self.key, str(user_id))
        if score is None:
            return None
        return WaitingEntry(user_id=str(user_id), enqueued_at=_from_score(score))

    @_translate_redis_errors
    def restore(self, entry):
        return bool(self.redis.zadd(self.key, {entry.user_id: _to_score(entry.enqueued_at)}, nx=True))

    @_translate_redis_errors
    def remove_stale(self, older_than):
        cutoff = _to_score(older_than)

        def sweep(pipe):
            stale = pipe.zrangebyscore(self.key, "-inf", f"({cutoff}", withscores=True)
            pipe.multi()
            if stale:
                pipe.zrem(self.key, *[m for m, _ in stale])
            return stale

        stale = self.redis.transaction(sweep, self.key, value_from_callable=True)
        return [WaitingEntry(user_id=m, enqueued_at=_from_score(s)) for m, s in stale]

    @_translate_redis_errors
    def __len__(self):
        return int(self.redis.zcard(self.key))


class RedisPairingLock:
    """
    여러 프로세스가 공유하는 pairing 임계구역.
    with 블록 하나 = "대기열에서 꺼내기 + 세션 생성 + 포인터 설정"
    """

    def __init__(self, redis_client, name=PAIRING_LOCK_KEY, timeout=PAIRING_LOCK_TIMEOUT_SEC, blocking_timeout=PAIRING_LOCK_WAIT_SEC):
        self.redis = redis_client
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._lock = None

    def __enter__(self):
        self._lock = self.redis.lock(
            self.name, timeout=self.timeout, blocking_timeout=self.blocking_timeout
        )
        try:
            acquired = self._lock.acquire()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailable(str(e)) from e
        if not acquired:
            raise StoreUnavailable("could not acquire pairing lock")
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self._lock.release()
        except LockError:
            # timeout 지나서 이미 풀린 경우
            logger.warning("pairing lock {} expired before release", self.name)
        except (RedisConnectionError, RedisTimeoutError) as e:
            if exc_type is None:
                raise StoreUnavailable(str(e)) from e
        return False

# whisperhub/whisper_match/services.py
import functools
import threading

from channels.layers import get_channel_layer

from whisperhub.common.redis_client import get_redis

from .conf import get_match_settings
from .gateway import GatewayAdapter
from .pool import InMemoryWaitPool
from .redis_store import RedisPairingLock, RedisWaitPool
from .retry import StoreRetry
from .scheduler import ThreadingScheduler
from .store import DatabaseSessionStore, InMemorySessionStore

_gateway = None
_gateway_lock = threading.Lock()


def build_gateway(match_settings=None, *, channel_layer=None, scheduler=None):
    match_settings = match_settings or get_match_settings()

    if match_settings.session_backend == "database":
        store = DatabaseSessionStore()
    else:
        store = InMemorySessionStore()

    lock_factory = None
    if match_settings.pool_backend == "redis":
        r = get_redis()
        pool = RedisWaitPool(r, store=store, max_size=match_settings.max_waiting)
        lock_factory = functools.partial(RedisPairingLock, r)
    else:
        pool = InMemoryWaitPool(store=store, max_size=match_settings.max_waiting)

    gateway = GatewayAdapter(
        store,
        pool,
        scheduler or ThreadingScheduler(),
        match_settings,
        channel_layer=channel_layer if channel_layer is not None else get_channel_layer(),
        lock_factory=lock_factory,
        retry=StoreRetry(
            attempts=match_settings.store_retry_attempts,
            delay=match_settings.store_retry_delay_seconds,
        ),
    )
    if match_settings.session_backend == "memory":
        # 종료 세션 정리를 cron 에 맡길 수 없음 (저장소가 이 프로세스 메모리)
        gateway.start_periodic_sweep(match_settings.sweep_interval_seconds)
    return gateway


def get_gateway() -> GatewayAdapter:
    global _gateway
    if _gateway is None:
        with _gateway_lock:
            if _gateway is None:
                _gateway = build_gateway()
    return _gateway


def set_gateway(gateway):
    """테스트/관리 커맨드에서 교체용. 이전 것은 타이머 정리"""
    global _gateway
    with _gateway_lock:
        previous, _gateway = _gateway, gateway
    if previous is not None and previous is not gateway:
        previous.shutdown()
    return previous

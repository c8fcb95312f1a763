from datetime import timedelta

import fakeredis
import pytest

from whisperhub.whisper_match.domain import MatchSession
from whisperhub.whisper_match.errors import (
    AlreadyInSession,
    AlreadyWaiting,
    ServiceUnavailable,
)
from whisperhub.whisper_match.pool import InMemoryWaitPool
from whisperhub.whisper_match.redis_store import RedisWaitPool


@pytest.fixture
def redis_pool(store, clock):
    r = fakeredis.FakeRedis(decode_responses=True)
    return RedisWaitPool(r, store=store, clock=clock)


@pytest.fixture(params=["memory", "redis"])
def any_pool(request, pool, redis_pool):
    return pool if request.param == "memory" else redis_pool


def test_enqueue_creates_entry_with_current_time(any_pool, clock):
    entry = any_pool.enqueue("u1")

    assert entry.user_id == "u1"
    assert entry.enqueued_at == clock()
    assert any_pool.get("u1") == entry
    assert "u1" in any_pool
    assert len(any_pool) == 1


def test_enqueue_twice_is_rejected(any_pool):
    any_pool.enqueue("u1")

    with pytest.raises(AlreadyWaiting):
        any_pool.enqueue("u1")
    assert len(any_pool) == 1


def test_enqueue_rejects_user_with_active_session(any_pool, store, clock):
    store.create_session(
        MatchSession(
            session_id="s1",
            participant_a="u1",
            participant_b="u2",
            created_at=clock(),
            expires_at=clock() + timedelta(minutes=5),
        )
    )

    with pytest.raises(AlreadyInSession) as exc:
        any_pool.enqueue("u1")
    assert exc.value.session.session_id == "s1"
    assert len(any_pool) == 0


def test_dequeue_oldest_is_fifo_and_skips_excluded(any_pool, clock):
    any_pool.enqueue("u1")
    clock.advance(1)
    any_pool.enqueue("u2")
    clock.advance(1)
    any_pool.enqueue("u3")

    assert any_pool.dequeue_oldest(excluding="u1").user_id == "u2"
    assert any_pool.dequeue_oldest(excluding="u9").user_id == "u1"
    assert any_pool.get("u3") is not None
    assert len(any_pool) == 1


def test_dequeue_returns_none_when_only_excluded_user_waits(any_pool):
    any_pool.enqueue("u1")

    assert any_pool.dequeue_oldest(excluding="u1") is None
    assert any_pool.dequeue_oldest(excluding="u1") is None
    assert "u1" in any_pool


def test_dequeue_on_empty_pool(any_pool):
    assert any_pool.dequeue_oldest(excluding="u1") is None


def test_remove_is_idempotent(any_pool):
    any_pool.enqueue("u1")

    assert any_pool.remove("u1") is True
    assert any_pool.remove("u1") is False
    assert any_pool.get("u1") is None


def test_restore_puts_entry_back_in_original_position(any_pool, clock):
    any_pool.enqueue("u1")
    clock.advance(1)
    any_pool.enqueue("u2")

    taken = any_pool.dequeue_oldest()
    assert taken.user_id == "u1"

    assert any_pool.restore(taken) is True
    assert any_pool.restore(taken) is False
    assert any_pool.dequeue_oldest().user_id == "u1"


def test_remove_stale(any_pool, clock):
    any_pool.enqueue("old")
    clock.advance(120)
    any_pool.enqueue("new")

    stale = any_pool.remove_stale(clock() - timedelta(seconds=60))

    assert [e.user_id for e in stale] == ["old"]
    assert "old" not in any_pool
    assert "new" in any_pool


def test_max_size_rejects_new_entries(store, clock):
    pool = InMemoryWaitPool(store=store, clock=clock, max_size=1)
    pool.enqueue("u1")

    with pytest.raises(ServiceUnavailable):
        pool.enqueue("u2")


def test_redis_entry_round_trips_timestamp(redis_pool):
    entry = redis_pool.enqueue("u1")

    assert redis_pool.get("u1") == entry
    assert redis_pool.dequeue_oldest() == entry

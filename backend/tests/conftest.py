from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from whisperhub.whisper_match.lifecycle import SessionLifecycle
from whisperhub.whisper_match.matchmaker import Matchmaker
from whisperhub.whisper_match.pool import InMemoryWaitPool
from whisperhub.whisper_match.retry import StoreRetry
from whisperhub.whisper_match.scheduler import ExpiryScheduler
from whisperhub.whisper_match.store import InMemorySessionStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=dt_timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class ManualScheduler(ExpiryScheduler):
    """시간이 흘러도 자동으로 안 울림. 테스트가 fire()/run_due() 로 직접 울림"""

    def __init__(self, clock):
        self.clock = clock
        self.jobs = {}

    def schedule(self, key, delay, callback):
        self.jobs[key] = (self.clock() + timedelta(seconds=delay), callback)

    def cancel(self, key):
        return self.jobs.pop(key, None) is not None

    def fire(self, key):
        _, callback = self.jobs.pop(key)
        return callback()

    def run_due(self):
        due = [k for k, (at, _) in self.jobs.items() if at <= self.clock()]
        return [self.fire(k) for k in due]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def __call__(self, user_id, event_type, match_id=None, payload=None):
        self.events.append((str(user_id), event_type, match_id, payload or {}))

    def for_user(self, user_id, event_type=None):
        return [
            e
            for e in self.events
            if e[0] == str(user_id) and (event_type is None or e[1] == event_type)
        ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def pool(store, clock):
    return InMemoryWaitPool(store=store, clock=clock)


@pytest.fixture
def no_wait_retry():
    return StoreRetry(attempts=3, delay=0)


@pytest.fixture
def lifecycle(store, scheduler, notifier, clock, no_wait_retry):
    return SessionLifecycle(
        store,
        scheduler,
        notifier,
        session_ttl_seconds=60,
        max_messages=5,
        max_message_length=20,
        terminal_retention_seconds=600,
        retry=no_wait_retry,
        clock=clock,
    )


@pytest.fixture
def matchmaker(pool, lifecycle, scheduler, notifier, no_wait_retry):
    return Matchmaker(pool, lifecycle, scheduler, notifier, retry=no_wait_retry)

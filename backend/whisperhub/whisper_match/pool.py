# whisperhub/whisper_match/pool.py
import threading
from collections import OrderedDict
from typing import List, Optional

from django.utils import timezone

from .domain import WaitingEntry
from .errors import AlreadyInSession, AlreadyWaiting, ServiceUnavailable


class WaitPool:
    """
    매칭 대기열. 오래 기다린 사람부터 (FIFO).

    변경은 Matchmaker 만 한다. 구현체들은 각자 스레드/프로세스 안전해야 하고,
    "dequeue + 세션 생성" 원자성은 Matchmaker 의 pairing lock 이 책임진다.
    """

    def __init__(self, store=None, clock=timezone.now, max_size: Optional[int] = None):
        self.store = store
        self.clock = clock
        self.max_size = max_size

    def enqueue(self, user_id) -> WaitingEntry:
        user_id = str(user_id)
        if self.store is not None:
            active = self.store.get_active_session_for_user(user_id)
            if active is not None:
                raise AlreadyInSession(user_id, active)
        if self.max_size is not None and len(self) >= self.max_size:
            raise ServiceUnavailable("waiting pool is full, try again later")
        entry = self._new_entry(user_id)
        if not self._add(entry):
            raise AlreadyWaiting(user_id)
        return entry

    def _new_entry(self, user_id: str) -> WaitingEntry:
        return WaitingEntry(user_id=user_id, enqueued_at=self.clock())

    def _add(self, entry: WaitingEntry) -> bool:
        raise NotImplementedError

    def dequeue_oldest(self, excluding=None) -> Optional[WaitingEntry]:
        raise NotImplementedError

    def remove(self, user_id) -> bool:
        raise NotImplementedError

    def get(self, user_id) -> Optional[WaitingEntry]:
        raise NotImplementedError

    def restore(self, entry: WaitingEntry) -> bool:
        """dequeue 했던 entry 를 원래 순서(enqueued_at) 그대로 되돌림"""
        raise NotImplementedError

    def remove_stale(self, older_than) -> List[WaitingEntry]:
        raise NotImplementedError

    def __len__(self):
        raise NotImplementedError

    def __contains__(self, user_id):
        return self.get(user_id) is not None


class InMemoryWaitPool(WaitPool):
    def __init__(self, store=None, clock=timezone.now, max_size=None):
        super().__init__(store=store, clock=clock, max_size=max_size)
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, WaitingEntry]" = OrderedDict()

    def _add(self, entry):
        with self._lock:
            if entry.user_id in self._entries:
                return False
            self._entries[entry.user_id] = entry
            return True

    def dequeue_oldest(self, excluding=None):
        excluding = str(excluding) if excluding is not None else None
        with self._lock:
            for user_id in self._entries:
                if user_id != excluding:
                    return self._entries.pop(user_id)
            return None

    def remove(self, user_id):
        with self._lock:
            return self._entries.pop(str(user_id), None) is not None

    def get(self, user_id):
        with self._lock:
            return self._entries.get(str(user_id))

    def restore(self, entry):
        with self._lock:
            if entry.user_id in self._entries:
                return False
            self._entries[entry.user_id] = entry
            ordered = sorted(self._entries.values(), key=lambda e: e.enqueued_at)
            self._entries = OrderedDict((e.user_id, e) for e in ordered)
            return True

    def remove_stale(self, older_than):
        with self._lock:
            stale = [e for e in self._entries.values() if e.enqueued_at < older_than]
            for e in stale:
                del self._entries[e.user_id]
            return stale

    def __len__(self):
        with self._lock:
            return len(self._entries)

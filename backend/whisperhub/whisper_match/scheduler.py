# whisperhub/whisper_match/scheduler.py
import threading
from typing import Callable, Dict

from loguru import logger


class ExpiryScheduler:
    """key 하나당 예약 하나. 같은 key로 다시 예약하면 이전 것은 취소됨"""

    def schedule(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def cancel(self, key: str) -> bool:
        raise NotImplementedError

    def shutdown(self) -> None:
        pass


class ThreadingScheduler(ExpiryScheduler):
    def __init__(self):
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    def schedule(self, key, delay, callback):
        timer = threading.Timer(max(0.0, delay), self._fire, args=(key, callback))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _fire(self, key, callback):
        with self._lock:
            if self._timers.get(key) is threading.current_thread():
                del self._timers[key]
        try:
            callback()
        except Exception:
            logger.exception("scheduled callback {} failed", key)

    def cancel(self, key):
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self):
        with self._lock:
            return sorted(self._timers)

    def shutdown(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

# whisperhub/whisper_match/retry.py
import time

from loguru import logger

from .errors import ServiceUnavailable, StoreUnavailable


class StoreRetry:
    """
    StoreUnavailable만 재시도한다. 도메인 에러(SessionNotFound 등)는 그대로 올려보냄.
    attempts 소진 시 ServiceUnavailable.
    """

    def __init__(self, attempts: int = 3, delay: float = 0.05, sleep=time.sleep):
        self.attempts = max(1, int(attempts))
        self.delay = delay
        self.sleep = sleep

    def __call__(self, fn, *args, **kwargs):
        delay = self.delay
        for attempt in range(1, self.attempts + 1):
            try:
                return fn(*args, **kwargs)
            except StoreUnavailable as e:
                if attempt == self.attempts:
                    logger.error(
                        "store unavailable after {} attempts ({}): {}",
                        attempt,
                        getattr(fn, "__name__", fn),
                        e,
                    )
                    raise ServiceUnavailable() from e
                logger.warning(
                    "store unavailable ({}), retry {}/{} in {:.2f}s",
                    e,
                    attempt,
                    self.attempts,
                    delay,
                )
                if delay:
                    self.sleep(delay)
                delay *= 2

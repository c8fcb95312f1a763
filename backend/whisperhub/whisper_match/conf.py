# whisperhub/whisper_match/conf.py
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

DEFAULT_SESSION_TTL_SEC = 60 * 5  # 5분

SESSION_BACKENDS = ("memory", "database")
POOL_BACKENDS = ("memory", "redis")

# settings 키 -> camelCase 별칭 (클라이언트 문서 표기)
_ALIASES = {
    "SESSION_TTL_SECONDS": "sessionTTLSeconds",
    "WAIT_TIMEOUT_SECONDS": "waitTimeoutSeconds",
}


@dataclass(frozen=True)
class MatchSettings:
    session_ttl_seconds: float = DEFAULT_SESSION_TTL_SEC
    wait_timeout_seconds: Optional[float] = None
    max_waiting: Optional[int] = None
    max_messages: int = 200
    max_message_length: int = 1000
    session_backend: str = "database"
    pool_backend: str = "memory"
    store_retry_attempts: int = 3
    store_retry_delay_seconds: float = 0.05
    terminal_retention_seconds: float = 60 * 60
    sweep_interval_seconds: float = 60

    def __post_init__(self):
        if self.session_ttl_seconds <= 0:
            raise ImproperlyConfigured("WHISPER_MATCH SESSION_TTL_SECONDS must be > 0")
        if self.wait_timeout_seconds is not None and self.wait_timeout_seconds <= 0:
            raise ImproperlyConfigured("WHISPER_MATCH WAIT_TIMEOUT_SECONDS must be > 0")
        if self.max_waiting is not None and self.max_waiting <= 0:
            raise ImproperlyConfigured("WHISPER_MATCH MAX_WAITING must be > 0")
        if self.session_backend not in SESSION_BACKENDS:
            raise ImproperlyConfigured(
                f"unknown WHISPER_MATCH SESSION_BACKEND {self.session_backend!r}"
            )
        if self.pool_backend not in POOL_BACKENDS:
            raise ImproperlyConfigured(
                f"unknown WHISPER_MATCH POOL_BACKEND {self.pool_backend!r}"
            )
        if self.sweep_interval_seconds <= 0:
            raise ImproperlyConfigured("WHISPER_MATCH SWEEP_INTERVAL_SECONDS must be > 0")
        if self.store_retry_attempts < 1:
            raise ImproperlyConfigured("WHISPER_MATCH STORE_RETRY_ATTEMPTS must be >= 1")

    @classmethod
    def from_dict(cls, raw: dict) -> "MatchSettings":
        raw = dict(raw or {})

        def pick(key, default=None):
            alias = _ALIASES.get(key)
            if key in raw:
                return raw[key]
            if alias and alias in raw:
                return raw[alias]
            return default

        def optional_number(value, cast):
            if value in (None, "", 0, "0"):
                return None
            return cast(value)

        return cls(
            session_ttl_seconds=float(pick("SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SEC)),
            wait_timeout_seconds=optional_number(pick("WAIT_TIMEOUT_SECONDS"), float),
            max_waiting=optional_number(pick("MAX_WAITING"), int),
            max_messages=int(pick("MAX_MESSAGES", 200)),
            max_message_length=int(pick("MAX_MESSAGE_LENGTH", 1000)),
            session_backend=str(pick("SESSION_BACKEND", "database")).lower(),
            pool_backend=str(pick("POOL_BACKEND", "memory")).lower(),
            store_retry_attempts=int(pick("STORE_RETRY_ATTEMPTS", 3)),
            store_retry_delay_seconds=float(pick("STORE_RETRY_DELAY_SECONDS", 0.05)),
            terminal_retention_seconds=float(pick("TERMINAL_RETENTION_SECONDS", 3600)),
            sweep_interval_seconds=float(pick("SWEEP_INTERVAL_SECONDS", 60)),
        )


def get_match_settings() -> MatchSettings:
    return MatchSettings.from_dict(getattr(settings, "WHISPER_MATCH", {}))

# whisperhub/whisper_match/lifecycle.py
import functools
from datetime import timedelta
from typing import Optional

from django.utils import timezone
from loguru import logger

from .domain import MatchMessage, MatchSession, SessionState, new_session_id
from .errors import InvalidMessage, NotAParticipant, SessionNotActive, SessionNotFound
from .retry import StoreRetry

EVENT_MESSAGE = "message"
EVENT_PARTNER_LEFT = "partner-left"
EVENT_EXPIRED = "expired"


def _noop_notify(user_id, event_type, match_id, payload):
    return None


def expiry_key(session_id) -> str:
    return f"expire:{session_id}"


class SessionLifecycle:
    """
    ACTIVE -> EXPIRED (시간) / ACTIVE -> LEFT (참가자가 나감). 둘 다 끝, 되돌릴 수 없음.

    세션 state 변경과 메시지 추가는 여기서만 한다. 모든 쓰기는 store.session_lock
    안에서 하므로 같은 세션에 대한 요청만 직렬화되고 다른 세션은 막지 않는다.
    만료는 타이머 + 접근할 때마다 검사(lazy) 둘 다 하므로 타이머가 늦어도
    expiresAt 이후 메시지는 들어가지 않는다.
    """

    def __init__(
        self,
        store,
        scheduler=None,
        notify=None,
        *,
        session_ttl_seconds: float = 300,
        max_messages: int = 200,
        max_message_length: int = 1000,
        terminal_retention_seconds: float = 3600,
        retry: Optional[StoreRetry] = None,
        clock=timezone.now,
    ):
        self.store = store
        self.scheduler = scheduler
        self.notify = notify or _noop_notify
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.max_messages = max_messages
        self.max_message_length = max_message_length
        self.terminal_retention = timedelta(seconds=terminal_retention_seconds)
        self.retry = retry or StoreRetry()
        self.clock = clock

    # ---- create ----

    def open_session(self, participant_a, participant_b) -> MatchSession:
        now = self.clock()
        session = MatchSession(
            session_id=new_session_id(),
            participant_a=str(participant_a),
            participant_b=str(participant_b),
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        self.retry(self.store.create_session, session)
        self._schedule_expiry(session)
        logger.info(
            "whisper match {} opened ({} <-> {}), expires {}",
            session.session_id,
            session.participant_a,
            session.participant_b,
            session.expires_at.isoformat(),
        )
        return session

    def _schedule_expiry(self, session: MatchSession):
        if self.scheduler is None:
            return
        delay = (session.expires_at - self.clock()).total_seconds()
        session_id = session.session_id
        self.scheduler.schedule(
            expiry_key(session_id), delay, lambda: self.expire(session_id)
        )

    # ---- read ----

    def active_session_for(self, user_id) -> Optional[MatchSession]:
        session = self.retry(self.store.get_active_session_for_user, str(user_id))
        if session is not None and session.is_overdue(self.clock()):
            self.expire(session.session_id)
            return None
        return session

    def get_session(self, session_id, user_id) -> MatchSession:
        session = self.retry(self.store.get_session, str(session_id))
        if session is None:
            raise SessionNotFound()
        if not session.has_participant(user_id):
            self._log_intruder(session_id, user_id, "read")
            raise NotAParticipant()
        if session.is_overdue(self.clock()) and self.expire(session.session_id):
            session = self.retry(self.store.get_session, str(session_id)) or session
        return session

    # ---- message ----

    def send_message(self, session_id, sender_id, content) -> MatchMessage:
        content = self._clean(content)
        return self.retry(self._send_locked, str(session_id), str(sender_id), content)

    def _clean(self, content) -> str:
        if not isinstance(content, str):
            raise InvalidMessage("content must be a string")
        content = content.strip()
        if not content:
            raise InvalidMessage("content is required")
        if len(content) > self.max_message_length:
            raise InvalidMessage(
                f"content is longer than {self.max_message_length} characters"
            )
        return content

    def _send_locked(self, session_id, sender_id, content):
        with self.store.session_lock(session_id):
            session = self._load_active(session_id, sender_id, "message")
            if session is not None:
                if len(session.messages) >= self.max_messages:
                    raise InvalidMessage("message limit reached for this match")

                message = self.store.append_message(
                    session_id,
                    MatchMessage(sender=sender_id, content=content, sent_at=self.clock()),
                )
                if message is not None:
                    # 락 안에서 예약해야 서버에서 완료된 순서대로 상대에게 간다
                    self._notify_after_commit(
                        session.other_participant(sender_id),
                        EVENT_MESSAGE,
                        session_id,
                        message.to_dict(),
                    )
                    return message
        # 방금 만료 처리됨. 락(트랜잭션) 밖에서 올려야 만료 기록이 롤백되지 않음
        raise SessionNotActive()

    # ---- leave / expire ----

    def leave(self, session_id, user_id) -> MatchSession:
        return self.retry(self._leave_locked, str(session_id), str(user_id))

    def _leave_locked(self, session_id, user_id):
        with self.store.session_lock(session_id):
            session = self._load_active(session_id, user_id, "leave")
            ended = None
            if session is not None:
                ended = self.store.mark_terminal(
                    session_id,
                    SessionState.LEFT,
                    ended_at=self.clock(),
                    ended_by=user_id,
                )
            if ended is not None:
                self._cancel_expiry(session_id)
                logger.info("whisper match {} left by {}", session_id, user_id)

                partner = session.other_participant(user_id)
                self._notify_after_commit(
                    partner, EVENT_PARTNER_LEFT, session_id, {"userId": user_id}
                )
                return ended
        raise SessionNotActive()

    def expire(self, session_id, now=None) -> bool:
        """타이머/스윕용. 아직 ACTIVE 이고 시간이 지났을 때만 EXPIRED 로 바꿈"""
        return self.retry(self._expire_checked, str(session_id), now)

    def _expire_checked(self, session_id, now=None):
        with self.store.session_lock(session_id):
            session = self.store.get_session(session_id)
            if session is None or not session.is_active:
                return False
            now = now or self.clock()
            if now < session.expires_at:
                # 타이머가 일찍 울린 경우 다시 예약
                self._schedule_expiry(session)
                return False
            return self._expire_locked(session, now) is not None

    def _expire_locked(self, session: MatchSession, now) -> Optional[MatchSession]:
        ended = self.store.mark_terminal(
            session.session_id, SessionState.EXPIRED, ended_at=now
        )
        if ended is None:
            return None
        self._cancel_expiry(session.session_id)
        logger.info("whisper match {} expired", session.session_id)

        payload = {"match": ended.to_dict(include_messages=False)}
        for user_id in ended.participants:
            self._notify_after_commit(user_id, EVENT_EXPIRED, ended.session_id, payload)
        return ended

    def _notify_after_commit(self, user_id, event_type, session_id, payload):
        self.store.on_commit(
            functools.partial(self.notify, user_id, event_type, session_id, payload)
        )

    def _cancel_expiry(self, session_id):
        if self.scheduler is not None:
            self.scheduler.cancel(expiry_key(session_id))

    def _load_active(self, session_id, user_id, action) -> Optional[MatchSession]:
        """
        세션 락을 잡은 상태에서 호출.
        없음 -> SessionNotFound, 끝남 -> SessionNotActive,
        참가자 아님 -> NotAParticipant, 방금 lazy 만료시킴 -> None
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound()
        now = self.clock()
        if session.is_overdue(now):
            self._expire_locked(session, now)
            return None
        if not session.is_active:
            raise SessionNotActive()
        if not session.has_participant(user_id):
            self._log_intruder(session_id, user_id, action)
            raise NotAParticipant()
        return session

    def _log_intruder(self, session_id, user_id, action):
        logger.warning(
            "user {} tried to {} whisper match {} without being a participant",
            user_id,
            action,
            session_id,
        )

    # ---- sweep ----

    def sweep(self, now=None):
        """
        타이머를 잃어버린 세션(재시작, 다른 인스턴스) 만료 + 오래된 종료 세션 삭제
        """
        now = now or self.clock()
        expired = 0
        for session_id in self.retry(self.store.list_overdue, now):
            if self.expire(session_id, now=now):
                expired += 1
        deleted = self.retry(self.store.delete_expired, now - self.terminal_retention)
        if expired or deleted:
            logger.info("whisper match sweep: expired={} deleted={}", expired, deleted)
        return {"expired": expired, "deleted": deleted}

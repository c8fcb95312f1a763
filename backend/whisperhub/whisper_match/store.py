# whisperhub/whisper_match/store.py
import functools
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from django.db import IntegrityError, InterfaceError, OperationalError, transaction
from django.db.models import Max

from .domain import MatchMessage, MatchSession, SessionState
from .errors import AlreadyInSession, StoreUnavailable
from .models import ActiveWhisperMatch, WhisperMatch, WhisperMatchMessage


class SessionStore:
    """
    세션 레코드 + userId -> 진행중 sessionId 포인터.

    상태(state) 변경과 메시지 추가는 SessionLifecycle만 호출한다.
    mark_terminal / append_message 는 ACTIVE 일 때만 쓰는 조건부 쓰기라서
    인스턴스가 여러 개여도 두 번 끝나거나 끝난 세션에 메시지가 붙지 않는다.
    """

    def create_session(self, session: MatchSession) -> None:
        raise NotImplementedError

    def get_session(self, session_id: str) -> Optional[MatchSession]:
        raise NotImplementedError

    def get_active_session_for_user(self, user_id: str) -> Optional[MatchSession]:
        raise NotImplementedError

    def mark_terminal(
        self,
        session_id: str,
        state: SessionState,
        *,
        ended_at: datetime,
        ended_by: Optional[str] = None,
    ) -> Optional[MatchSession]:
        raise NotImplementedError

    def append_message(
        self, session_id: str, message: MatchMessage
    ) -> Optional[MatchMessage]:
        raise NotImplementedError

    def delete_expired(self, older_than: datetime) -> int:
        raise NotImplementedError

    def list_overdue(self, now: datetime) -> List[str]:
        raise NotImplementedError

    def session_lock(self, session_id: str):
        raise NotImplementedError

    def on_commit(self, fn) -> None:
        """session_lock 안에서 한 쓰기가 확정된 뒤 실행. 트랜잭션 없는 저장소는 바로 실행"""
        fn()


class InMemorySessionStore(SessionStore):
    """단일 프로세스용. 테스트에서도 이걸 씀"""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, MatchSession] = {}
        self._active: Dict[str, str] = {}
        # session_id -> [lock, 쓰는 중인 스레드 수]
        self._session_locks: Dict[str, list] = {}

    def create_session(self, session):
        with self._lock:
            for user_id in session.participants:
                if user_id in self._active:
                    raise AlreadyInSession(user_id)
            if session.session_id in self._sessions:
                raise ValueError(f"duplicate session id {session.session_id}")
            self._sessions[session.session_id] = session.snapshot()
            for user_id in session.participants:
                self._active[user_id] = session.session_id

    def get_session(self, session_id):
        with self._lock:
            session = self._sessions.get(str(session_id))
            return session.snapshot() if session else None

    def get_active_session_for_user(self, user_id):
        with self._lock:
            session_id = self._active.get(str(user_id))
            if session_id is None:
                return None
            return self._sessions[session_id].snapshot()

    def mark_terminal(self, session_id, state, *, ended_at, ended_by=None):
        state = SessionState(state)
        if not state.is_terminal:
            raise ValueError(f"{state} is not a terminal state")
        with self._lock:
            session = self._sessions.get(str(session_id))
            if session is None or not session.is_active:
                return None
            session.state = state
            session.ended_at = ended_at
            session.ended_by = str(ended_by) if ended_by is not None else None
            for user_id in session.participants:
                if self._active.get(user_id) == session.session_id:
                    del self._active[user_id]
            return session.snapshot()

    def append_message(self, session_id, message):
        with self._lock:
            session = self._sessions.get(str(session_id))
            if session is None or not session.is_active:
                return None
            stored = MatchMessage(
                sender=message.sender,
                content=message.content,
                sent_at=message.sent_at,
                seq=len(session.messages) + 1,
            )
            session.messages.append(stored)
            return stored

    def delete_expired(self, older_than):
        with self._lock:
            doomed = [
                sid
                for sid, s in self._sessions.items()
                if not s.is_active and s.ended_at and s.ended_at < older_than
            ]
            for sid in doomed:
                del self._sessions[sid]
                entry = self._session_locks.get(sid)
                if entry is not None and entry[1] == 0:
                    del self._session_locks[sid]
            return len(doomed)

    def list_overdue(self, now):
        with self._lock:
            return [sid for sid, s in self._sessions.items() if s.is_overdue(now)]

    @contextmanager
    def session_lock(self, session_id):
        session_id = str(session_id)
        with self._lock:
            entry = self._session_locks.get(session_id)
            if entry is None:
                entry = self._session_locks[session_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                # 없는 세션 id 로 들어온 요청이 락을 남기지 않게
                if entry[1] == 0 and session_id not in self._sessions:
                    self._session_locks.pop(session_id, None)


def _translate_db_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(str(e)) from e

    return wrapper


def _parse_uuid(value) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class DatabaseSessionStore(SessionStore):
    """
    Django ORM 저장소. 여러 프로세스가 같은 DB를 보면
    - ActiveWhisperMatch(user PK) unique 제약이 "한 사람당 ACTIVE 하나"를 보장
    - state="ACTIVE" 조건부 UPDATE가 종료 전이를 한 번만 일어나게 함
    - select_for_update 로 세션 단위 잠금
    """

    def _to_domain(self, m: WhisperMatch, with_messages: bool = True) -> MatchSession:
        messages = []
        if with_messages:
            messages = [
                MatchMessage(
                    sender=str(msg.sender_id),
                    content=msg.content,
                    sent_at=msg.sent_at,
                    seq=msg.seq,
                )
                for msg in m.messages.all()
            ]
        return MatchSession(
            session_id=str(m.match_id),
            participant_a=str(m.user_a_id),
            participant_b=str(m.user_b_id),
            created_at=m.matched_at,
            expires_at=m.expires_at,
            state=SessionState(m.state),
            messages=messages,
            ended_at=m.ended_at,
            ended_by=str(m.ended_by_id) if m.ended_by_id is not None else None,
        )

    @_translate_db_errors
    def create_session(self, session):
        with transaction.atomic():
            match = WhisperMatch.objects.create(
                match_id=uuid.UUID(session.session_id),
                user_a_id=session.participant_a,
                user_b_id=session.participant_b,
                state=session.state.value,
                matched_at=session.created_at,
                expires_at=session.expires_at,
            )
            for user_id in session.participants:
                try:
                    with transaction.atomic():
                        ActiveWhisperMatch.objects.create(user_id=user_id, match=match)
                except IntegrityError:
                    # 바깥 atomic 까지 롤백됨
                    raise AlreadyInSession(user_id)

    @_translate_db_errors
    def get_session(self, session_id):
        key = _parse_uuid(session_id)
        if key is None:
            return None
        m = WhisperMatch.objects.filter(match_id=key).first()
        return self._to_domain(m) if m else None

    @_translate_db_errors
    def get_active_session_for_user(self, user_id):
        pointer = (
            ActiveWhisperMatch.objects.select_related("match")
            .filter(user_id=user_id)
            .first()
        )
        return self._to_domain(pointer.match) if pointer else None

    @_translate_db_errors
    def mark_terminal(self, session_id, state, *, ended_at, ended_by=None):
        state = SessionState(state)
        if not state.is_terminal:
            raise ValueError(f"{state} is not a terminal state")
        key = _parse_uuid(session_id)
        if key is None:
            return None
        with transaction.atomic():
            updated = WhisperMatch.objects.filter(match_id=key, state="ACTIVE").update(
                state=state.value, ended_at=ended_at, ended_by_id=ended_by
            )
            if not updated:
                return None
            ActiveWhisperMatch.objects.filter(match__match_id=key).delete()
        return self.get_session(key)

    @_translate_db_errors
    def append_message(self, session_id, message):
        key = _parse_uuid(session_id)
        if key is None:
            return None
        with transaction.atomic():
            match = (
                WhisperMatch.objects.select_for_update()
                .filter(match_id=key, state="ACTIVE")
                .first()
            )
            if match is None:
                return None
            last_seq = match.messages.aggregate(last=Max("seq"))["last"] or 0
            row = WhisperMatchMessage.objects.create(
                match=match,
                sender_id=message.sender,
                content=message.content,
                sent_at=message.sent_at,
                seq=last_seq + 1,
            )
        return MatchMessage(
            sender=str(row.sender_id),
            content=row.content,
            sent_at=row.sent_at,
            seq=row.seq,
        )

    @_translate_db_errors
    def delete_expired(self, older_than):
        _, per_model = (
            WhisperMatch.objects.exclude(state="ACTIVE")
            .filter(ended_at__lt=older_than)
            .delete()
        )
        return per_model.get(WhisperMatch._meta.label, 0)

    @_translate_db_errors
    def list_overdue(self, now):
        return [
            str(mid)
            for mid in WhisperMatch.objects.filter(
                state="ACTIVE", expires_at__lte=now
            ).values_list("match_id", flat=True)
        ]

    @contextmanager
    def session_lock(self, session_id):
        key = _parse_uuid(session_id)
        # commit 이 실패해도(__exit__) StoreUnavailable 로 바꿔야 재시도됨
        try:
            with transaction.atomic():
                if key is not None:
                    # 같은 세션에 대한 다른 요청은 여기서 대기, 다른 세션은 영향 없음
                    list(
                        WhisperMatch.objects.select_for_update()
                        .filter(match_id=key)
                        .values_list("id", flat=True)
                    )
                yield
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(str(e)) from e

    def on_commit(self, fn):
        # 롤백된 메시지/종료가 상대에게 push 되지 않게
        transaction.on_commit(fn)

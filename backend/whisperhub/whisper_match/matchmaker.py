# whisperhub/whisper_match/matchmaker.py
import threading
from typing import Optional

from loguru import logger

from .domain import JoinResult, WaitingEntry
from .errors import AlreadyInSession, AlreadyWaiting
from .retry import StoreRetry

EVENT_MATCHED = "matched"
EVENT_WAIT_TIMEOUT = "wait-timeout"


def wait_key(user_id) -> str:
    return f"wait:{user_id}"


class Matchmaker:
    """
    join 한 번 = pairing lock 안에서
      1) 진행중 세션 확인
      2) 가장 오래 기다린 사람 꺼내기
      3) 세션 생성 + 두 사람 포인터 설정
    을 한 덩어리로 처리. 같은 대기자를 두 join 이 동시에 가져갈 수 없음.

    lock_factory 는 with 문에 쓸 객체를 돌려주는 callable.
    단일 프로세스면 threading.Lock, 여러 프로세스면 RedisPairingLock.
    """

    def __init__(
        self,
        pool,
        lifecycle,
        scheduler=None,
        notify=None,
        *,
        wait_timeout_seconds: Optional[float] = None,
        lock_factory=None,
        retry: Optional[StoreRetry] = None,
    ):
        self.pool = pool
        self.lifecycle = lifecycle
        self.scheduler = scheduler
        self.notify = notify or lifecycle.notify
        self.wait_timeout_seconds = wait_timeout_seconds
        self.retry = retry or StoreRetry()
        if lock_factory is None:
            local_lock = threading.Lock()
            lock_factory = lambda: local_lock  # noqa: E731
        self.lock_factory = lock_factory

    def join(self, user_id) -> JoinResult:
        user_id = str(user_id)
        result = self.retry(self._join_locked, user_id)

        if result.matched:
            session = result.session
            partner_id = session.other_participant(user_id)
            self._cancel_wait_timer(partner_id)
            logger.info("user {} matched with {} ({})", user_id, partner_id, session.session_id)
            payload = {"match": session.to_dict()}
            # 호출한 쪽은 응답으로도 받지만 다른 탭/소켓을 위해 둘 다 보냄
            self.notify(partner_id, EVENT_MATCHED, session.session_id, payload)
            self.notify(user_id, EVENT_MATCHED, session.session_id, payload)
        else:
            logger.info("user {} is waiting for a whisper match", user_id)
            self._arm_wait_timer(result.entry)
        return result

    def _join_locked(self, user_id) -> JoinResult:
        with self.lock_factory():
            active = self.lifecycle.active_session_for(user_id)
            if active is not None:
                raise AlreadyInSession(user_id, active)
            if self.pool.get(user_id) is not None:
                raise AlreadyWaiting(user_id)

            while True:
                partner = self.pool.dequeue_oldest(excluding=user_id)
                if partner is None:
                    entry = self.pool.enqueue(user_id)
                    return JoinResult(JoinResult.WAITING, entry=entry)

                try:
                    session = self.lifecycle.open_session(partner.user_id, user_id)
                except AlreadyInSession as e:
                    if e.user_id == partner.user_id:
                        # 다른 인스턴스에서 이미 매칭된 대기자. 버리고 다음 사람
                        logger.warning(
                            "dropping stale waiting entry of {} (already in a match)",
                            partner.user_id,
                        )
                        self._cancel_wait_timer(partner.user_id)
                        continue
                    self._put_back(partner)
                    raise
                except Exception:
                    self._put_back(partner)
                    raise
                return JoinResult(JoinResult.MATCHED, session=session)

    def _put_back(self, entry: WaitingEntry):
        # 세션을 못 만들었으면 꺼냈던 대기자를 원래 자리로
        if self.pool.restore(entry):
            logger.warning("restored waiting entry of {} after failed match", entry.user_id)

    def cancel(self, user_id) -> bool:
        user_id = str(user_id)
        with self.lock_factory():
            removed = self.retry(self.pool.remove, user_id)
        self._cancel_wait_timer(user_id)
        if removed:
            logger.info("user {} stopped waiting for a whisper match", user_id)
        return removed

    def waiting_entry(self, user_id) -> Optional[WaitingEntry]:
        return self.retry(self.pool.get, str(user_id))

    # ---- wait timeout ----

    def _arm_wait_timer(self, entry: Optional[WaitingEntry]):
        if entry is None or self.scheduler is None or not self.wait_timeout_seconds:
            return
        self.scheduler.schedule(
            wait_key(entry.user_id),
            self.wait_timeout_seconds,
            lambda: self.expire_waiting(entry.user_id, entry.enqueued_at),
        )

    def _cancel_wait_timer(self, user_id):
        if self.scheduler is not None:
            self.scheduler.cancel(wait_key(user_id))

    def expire_waiting(self, user_id, enqueued_at) -> bool:
        """타이머를 건 그 대기 entry 가 아직 남아 있을 때만 제거"""
        user_id = str(user_id)
        with self.lock_factory():
            current = self.retry(self.pool.get, user_id)
            if current is None or current.enqueued_at != enqueued_at:
                return False
            removed = self.retry(self.pool.remove, user_id)
        if removed:
            logger.info("user {} waited too long, removed from whisper match pool", user_id)
            self.notify(user_id, EVENT_WAIT_TIMEOUT, None, {})
        return removed

    def sweep_stale(self, older_than):
        with self.lock_factory():
            stale = self.retry(self.pool.remove_stale, older_than)
        for entry in stale:
            self._cancel_wait_timer(entry.user_id)
            self.notify(entry.user_id, EVENT_WAIT_TIMEOUT, None, {})
        if stale:
            logger.info("removed {} stale waiting entries", len(stale))
        return stale

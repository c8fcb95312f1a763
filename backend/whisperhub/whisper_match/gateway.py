# whisperhub/whisper_match/gateway.py
from datetime import timedelta

from asgiref.sync import async_to_sync
from loguru import logger

from .conf import MatchSettings
from .errors import AlreadyInSession, AlreadyWaiting
from .lifecycle import SessionLifecycle
from .matchmaker import Matchmaker

EVENT_CONNECTED = "connected"
SWEEP_KEY = "sweep"


def user_group(user_id) -> str:
    # socket.io 의 "유저 id 이름의 room" 과 같은 역할
    return f"whisper_user_{user_id}"


def envelope(event_type, match_id=None, payload=None):
    return {"type": event_type, "matchId": match_id, "payload": payload or {}}


class GatewayAdapter:
    """
    HTTP/WS 요청 -> Matchmaker / SessionLifecycle 호출,
    코어가 보내는 이벤트 -> 참가자 채널(group) 로 push.

    코어는 notify(user_id, event_type, match_id, payload) 만 알고
    channels 는 여기서만 다룬다.
    """

    def __init__(
        self,
        store,
        pool,
        scheduler=None,
        match_settings=None,
        *,
        channel_layer=None,
        lock_factory=None,
        retry=None,
        clock=None,
    ):
        self.match_settings = match_settings or MatchSettings()
        self.channel_layer = channel_layer
        self.scheduler = scheduler
        self._stopped = False

        lifecycle_kwargs = {}
        if clock is not None:
            lifecycle_kwargs["clock"] = clock
        self.lifecycle = SessionLifecycle(
            store,
            scheduler,
            self.notify,
            session_ttl_seconds=self.match_settings.session_ttl_seconds,
            max_messages=self.match_settings.max_messages,
            max_message_length=self.match_settings.max_message_length,
            terminal_retention_seconds=self.match_settings.terminal_retention_seconds,
            retry=retry,
            **lifecycle_kwargs,
        )
        self.matchmaker = Matchmaker(
            pool,
            self.lifecycle,
            scheduler,
            self.notify,
            wait_timeout_seconds=self.match_settings.wait_timeout_seconds,
            lock_factory=lock_factory,
            retry=retry,
        )

    # ---- outbound ----

    def notify(self, user_id, event_type, match_id=None, payload=None):
        message = envelope(event_type, match_id, payload)
        if self.channel_layer is None:
            logger.debug("no channel layer, dropping {} for user {}", event_type, user_id)
            return False
        try:
            async_to_sync(self.channel_layer.group_send)(
                user_group(user_id),
                {"type": "whisper.event", "envelope": message},  # handler: whisper_event
            )
        except Exception:
            # 전달 실패가 세션 상태 전이를 되돌리면 안 됨
            logger.exception("failed to deliver {} to user {}", event_type, user_id)
            return False
        return True

    # ---- inbound ----

    def join(self, user_id):
        try:
            return self.matchmaker.join(user_id).to_dict()
        except AlreadyWaiting:
            # 기존 클라이언트 계약: 중복 join 은 그냥 waiting
            return {"status": "waiting"}
        except AlreadyInSession as e:
            # 페이지 들어올 때마다 join 하므로 진행중 세션을 그대로 돌려줌
            extra = e.extra()
            if extra is not None:
                return extra
            session = self.lifecycle.active_session_for(user_id)
            if session is None:
                raise
            return {"status": "matched", "match": session.to_dict()}

    def send_message(self, user_id, match_id, content):
        message = self.lifecycle.send_message(match_id, user_id, content)
        return message.to_dict()

    def leave(self, user_id, match_id=None):
        if not match_id:
            removed = self.matchmaker.cancel(user_id)
            return {"message": "Left queue", "wasWaiting": removed}

        # 혹시 남아있는 대기 entry 도 같이 정리
        self.matchmaker.cancel(user_id)
        session = self.lifecycle.leave(match_id, user_id)
        return {"message": "Left match", "match": session.to_dict(include_messages=False)}

    def current(self, user_id):
        session = self.lifecycle.active_session_for(user_id)
        if session is not None:
            return {"status": "matched", "match": session.to_dict()}
        entry = self.matchmaker.waiting_entry(user_id)
        if entry is not None:
            return {"status": "waiting", "enqueuedAt": entry.to_dict()["enqueuedAt"]}
        return {"status": "idle"}

    def get_match(self, user_id, match_id):
        return self.lifecycle.get_session(match_id, user_id).to_dict()

    def sweep(self, now=None, stale_before=None):
        result = self.lifecycle.sweep(now)
        stale = []
        if stale_before is not None:
            stale = self.matchmaker.sweep_stale(stale_before)
        result["staleWaiting"] = len(stale)
        return result

    def start_periodic_sweep(self, interval_seconds):
        """
        memory 백엔드는 cron 커맨드(다른 프로세스)가 못 건드리므로
        같은 프로세스 안에서 주기적으로 sweep
        """
        if self.scheduler is None:
            return False

        def run():
            try:
                now = self.lifecycle.clock()
                wait_timeout = self.match_settings.wait_timeout_seconds
                stale_before = now - timedelta(seconds=wait_timeout) if wait_timeout else None
                self.sweep(now=now, stale_before=stale_before)
            finally:
                if not self._stopped:
                    self.scheduler.schedule(SWEEP_KEY, interval_seconds, run)

        self.scheduler.schedule(SWEEP_KEY, interval_seconds, run)
        return True

    def shutdown(self):
        self._stopped = True
        if self.scheduler is not None:
            self.scheduler.shutdown()

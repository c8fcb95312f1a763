from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from loguru import logger

from .errors import WhisperMatchError
from .gateway import EVENT_CONNECTED, envelope, user_group
from .services import get_gateway


class WhisperMatchConsumer(AsyncJsonWebsocketConsumer):
    """
    Whisper Match 실시간 채널
      - URL: ws://<host>/ws/whisper-match/?token=<jwt>
      - 서버 -> 클라 Envelope:
        {
          "type": "matched" | "message" | "partner-left" | "expired" | "wait-timeout" | "connected",
          "matchId": "...",
          "payload": {...}
        }
      - 클라 -> 서버 (HTTP 대신 써도 됨):
        {"type": "join"} / {"type": "message", "matchId", "content"}
        {"type": "leave", "matchId"} / {"type": "current"}
        응답은 {"type": "ack", "action", "payload"} 또는 {"type": "error", "action", "error"}
    """

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            # 4401 Unauthorized (앱에서 처리하기 쉬움)
            await self.close(code=4401)
            return

        self.user_id = str(user.id)
        self.group_name = user_group(self.user_id)

        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        # 재접속 시 진행중 세션/대기 상태 바로 알려줌
        try:
            snapshot = await database_sync_to_async(get_gateway().current)(self.user_id)
        except WhisperMatchError as e:
            await self._send_error("current", e)
            return
        match = snapshot.get("match") or {}
        await self.send_json(envelope(EVENT_CONNECTED, match.get("matchId"), snapshot))

    async def disconnect(self, close_code):
        # connect 실패한 케이스 방어
        group = getattr(self, "group_name", None)
        if not group:
            return
        await self.channel_layer.group_discard(group, self.channel_name)

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            return
        action = content.get("type")
        gateway = get_gateway()
        match_id = content.get("matchId") or content.get("sessionId")

        handlers = {
            "join": lambda: gateway.join(self.user_id),
            "message": lambda: gateway.send_message(
                self.user_id, match_id, content.get("content")
            ),
            "leave": lambda: gateway.leave(self.user_id, match_id),
            "current": lambda: gateway.current(self.user_id),
        }
        handler = handlers.get(action)
        if handler is None:
            await self.send_json(
                {
                    "type": "error",
                    "action": action,
                    "error": {"code": "UNKNOWN_ACTION", "message": "unknown action"},
                }
            )
            return
        if action == "message" and not match_id:
            await self.send_json(
                {
                    "type": "error",
                    "action": action,
                    "error": {"code": "VALIDATION_ERROR", "message": "matchId is required"},
                }
            )
            return

        try:
            result = await database_sync_to_async(handler)()
        except WhisperMatchError as e:
            await self._send_error(action, e)
            return
        await self.send_json({"type": "ack", "action": action, "payload": result})

    async def _send_error(self, action, error):
        logger.debug("ws action {} by {} failed: {}", action, self.user_id, error.code)
        await self.send_json(
            {
                "type": "error",
                "action": action,
                "error": {"code": error.code, "message": error.message},
            }
        )

    # ---- group handlers ----

    async def whisper_event(self, event):
        await self.send_json(event.get("envelope") or {})

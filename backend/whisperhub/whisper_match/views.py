# whisperhub/whisper_match/views.py
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .services import get_gateway


def fail(code: str, message: str, http_status: int = 400):
    return Response(
        {"success": False, "data": None, "error": {"code": code, "message": message}},
        status=http_status,
    )


def _match_id(request):
    return request.data.get("matchId") or request.data.get("sessionId")


class WhisperMatchJoinView(APIView):
    """
    POST /api/whisper-match/join
    res: { status: "matched", match } | { status: "waiting" }
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        return Response(get_gateway().join(str(request.user.id)))


class WhisperMatchMessageView(APIView):
    """
    POST /api/whisper-match/message
    body: { "matchId": "...", "content": "hi" }
    res: 만들어진 메시지 { sender, content, sentAt, seq }
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        match_id = _match_id(request)
        if not match_id:
            return fail("VALIDATION_ERROR", "matchId is required")
        if "content" not in request.data:
            return fail("VALIDATION_ERROR", "content is required")

        message = get_gateway().send_message(
            str(request.user.id), str(match_id), request.data.get("content")
        )
        return Response(message)


class WhisperMatchLeaveView(APIView):
    """
    POST /api/whisper-match/leave
    body: { "matchId": "..." }  (없으면 대기열에서만 빠짐)
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        match_id = _match_id(request)
        return Response(
            get_gateway().leave(str(request.user.id), str(match_id) if match_id else None)
        )


class WhisperMatchCurrentView(APIView):
    """
    GET /api/whisper-match/current
    새로고침 후 진행중 세션/대기 상태 복구용
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(get_gateway().current(str(request.user.id)))


class WhisperMatchDetailView(APIView):
    """GET /api/whisper-match/<matchId> (참가자만)"""

    permission_classes = [IsAuthenticated]

    def get(self, request, match_id):
        return Response(get_gateway().get_match(str(request.user.id), str(match_id)))

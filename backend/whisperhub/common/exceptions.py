from loguru import logger
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.response import Response
from rest_framework.views import exception_handler
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

from whisperhub.whisper_match.errors import WhisperMatchError


def error_body(code: str, message: str, data=None):
    return {
        "success": False,
        "data": data,
        "error": {"code": code, "message": message},
    }


def custom_exception_handler(exc, context):
    if isinstance(exc, WhisperMatchError):
        if exc.http_status >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("whisper match unavailable: {}", exc.message)
        return Response(
            error_body(exc.code, exc.message, exc.extra()), status=exc.http_status
        )

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(exc, NotAuthenticated):
        response.data = error_body("UNAUTHORIZED", "Authorization header missing")
    elif isinstance(exc, (InvalidToken, TokenError)):
        # 만료/위조를 더 정확히 나누려면 exc.detail 내용으로 분기
        response.data = error_body("INVALID_TOKEN", "Invalid token")
    elif isinstance(exc, PermissionDenied):
        response.data = error_body("FORBIDDEN", "Permission denied")

    return response

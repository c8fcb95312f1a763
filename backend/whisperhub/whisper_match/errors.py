# whisperhub/whisper_match/errors.py


class WhisperMatchError(Exception):
    code = "WHISPER_MATCH_ERROR"
    http_status = 400
    default_message = "whisper match request failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def extra(self):
        """추가로 응답 data에 실어 보낼 값 (없으면 None)"""
        return None


class AlreadyWaiting(WhisperMatchError):
    code = "ALREADY_WAITING"
    http_status = 409
    default_message = "already waiting for a match"

    def __init__(self, user_id, message=None):
        super().__init__(message)
        self.user_id = str(user_id)


class AlreadyInSession(WhisperMatchError):
    code = "ALREADY_IN_SESSION"
    http_status = 409
    default_message = "already in an active match"

    def __init__(self, user_id, session=None, message=None):
        super().__init__(message)
        self.user_id = str(user_id)
        self.session = session

    def extra(self):
        if self.session is None:
            return None
        return {"status": "matched", "match": self.session.to_dict()}


class SessionNotFound(WhisperMatchError):
    code = "SESSION_NOT_FOUND"
    http_status = 404
    default_message = "match not found"


class SessionNotActive(WhisperMatchError):
    code = "SESSION_NOT_ACTIVE"
    http_status = 409
    default_message = "No active match."


class NotAParticipant(WhisperMatchError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "not your match"


class InvalidMessage(WhisperMatchError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "invalid message"


class ServiceUnavailable(WhisperMatchError):
    code = "SERVICE_UNAVAILABLE"
    http_status = 503
    default_message = "whisper match is temporarily unavailable"


class StoreUnavailable(Exception):
    """DB/Redis 일시 장애. 호출 측에서 제한 횟수만큼 재시도한다."""

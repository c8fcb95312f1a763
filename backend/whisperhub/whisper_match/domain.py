# whisperhub/whisper_match/domain.py
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SessionState(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    LEFT = "LEFT"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionState.ACTIVE


def new_session_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class WaitingEntry:
    user_id: str
    enqueued_at: datetime

    def to_dict(self):
        return {"userId": self.user_id, "enqueuedAt": _iso(self.enqueued_at)}


@dataclass(frozen=True)
class MatchMessage:
    sender: str
    content: str
    sent_at: datetime
    seq: int = 0

    def to_dict(self):
        return {
            "sender": self.sender,
            "content": self.content,
            "sentAt": _iso(self.sent_at),
            "seq": self.seq,
        }


@dataclass
class MatchSession:
    """
    One bounded conversation between two matched users.

    The pair is unordered: participant_a is whoever waited, participant_b whoever
    joined second, nothing else depends on the order.
    """

    session_id: str
    participant_a: str
    participant_b: str
    created_at: datetime
    expires_at: datetime
    state: SessionState = SessionState.ACTIVE
    messages: List[MatchMessage] = field(default_factory=list)
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None

    @property
    def participants(self):
        return (self.participant_a, self.participant_b)

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def has_participant(self, user_id: str) -> bool:
        return str(user_id) in self.participants

    def other_participant(self, user_id: str) -> str:
        user_id = str(user_id)
        if user_id == self.participant_a:
            return self.participant_b
        if user_id == self.participant_b:
            return self.participant_a
        raise ValueError(f"{user_id} is not part of session {self.session_id}")

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active and now >= self.expires_at

    def snapshot(self) -> "MatchSession":
        return replace(self, messages=list(self.messages))

    def to_dict(self, *, include_messages: bool = True):
        # 클라이언트가 쓰던 문서 모양(_id, userA, sessionExpiresAt ...) 유지
        data = {
            "_id": self.session_id,
            "matchId": self.session_id,
            "userA": self.participant_a,
            "userB": self.participant_b,
            "state": self.state.value,
            "active": self.is_active,
            "matchedAt": _iso(self.created_at),
            "sessionExpiresAt": _iso(self.expires_at),
            "endedAt": _iso(self.ended_at),
            "endedBy": self.ended_by,
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


@dataclass(frozen=True)
class JoinResult:
    status: str
    session: Optional[MatchSession] = None
    entry: Optional[WaitingEntry] = None

    MATCHED = "matched"
    WAITING = "waiting"

    @property
    def matched(self) -> bool:
        return self.status == self.MATCHED

    def to_dict(self):
        if self.matched:
            return {"status": self.status, "match": self.session.to_dict()}
        return {"status": self.status}

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from whisperhub.whisper_match.conf import MatchSettings
from whisperhub.whisper_match.services import build_gateway, set_gateway

pytestmark = pytest.mark.django_db


@pytest.fixture(params=["memory", "database"])
def gateway(request, scheduler):
    gw = build_gateway(
        MatchSettings(session_backend=request.param, store_retry_delay_seconds=0),
        scheduler=scheduler,
    )
    set_gateway(gw)
    yield gw
    set_gateway(None)


def make_client(username):
    user = get_user_model().objects.create_user(username=username, password="pw")
    client = APIClient()
    client.force_authenticate(user=user)
    return user, client


@pytest.fixture
def alice():
    return make_client("alice")


@pytest.fixture
def bob():
    return make_client("bob")


def matched_pair(alice, bob):
    alice[1].post("/api/whisper-match/join", {}, format="json")
    res = bob[1].post("/api/whisper-match/join", {}, format="json")
    return res.json()["match"]["_id"]


def test_join_waits_then_matches(gateway, alice, bob):
    res = alice[1].post("/api/whisper-match/join", {}, format="json")
    assert res.status_code == 200
    assert res.json() == {"status": "waiting"}

    res = bob[1].post("/api/whisper-match/join/", {}, format="json")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "matched"
    assert body["match"]["userA"] == str(alice[0].id)
    assert body["match"]["userB"] == str(bob[0].id)
    assert body["match"]["active"] is True


def test_duplicate_join_answers_waiting(gateway, alice):
    alice[1].post("/api/whisper-match/join", {}, format="json")
    res = alice[1].post("/api/whisper-match/join", {}, format="json")

    assert res.status_code == 200
    assert res.json() == {"status": "waiting"}


def test_join_while_matched_returns_existing_match(gateway, alice, bob):
    match_id = matched_pair(alice, bob)

    res = alice[1].post("/api/whisper-match/join", {}, format="json")

    # 페이지 재진입마다 join 하는 클라이언트: 에러 아닌 진행중 세션
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "matched"
    assert body["match"]["_id"] == match_id
    assert body["match"]["active"] is True


def test_send_message(gateway, alice, bob):
    match_id = matched_pair(alice, bob)

    res = alice[1].post(
        "/api/whisper-match/message", {"matchId": match_id, "content": "hi"}, format="json"
    )

    assert res.status_code == 200
    assert res.json()["content"] == "hi"
    assert res.json()["sender"] == str(alice[0].id)

    detail = bob[1].get(f"/api/whisper-match/{match_id}")
    assert [m["content"] for m in detail.json()["messages"]] == ["hi"]


def test_message_validation(gateway, alice, bob):
    match_id = matched_pair(alice, bob)

    res = alice[1].post("/api/whisper-match/message", {"content": "hi"}, format="json")
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    res = alice[1].post(
        "/api/whisper-match/message", {"matchId": match_id, "content": "  "}, format="json"
    )
    assert res.status_code == 400


def test_message_to_unknown_match(gateway, alice):
    res = alice[1].post(
        "/api/whisper-match/message",
        {"matchId": "00000000-0000-0000-0000-000000000000", "content": "hi"},
        format="json",
    )

    assert res.status_code == 404
    assert res.json()["error"]["code"] == "SESSION_NOT_FOUND"


def test_stranger_cannot_post_into_match(gateway, alice, bob):
    match_id = matched_pair(alice, bob)
    _, mallory = make_client("mallory")

    res = mallory.post(
        "/api/whisper-match/message", {"matchId": match_id, "content": "hi"}, format="json"
    )

    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"


def test_leave_then_leave_again(gateway, alice, bob):
    match_id = matched_pair(alice, bob)

    res = alice[1].post("/api/whisper-match/leave", {"matchId": match_id}, format="json")
    assert res.status_code == 200
    assert res.json()["message"] == "Left match"

    res = alice[1].post("/api/whisper-match/leave", {"matchId": match_id}, format="json")
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "SESSION_NOT_ACTIVE"

    res = bob[1].post(
        "/api/whisper-match/message", {"sessionId": match_id, "content": "bye"}, format="json"
    )
    assert res.status_code == 409


def test_leave_without_match_cancels_queue(gateway, alice):
    alice[1].post("/api/whisper-match/join", {}, format="json")

    res = alice[1].post("/api/whisper-match/leave", {}, format="json")

    assert res.status_code == 200
    assert res.json() == {"message": "Left queue", "wasWaiting": True}
    assert alice[1].get("/api/whisper-match/current").json() == {"status": "idle"}


def test_current(gateway, alice, bob):
    assert alice[1].get("/api/whisper-match/current").json() == {"status": "idle"}

    alice[1].post("/api/whisper-match/join", {}, format="json")
    assert alice[1].get("/api/whisper-match/current").json()["status"] == "waiting"

    bob[1].post("/api/whisper-match/join", {}, format="json")
    body = alice[1].get("/api/whisper-match/current").json()
    assert body["status"] == "matched"
    assert body["match"]["userB"] == str(bob[0].id)


def test_requires_authentication(gateway):
    res = APIClient().post("/api/whisper-match/join", {}, format="json")

    assert res.status_code == 401
    assert res.json()["error"]["code"] == "UNAUTHORIZED"

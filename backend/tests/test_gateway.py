import pytest

from whisperhub.whisper_match.conf import MatchSettings
from whisperhub.whisper_match.errors import NotAParticipant, SessionNotActive, SessionNotFound
from whisperhub.whisper_match.gateway import SWEEP_KEY, GatewayAdapter, user_group
from whisperhub.whisper_match.pool import InMemoryWaitPool
from whisperhub.whisper_match.retry import StoreRetry
from whisperhub.whisper_match.services import build_gateway
from whisperhub.whisper_match.store import InMemorySessionStore


class FakeChannelLayer:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def group_send(self, group, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.sent.append((group, message))

    def envelopes(self, user_id, event_type=None):
        return [
            m["envelope"]
            for g, m in self.sent
            if g == user_group(user_id)
            and (event_type is None or m["envelope"]["type"] == event_type)
        ]


@pytest.fixture
def layer():
    return FakeChannelLayer()


@pytest.fixture
def gateway(layer, scheduler, clock):
    store = InMemorySessionStore()
    return GatewayAdapter(
        store,
        InMemoryWaitPool(store=store, clock=clock),
        scheduler,
        MatchSettings(session_ttl_seconds=1, session_backend="memory"),
        channel_layer=layer,
        retry=StoreRetry(attempts=2, delay=0),
        clock=clock,
    )


def test_join_then_match_notifies_both_channels(gateway, layer):
    assert gateway.join("alice") == {"status": "waiting"}
    assert layer.sent == []

    response = gateway.join("bob")
    assert response["status"] == "matched"
    match_id = response["match"]["_id"]

    alice = layer.envelopes("alice", "matched")
    assert len(alice) == 1
    assert alice[0]["matchId"] == match_id
    assert alice[0]["payload"]["match"]["userB"] == "bob"
    assert layer.envelopes("bob", "matched")[0]["matchId"] == match_id


def test_duplicate_join_keeps_waiting_contract(gateway):
    gateway.join("alice")
    assert gateway.join("alice") == {"status": "waiting"}


def test_messages_go_to_the_other_participant_in_order(gateway, layer):
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]

    sent = gateway.send_message("alice", match_id, "hi")
    assert sent["sender"] == "alice"
    assert sent["content"] == "hi"
    gateway.send_message("bob", match_id, "hello")

    to_bob = layer.envelopes("bob", "message")
    to_alice = layer.envelopes("alice", "message")
    assert [(e["payload"]["sender"], e["payload"]["content"]) for e in to_bob] == [("alice", "hi")]
    assert [(e["payload"]["sender"], e["payload"]["content"]) for e in to_alice] == [("bob", "hello")]


def test_ttl_elapsed_rejects_message_and_notifies_expiry(gateway, layer, clock):
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]

    clock.advance(1.1)
    with pytest.raises(SessionNotActive):
        gateway.send_message("alice", match_id, "still here?")

    assert layer.envelopes("bob", "expired")[0]["matchId"] == match_id
    assert layer.envelopes("alice", "expired")[0]["matchId"] == match_id


def test_leave_notifies_partner_and_blocks_further_messages(gateway, layer):
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]

    response = gateway.leave("alice", match_id)
    assert response["message"] == "Left match"
    assert response["match"]["state"] == "LEFT"

    left = layer.envelopes("bob", "partner-left")
    assert left == [{"type": "partner-left", "matchId": match_id, "payload": {"userId": "alice"}}]

    with pytest.raises(SessionNotActive):
        gateway.send_message("alice", match_id, "hi")
    with pytest.raises(SessionNotActive):
        gateway.leave("alice", match_id)


def test_leave_without_match_id_cancels_waiting(gateway):
    gateway.join("alice")

    assert gateway.leave("alice") == {"message": "Left queue", "wasWaiting": True}
    assert gateway.current("alice") == {"status": "idle"}
    assert gateway.leave("alice") == {"message": "Left queue", "wasWaiting": False}


def test_current_snapshot(gateway, clock):
    assert gateway.current("alice") == {"status": "idle"}

    gateway.join("alice")
    waiting = gateway.current("alice")
    assert waiting["status"] == "waiting"
    assert waiting["enqueuedAt"] == clock().isoformat()

    match_id = gateway.join("bob")["match"]["_id"]
    current = gateway.current("alice")
    assert current["status"] == "matched"
    assert current["match"]["_id"] == match_id


def test_get_match_only_for_participants(gateway):
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]

    assert gateway.get_match("bob", match_id)["_id"] == match_id
    with pytest.raises(NotAParticipant):
        gateway.get_match("mallory", match_id)


def test_delivery_failure_does_not_break_matching(scheduler, clock):
    store = InMemorySessionStore()
    gateway = GatewayAdapter(
        store,
        InMemoryWaitPool(store=store, clock=clock),
        scheduler,
        channel_layer=FakeChannelLayer(fail=True),
        clock=clock,
    )
    gateway.join("alice")

    assert gateway.join("bob")["status"] == "matched"
    assert gateway.notify("alice", "matched") is False


def test_notify_without_channel_layer(scheduler, clock):
    store = InMemorySessionStore()
    gateway = GatewayAdapter(store, InMemoryWaitPool(store=store, clock=clock), scheduler, clock=clock)

    assert gateway.notify("alice", "matched") is False


def test_join_while_matched_returns_the_running_match(gateway, layer):
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]

    again = gateway.join("alice")

    assert again["status"] == "matched"
    assert again["match"]["_id"] == match_id
    # 재진입은 새 matched push 를 만들지 않음
    assert len(layer.envelopes("alice", "matched")) == 1


def test_periodic_sweep_evicts_ended_matches(gateway, scheduler, clock):
    assert gateway.start_periodic_sweep(30) is True
    gateway.join("alice")
    match_id = gateway.join("bob")["match"]["_id"]
    gateway.leave("alice", match_id)

    clock.advance(gateway.match_settings.terminal_retention_seconds + 1)
    scheduler.fire(SWEEP_KEY)

    with pytest.raises(SessionNotFound):
        gateway.get_match("bob", match_id)
    # 다음 주기 예약됨
    assert SWEEP_KEY in scheduler.jobs


def test_periodic_sweep_stops_after_shutdown(gateway, scheduler):
    gateway.start_periodic_sweep(30)
    gateway.shutdown()

    # ManualScheduler.shutdown 은 아무것도 안 하므로 직접 울려서 재예약 여부만 봄
    scheduler.fire(SWEEP_KEY)
    assert SWEEP_KEY not in scheduler.jobs


def test_memory_backend_arms_in_process_sweep(scheduler):
    memory = build_gateway(
        MatchSettings(session_backend="memory"), channel_layer=None, scheduler=scheduler
    )
    assert SWEEP_KEY in scheduler.jobs

    scheduler.jobs.clear()
    build_gateway(
        MatchSettings(session_backend="database"), channel_layer=None, scheduler=scheduler
    )
    # database 는 cron 커맨드가 담당
    assert SWEEP_KEY not in scheduler.jobs
    memory.shutdown()

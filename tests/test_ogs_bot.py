"""Tests for the server session: handshake, notifications, idle timers."""
import asyncio

import pytest
from conftest import BOT_ID, gamedata, make_settings

import ogs_bot
from ogs_api import ApiError
from ogs_bot import Connection, NotificationType, challenge_rejections, notification_type
from settings import ChallengePolicy


class FakeSio:
    def __init__(self):
        self.handlers = {}
        self.emitted = []
        self.connected_to = None
        self.disconnected = False

    def on(self, event, handler):
        self.handlers[event] = handler

    async def emit(self, event, data, callback=None):
        self.emitted.append((event, data))

    async def connect(self, url, transports=None):
        self.connected_to = url

    async def disconnect(self):
        self.disconnected = True

    def events(self, name):
        return [d for e, d in self.emitted if e == name]


class FakeEngine:
    killed = False

    def kill(self):
        self.killed = True


class FakeApi:
    def __init__(self, fail_accept=False):
        self.fail_accept = fail_accept
        self.calls = []

    async def accept_challenge(self, challenge_id, auth):
        self.calls.append(("accept", challenge_id))
        if self.fail_accept:
            raise ApiError("400 - nope", status=400)
        return "{}"

    async def decline_challenge(self, challenge_id, auth):
        self.calls.append(("decline", challenge_id))
        return "{}"

    async def accept_friend(self, user_id, auth):
        self.calls.append(("friend", user_id))
        return "{}"


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def make_conn(api=None, **kw):
    base = dict(host="localhost", port=8080, insecure=True, ping_interval_sec=60, keepalive_interval_sec=60)
    base.update(kw)
    conn = Connection(make_settings(**base), sio=FakeSio(), api=api or FakeApi())
    conn.session.bot_id = BOT_ID
    return conn


def challenge(**kw):
    n = {
        "type": "challenge",
        "id": "n1",
        "challenge_id": 77,
        "game_id": 1234,
        "rules": "japanese",
        "width": 19,
        "height": 19,
        "user": {"id": 7, "username": "human", "ranking": 20},
        "time_control": {"speed": "live", "period_time": 30, "periods": 5},
    }
    n.update(kw)
    return n


# -----------------
# challenge admission
# -----------------
def test_acceptable_challenge():
    assert challenge_rejections(challenge(), ChallengePolicy()) == []


def test_every_rejection_reason_is_reported():
    n = challenge(
        rules="ing",
        width=13,
        height=9,
        user={"username": "newbie", "ranking": 3},
        time_control={"speed": "correspondence", "period_time": 5},
    )
    reasons = challenge_rejections(n, ChallengePolicy())
    assert len(reasons) == 6


def test_short_time_fields_are_rejected():
    policy = ChallengePolicy()
    assert challenge_rejections(challenge(time_control={"time_increment": 5}), policy)
    assert challenge_rejections(challenge(time_control={"per_move": 10}), policy)
    assert challenge_rejections(challenge(time_control={"period_time": 300, "stones_per_period": 25}), policy)
    assert not challenge_rejections(challenge(time_control={"period_time": 600, "stones_per_period": 25}), policy)


def test_correspondence_can_be_allowed():
    policy = ChallengePolicy(reject_correspondence=False)
    assert challenge_rejections(challenge(time_control={"speed": "correspondence"}), policy) == []


def test_notification_types():
    assert notification_type("friendRequest") is NotificationType.FRIEND_REQUEST
    assert notification_type("somethingNew") is None


# -----------------
# notifications
# -----------------
@pytest.mark.asyncio
async def test_unknown_notification_is_deleted():
    conn = make_conn()
    conn.on_notification({"type": "somethingNew", "id": "n9"})
    await settle()
    deleted = conn.sio.events("notification/delete")
    assert deleted and deleted[0]["notification_id"] == "n9"
    assert deleted[0]["apikey"] == "k3y"


@pytest.mark.asyncio
async def test_ignorable_notification_is_kept():
    conn = make_conn()
    conn.on_notification({"type": "gameEnded", "id": "n2"})
    await settle()
    assert conn.sio.emitted == []


@pytest.mark.asyncio
async def test_good_challenge_is_accepted():
    conn = make_conn()
    conn.on_notification(challenge())
    await settle()
    assert conn.api.calls == [("accept", 77)]


@pytest.mark.asyncio
async def test_bad_challenge_is_declined():
    conn = make_conn()
    conn.on_notification(challenge(width=9, height=9))
    await settle()
    assert conn.api.calls == [("decline", 77)]


@pytest.mark.asyncio
async def test_failed_accept_declines_and_deletes():
    conn = make_conn(api=FakeApi(fail_accept=True))
    conn.on_notification(challenge())
    await settle()
    assert conn.api.calls == [("accept", 77), ("decline", 77)]
    assert conn.sio.events("notification/delete")[0]["notification_id"] == "n1"


@pytest.mark.asyncio
async def test_friend_request_is_accepted():
    conn = make_conn()
    conn.on_notification({"type": "friendRequest", "id": "n3", "user": {"id": 11, "username": "pal"}})
    await settle()
    assert conn.api.calls == [("friend", 11)]


# -----------------
# handshake
# -----------------
@pytest.mark.asyncio
async def test_bot_id_handshake():
    conn = make_conn()
    conn.session.bot_id = None
    conn.on_connect()
    await settle()
    assert conn.sio.events("bot/id") == [{"id": "testbot"}]

    conn.on_bot_id({"id": 555, "jwt": "tok"})
    await settle()
    names = [e for e, _ in conn.sio.emitted]
    assert names[-3:] == ["authenticate", "notification/connect", "bot/connect"]
    auth = conn.sio.events("authenticate")[0]
    assert (auth["bot_id"], auth["player_id"], auth["jwt"]) == (555, 555, "tok")


@pytest.mark.asyncio
async def test_unknown_bot_account_is_fatal():
    conn = make_conn()
    conn.exit_code = asyncio.get_running_loop().create_future()
    conn.on_bot_id({})
    assert conn.exit_code.result() == 1


def test_pong_measures_latency_and_drift(monkeypatch):
    conn = Connection(make_settings(), sio=FakeSio(), api=FakeApi())
    monkeypatch.setattr(ogs_bot.time, "time", lambda: 1000.0)
    conn.handle_pong({"client": 999_800, "server": 1_000_500})
    assert conn.session.network_latency == 100
    assert conn.session.clock_drift == -550


@pytest.mark.asyncio
async def test_keepalive_skipped_while_moving():
    conn = make_conn()
    conn.connected = True
    conn.session.moves_processing = 1
    conn.keepalive()
    await settle()
    assert conn.sio.emitted == []

    conn.session.moves_processing = 0
    conn.keepalive()
    await settle()
    assert len(conn.sio.events("notification/connect")) == 1


# -----------------
# games and idle timers
# -----------------
@pytest.mark.asyncio
async def test_game_events_are_routed():
    conn = make_conn()
    conn.on_active_game({"id": 5, "phase": "play"})
    conn.on_any_event("game/5/gamedata", gamedata(my_color="white"))
    game = conn.session.connected_games[5]
    assert game.state["game_id"] == 1
    assert game.my_color == "white"
    # unrelated events are only logged
    conn.on_any_event("game/6/gamedata", {})
    conn.on_any_event("ui-pushes/update", {})


@pytest.mark.asyncio
async def test_finished_game_is_dropped():
    conn = make_conn()
    conn.connected = True
    conn.on_active_game({"id": 5, "phase": "finished"})
    await settle()
    assert 5 not in conn.session.connected_games
    assert conn.sio.events("game/disconnect")[0]["game_id"] == 5


@pytest.mark.asyncio
async def test_idle_game_times_out():
    conn = make_conn(timeout_sec=0.05)
    conn.connected = True
    conn.on_active_game({"id": 5, "phase": "play"})
    assert 5 in conn.session.connected_games
    engine = FakeEngine()
    conn.session.connected_games[5].bot = engine
    await asyncio.sleep(0.15)
    assert engine.killed
    assert 5 not in conn.session.connected_games
    assert 5 not in conn.session.connected_game_timeouts
    assert conn.sio.events("game/disconnect")[0]["game_id"] == 5


@pytest.mark.asyncio
async def test_activity_rearms_idle_timer():
    conn = make_conn(timeout_sec=0.2)
    conn.on_active_game({"id": 5, "phase": "play"})
    await asyncio.sleep(0.12)
    conn.on_active_game({"id": 5, "phase": "play"})
    await asyncio.sleep(0.12)
    assert 5 in conn.session.connected_games
    await asyncio.sleep(0.2)
    assert 5 not in conn.session.connected_games


@pytest.mark.asyncio
async def test_server_disconnect_drops_all_games():
    conn = make_conn(timeout_sec=30)
    conn.on_active_game({"id": 5, "phase": "play"})
    conn.on_active_game({"id": 6, "phase": "play"})
    conn.connected = True
    engine = FakeEngine()
    conn.session.connected_games[6].bot = engine
    conn.on_disconnect()
    await settle()
    assert engine.killed
    # the socket is already down, so nothing is sent for the dropped games
    assert conn.sio.events("game/disconnect") == []
    assert conn.session.connected_games == {}
    assert conn.session.connected_game_timeouts == {}
    assert not conn.connected


# -----------------
# run
# -----------------
@pytest.mark.asyncio
async def test_run_fails_when_never_connected():
    conn = make_conn()
    assert await conn.run() == 1
    assert conn.sio.connected_to == "http://localhost:8080"
    assert conn.sio.disconnected


@pytest.mark.asyncio
async def test_stop_exits_cleanly():
    conn = make_conn()
    asyncio.get_running_loop().call_later(0.01, conn.stop)
    assert await conn.run() == 0


def test_start_requires_credentials():
    assert ogs_bot.start(make_settings(apikey="")) == 2

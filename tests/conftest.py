"""Shared fakes: a recording connection and an in-memory engine process."""
import pytest

from ogs_bot import Session
from settings import LaunchPolicy, Settings

BOT_ID = 42
OPPONENT_ID = 7


class FakeConn:
    def __init__(self, settings=None):
        self.settings = settings or make_settings()
        self.session = Session(bot_id=BOT_ID)
        self.emitted = []

    def emit(self, event, data, callback=None):
        self.emitted.append((event, dict(data)))

    def events(self, name):
        return [d for e, d in self.emitted if e == name]


class FakeStdin:
    def __init__(self):
        self.chunks = []
        self.closed = False

    def write(self, data: bytes):
        self.chunks.append(data.decode("utf-8"))

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True

    @property
    def text(self):
        return "".join(self.chunks)


class FakeProc:
    def __init__(self):
        self.stdin = FakeStdin()
        self.returncode = None
        self.pid = 4242
        self.killed = False

    def kill(self):
        self.killed = True
        self.returncode = -9


def make_settings(**kw) -> Settings:
    base = dict(
        username="testbot",
        apikey="k3y",
        bot_command=["fake-engine", "--gtp"],
        launch_policy=LaunchPolicy(default=[]),
    )
    base.update(kw)
    return Settings(**base)


def gamedata(my_color="white", moves=None, phase="play", current_player=None, **kw):
    black_id, white_id = (BOT_ID, OPPONENT_ID) if my_color == "black" else (OPPONENT_ID, BOT_ID)
    data = {
        "game_id": 1,
        "phase": phase,
        "width": 19,
        "height": 19,
        "komi": 6.5,
        "handicap": 0,
        "free_handicap_placement": False,
        "initial_player": "black",
        "initial_state": {"black": "", "white": ""},
        "moves": list(moves or []),
        "players": {
            "black": {"id": black_id, "username": "b"},
            "white": {"id": white_id, "username": "w"},
        },
        "time_control": {"system": "absolute", "total_time": 300},
        "clock": {
            "current_player": current_player if current_player is not None else black_id,
            "black_player_id": black_id,
            "white_player_id": white_id,
            "black_time": {"thinking_time": 300},
            "white_time": {"thinking_time": 300},
        },
    }
    data.update(kw)
    return data


@pytest.fixture
def conn():
    return FakeConn()

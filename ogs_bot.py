#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ogs_bot.py — OGS realtime bridge for a GTP engine

One socket.io session to the server, one Game per game we are seated in,
one engine process per Game (started on demand, thrown away after each
move unless BOT_PERSIST is set).

Everything runs on a single asyncio loop: socket events, engine pipes and
timers are all callbacks on it, so nothing here needs a lock.

Requirements:
  pip install "python-socketio[asyncio_client]" requests PyYAML

Environment variables (common):
  OGS_USERNAME, OGS_APIKEY : bot account
  BOT_COMMAND              : engine command line
  GAME_TIMEOUT_SEC         : drop a silent game after this many seconds
"""
import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import socketio

from botlog import debug, log, log_exc, setup_logging
from game import Game
from ogs_api import ApiError, OgsApi
from settings import ChallengePolicy, Settings


@dataclass
class Session:
    bot_id: Optional[int] = None
    jwt: Optional[str] = None
    clock_drift: float = 0.0        # ms, local clock minus server clock
    network_latency: float = 0.0    # ms, one way
    moves_processing: int = 0       # genmoves in flight; only gates the keep-alive poll
    connected_games: Dict[object, Game] = field(default_factory=dict)
    connected_game_timeouts: Dict[object, asyncio.TimerHandle] = field(default_factory=dict)


# =====================
# NOTIFICATIONS
# =====================
class NotificationType(str, Enum):
    CHALLENGE = "challenge"
    FRIEND_REQUEST = "friendRequest"
    DELETE = "delete"
    GAME_STARTED = "gameStarted"
    GAME_ENDED = "gameEnded"
    GAME_DECLINED = "gameDeclined"
    GAME_RESUMED = "gameResumedFromStoneRemoval"
    TOURNAMENT_STARTED = "tournamentStarted"
    TOURNAMENT_ENDED = "tournamentEnded"


IGNORABLE_NOTIFICATIONS = {
    NotificationType.GAME_STARTED,
    NotificationType.GAME_ENDED,
    NotificationType.GAME_DECLINED,
    NotificationType.GAME_RESUMED,
    NotificationType.TOURNAMENT_STARTED,
    NotificationType.TOURNAMENT_ENDED,
}


def notification_type(raw) -> Optional[NotificationType]:
    try:
        return NotificationType(raw)
    except ValueError:
        return None


def challenge_rejections(notification: dict, policy: ChallengePolicy) -> List[str]:
    """Every reason to turn the challenge down; empty means accept."""
    reasons = []
    user = notification.get("user") or {}
    username = user.get("username", "?")
    tc = notification.get("time_control") or {}

    if (notification.get("rules") or "").lower() not in policy.rules:
        reasons.append(f"Unhandled rules: {notification.get('rules')}")
    if notification.get("width") != notification.get("height"):
        reasons.append("board was not square")
    if notification.get("width") != policy.board_size:
        reasons.append(f"board not {policy.board_size} wide")
    if float(user.get("ranking") or 0) < policy.min_rank:
        reasons.append(f"{username} ranking too low: {user.get('ranking')}")
    if policy.reject_correspondence and tc.get("speed") == "correspondence":
        reasons.append(f"{username} wanted correspondence")

    floor = policy.min_period_sec
    period = tc.get("period_time")
    stones = tc.get("stones_per_period")
    if (
        (period and period < floor)
        or (tc.get("time_increment") and tc["time_increment"] < floor)
        or (tc.get("per_move") and tc["per_move"] < floor)
        or (stones and period and period / stones < floor)
    ):
        reasons.append(f"{period} too short period_time")
    return reasons


# =====================
# CONNECTION
# =====================
class Connection:
    def __init__(self, settings: Settings, sio=None, api: Optional[OgsApi] = None):
        self.settings = settings
        self.session = Session()
        self.connected = False
        self.sio = sio or socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=0.5,
            reconnection_delay_max=60,
        )
        self.api = api or OgsApi(settings.host, settings.port, settings.insecure)
        self.exit_code: Optional[asyncio.Future] = None
        self._tasks = set()
        self._timers: List[asyncio.TimerHandle] = []

        self.notification_handlers = {
            NotificationType.CHALLENGE: self.on_challenge,
            NotificationType.FRIEND_REQUEST: self.on_friend_request,
            NotificationType.DELETE: self.on_delete,
            NotificationType.GAME_STARTED: self.on_game_started,
        }

        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("net/pong", self.handle_pong)
        self.sio.on("notification", self.on_notification)
        self.sio.on("active_game", self.on_active_game)
        self.sio.on("*", self.on_any_event)

    # -----------------
    # plumbing
    # -----------------
    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_exc("background task", task.exception())

    def auth(self, obj: dict) -> dict:
        obj = dict(obj)
        obj["apikey"] = self.settings.apikey
        obj["bot_id"] = self.session.bot_id
        obj["player_id"] = self.session.bot_id
        if self.session.jwt:
            obj["jwt"] = self.session.jwt
        return obj

    def send(self, event: str, data: dict, callback=None):
        """Emit without the auth envelope (identity lookup, pings)."""
        return self._spawn(self.sio.emit(event, data, callback=callback))

    def emit(self, event: str, data: dict, callback=None):
        return self.send(event, self.auth(data), callback)

    def fatal(self, msg: str, code: int = 1):
        log(msg, "🛑", level=logging.ERROR)
        if self.exit_code is not None and not self.exit_code.done():
            self.exit_code.set_result(code)

    def stop(self):
        log("Shutting down by user request.", "👋")
        if self.exit_code is not None and not self.exit_code.done():
            self.exit_code.set_result(0)

    # -----------------
    # session lifecycle
    # -----------------
    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        self.exit_code = loop.create_future()
        log(f"Connecting to {self.settings.url}", "🛰️")
        self._timers.append(loop.call_later(self.settings.connect_grace_sec, self._check_connected))
        heartbeat = [
            self._spawn(self._every(self.settings.ping_interval_sec, self.ping)),
            self._spawn(self._every(self.settings.keepalive_interval_sec, self.keepalive)),
        ]
        try:
            await self.sio.connect(self.settings.url, transports=["websocket"])
        except socketio.exceptions.ConnectionError as e:
            log(f"Connect failed: {e}", "🔌", level=logging.ERROR)
        try:
            return await self.exit_code
        finally:
            for task in heartbeat:
                task.cancel()
            for handle in self._timers:
                handle.cancel()
            self.connection_reset()
            await self.sio.disconnect()

    def _check_connected(self):
        if not self.connected:
            self.fatal(f"Failed to connect to {self.settings.url}")

    async def _every(self, interval: float, fn):
        while True:
            await asyncio.sleep(interval)
            fn()

    def ping(self):
        if self.connected:
            self.send("net/ping", {"client": int(time.time() * 1000)})

    def handle_pong(self, data: dict):
        now = time.time() * 1000
        round_trip = now - float(data["client"])
        self.session.network_latency = round_trip / 2
        self.session.clock_drift = (now - self.session.network_latency / 2) - float(data["server"])
        debug(f"pong: latency {self.session.network_latency:.0f}ms drift {self.session.clock_drift:.0f}ms")

    def keepalive(self):
        # re-ask for notifications in case a push got lost; pointless mid-move
        if self.connected and self.session.moves_processing == 0:
            self.emit("notification/connect", {}, callback=self._log_ack)

    def _log_ack(self, *args):
        debug(f"ack: {args[0] if args else ''}")

    def on_connect(self):
        self.connected = True
        log("Connected", "🔗")
        self.ping()
        self.send("bot/id", {"id": self.settings.username}, callback=self.on_bot_id)

    def on_bot_id(self, obj=None):
        obj = obj or {}
        self.session.bot_id = obj.get("id")
        self.session.jwt = obj.get("jwt")
        if not self.session.bot_id:
            self.fatal(f"ERROR: Bot account is unknown to the system: {self.settings.username}")
            return
        log(f"Bot is user id: {self.session.bot_id}", "🤖")
        self.emit("authenticate", {})
        self.emit("notification/connect", {}, callback=self._log_ack)
        self.emit("bot/connect", {})

    def on_disconnect(self, *args):
        self.connected = False
        log("Disconnected from server", "🔌", level=logging.WARNING)
        self.connection_reset()

    def connection_reset(self):
        for handle in self.session.connected_game_timeouts.values():
            handle.cancel()
        self.session.connected_game_timeouts.clear()
        for game_id in list(self.session.connected_games):
            self.disconnect_from_game(game_id)

    # -----------------
    # games
    # -----------------
    def _arm_timeout(self, game_id):
        if not self.settings.timeout_sec:
            return
        old = self.session.connected_game_timeouts.pop(game_id, None)
        if old:
            old.cancel()
        debug(f"Setting timeout for {game_id}")
        loop = asyncio.get_running_loop()
        self.session.connected_game_timeouts[game_id] = loop.call_later(
            self.settings.timeout_sec, self._on_game_timeout, game_id
        )

    def _on_game_timeout(self, game_id):
        log(f"No activity for {self.settings.timeout_sec:.0f}s, disconnecting", "⏱️", gid=game_id)
        self.session.connected_game_timeouts.pop(game_id, None)
        self.disconnect_from_game(game_id)

    def connect_to_game(self, game_id) -> Game:
        game = self.session.connected_games.get(game_id)
        if game is not None:
            return game
        debug(f"Connecting to game {game_id}")
        self._arm_timeout(game_id)
        game = self.session.connected_games[game_id] = Game(self, game_id)
        return game

    def disconnect_from_game(self, game_id):
        debug(f"disconnectFromGame {game_id}")
        handle = self.session.connected_game_timeouts.pop(game_id, None)
        if handle:
            handle.cancel()
        game = self.session.connected_games.pop(game_id, None)
        if game is not None:
            # nothing can be sent once the transport is gone
            game.disconnect(notify=self.connected)

    def on_active_game(self, gamedata: dict):
        debug(f"active_game: {gamedata}")
        game_id = gamedata.get("id")
        if game_id is None:
            return
        self.connect_to_game(game_id)
        if gamedata.get("phase") == "finished":
            debug(f"{game_id} gamedata.phase == finished")
            self.disconnect_from_game(game_id)
            return
        # any sign of life (our move to make included) restarts the idle timer
        self._arm_timeout(game_id)

    def on_any_event(self, event: str, data=None):
        parts = event.split("/")
        if len(parts) == 3 and parts[0] == "game":
            game = self.session.connected_games.get(_game_key(parts[1]))
            if game is None:
                game = self.session.connected_games.get(parts[1])
            if game is not None:
                try:
                    game.handle(parts[2], data)
                except Exception as e:
                    log_exc(f"{event}", e, gid=parts[1])
                return
        debug(f"Unhandled event {event}: {data}")

    # -----------------
    # notifications
    # -----------------
    def on_notification(self, notification: dict):
        kind = notification_type(notification.get("type"))
        handler = self.notification_handlers.get(kind)
        if handler is not None:
            handler(notification)
        elif kind not in IGNORABLE_NOTIFICATIONS:
            log(f"Unhandled notification type: {notification.get('type')} {notification}", "❓")
            self.delete_notification(notification)

    def delete_notification(self, notification: dict):
        nid = notification.get("id")
        self.emit(
            "notification/delete",
            {"notification_id": nid},
            callback=lambda *a: log(f"Deleted notification {nid}", "🧹"),
        )

    def on_delete(self, notification: dict):
        pass

    def on_game_started(self, notification: dict):
        pass

    def on_friend_request(self, notification: dict):
        user = notification.get("user") or {}
        log(f"Friend request from {user.get('username')}", "🤝")
        self._spawn(self._accept_friend(user.get("id")))

    async def _accept_friend(self, user_id):
        try:
            log(await self.api.accept_friend(user_id, self.auth({})), "🤝")
        except ApiError as e:
            log(f"Friend request accept failed: {e}", "⚠️", level=logging.WARNING)

    def on_challenge(self, notification: dict):
        reasons = challenge_rejections(notification, self.settings.challenge)
        for reason in reasons:
            log(f"{reason}, rejecting challenge", "⛔")
        self._spawn(self._answer_challenge(notification, accept=not reasons))

    async def _answer_challenge(self, notification: dict, accept: bool):
        cid = notification.get("challenge_id")
        if accept:
            log(f"Accepting challenge, game_id = {notification.get('game_id')}", "💪")
            try:
                await self.api.accept_challenge(cid, self.auth({}))
                return
            except ApiError as e:
                log(f"Error accepting challenge, declining it ({e})", "⚠️", level=logging.WARNING)
                self.delete_notification(notification)
        try:
            await self.api.decline_challenge(cid, self.auth({}))
        except ApiError as e:
            log(f"Declining challenge {cid} failed: {e}", "⚠️", level=logging.WARNING)


def _game_key(raw: str):
    # game ids arrive as ints in payloads but as text inside event names
    try:
        return int(raw)
    except ValueError:
        return raw


# =====================
# MAIN
# =====================
async def _main(settings: Settings) -> int:
    conn = Connection(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, conn.stop)
        except (NotImplementedError, RuntimeError):
            pass  # Windows: Ctrl+C still raises KeyboardInterrupt
    return await conn.run()


def start(settings: Optional[Settings] = None) -> int:
    settings = settings or Settings.from_env()
    setup_logging(settings.debug)
    missing = settings.missing()
    if missing:
        log(f"Missing configuration: {', '.join(missing)}", "🛑", level=logging.ERROR)
        return 2
    log(f"gtp2ogs for {settings.username}: {' '.join(settings.bot_command)}", "🚀")
    try:
        return asyncio.run(_main(settings))
    except KeyboardInterrupt:
        log("Shutting down by user request.", "👋")
        return 0


if __name__ == "__main__":
    sys.exit(start())

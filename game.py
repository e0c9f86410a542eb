# game.py — one mirrored OGS game and the decision of when the bot moves
"""
A Game mirrors one OGS game from the realtime feed and decides, from
gamedata/clock/phase/move events alone, when the bot owes a move.

Turn-taking works on move-index parity: `opponent_evenodd` is the parity
(0-based index) of moves that belong to the opponent once any free
handicap placement is over.
"""
import logging
from typing import Optional

from botlog import debug, log
from compute_time_management import describe
from gtp_engine import EngineBot, EngineMove
from move_codec import decode_moves, encode_move


def opponent_parity(my_color: str, free_handicap_placement: bool, handicap: int) -> int:
    """Parity of the 0-based move indices the opponent plays."""
    parity = 1 if my_color == "black" else 0
    # the first handicap stone is just lower komi; more may flip who is odd/even
    if free_handicap_placement and handicap > 1:
        parity = (parity + (handicap - 1)) % 2
    return parity


class Game:
    def __init__(self, conn, game_id):
        self.conn = conn
        self.game_id = game_id
        self.state: Optional[dict] = None
        self.opponent_evenodd: Optional[int] = None
        self.connected = True
        self.bot: Optional[EngineBot] = None
        self.my_color: Optional[str] = None
        self._inflight = None  # the move request currently waiting on the engine

        self.handlers = {
            "gamedata": self.on_gamedata,
            "clock": self.on_clock,
            "phase": self.on_phase,
            "move": self.on_move,
            "undo_requested": self.on_undo_requested,
        }
        self.conn.emit("game/connect", {"game_id": game_id})

    def log(self, msg: str, emoji: str = "", level: int = logging.INFO):
        log(msg, emoji, gid=f"Game {self.game_id}", level=level)

    def handle(self, kind: str, data):
        handler = self.handlers.get(kind)
        if handler is None:
            debug(f"Ignoring game event {kind}", gid=self.game_id)
            return
        handler(data)

    # -----------------
    # inbound events
    # -----------------
    def on_undo_requested(self, undodata):
        self.log(f"Undo requested: {undodata}", "↩️")

    def on_gamedata(self, gamedata: dict):
        if not self.connected:
            return
        self.log("gamedata", "📥", level=logging.DEBUG)
        self.state = gamedata
        players = gamedata.get("players") or {}
        black = players.get("black") or {}
        white = players.get("white") or {}
        self.my_color = "black" if self.conn.session.bot_id == black.get("id") else "white"
        self.opponent_evenodd = opponent_parity(
            self.my_color,
            bool(gamedata.get("free_handicap_placement")),
            int(gamedata.get("handicap") or 0),
        )
        opp = white if self.my_color == "black" else black
        self.log(
            f"vs {opp.get('username') or opp.get('id') or '?'} | {self.my_color} | "
            f"{gamedata.get('width')}x{gamedata.get('height')} | TC {describe(gamedata.get('time_control'))}",
            "♟️",
        )

        # a second gamedata means our engine may be out of sync; start over
        if self.bot:
            self._drop_inflight()
            self.log("Killing bot because of gamedata packet after bot was started", "🔁")
            self.bot.kill()
            self.bot = None

        clock = gamedata.get("clock") or {}
        if gamedata.get("phase") == "play" and clock.get("current_player") == self.conn.session.bot_id:
            self.make_move(len(gamedata.get("moves") or []))

    def on_clock(self, clock: dict):
        if not self.connected or self.state is None:
            return
        debug("clock", gid=self.game_id)
        # only read right before genmove; pushing it now would disturb pondering
        self.state["clock"] = clock

    def on_phase(self, phase: str):
        if not self.connected or self.state is None:
            return
        self.log(f"phase {phase}", "🔀")
        previous = self.state.get("phase")
        self.state["phase"] = phase
        if phase == "play" and previous != "play":
            # the server rejects an out-of-turn pass, so this is safe if lazy
            self.log("Game play resumed, sending pass rather than working out whose move it is")
            self.conn.emit("game/move", {"game_id": self.game_id, "move": ".."})

    def on_move(self, move: dict):
        if not self.connected:
            return
        if self.state is None:
            self.log(f"move before gamedata, ignoring: {move}", "❓", level=logging.WARNING)
            return
        debug(f"game/{self.game_id}/move: {move}", gid=self.game_id)
        moves = self.state.setdefault("moves", [])
        moves.append(move.get("move"))
        width = int(self.state.get("width") or 19)
        opponent = "white" if self.my_color == "black" else "black"

        if self.state.get("free_handicap_placement") and int(self.state.get("handicap") or 0) > len(moves):
            if self.my_color == "black":
                # we place the extra stones
                self.make_move(len(moves))
            else:
                if self.bot:
                    self.bot.send_move(decode_moves(move.get("move"), width)[0], width, opponent)
                debug(
                    f"Waiting for opponent to finish {int(self.state['handicap']) - len(moves)} more handicap moves",
                    gid=self.game_id,
                )
            return

        index = int(move["move_number"]) - 1 if move.get("move_number") is not None else len(moves) - 1
        if index % 2 == self.opponent_evenodd:
            if self.bot:
                self.bot.send_move(decode_moves(move.get("move"), width)[0], width, opponent)
            self.make_move(len(moves))
        else:
            debug(f"Ignoring our own move {index + 1}", gid=self.game_id)

    # -----------------
    # moving
    # -----------------
    def make_move(self, move_number: int):
        state = self.state
        if not state or len(state.get("moves") or []) != move_number:
            return
        if state.get("phase") != "play":
            return

        session = self.conn.session
        session.moves_processing += 1
        inflight = {"done": False}
        self._inflight = inflight

        def finish() -> bool:
            if inflight["done"]:
                return False
            inflight["done"] = True
            session.moves_processing -= 1
            if self._inflight is inflight:
                self._inflight = None
            return True

        def pass_and_restart(err=None):
            if not finish():
                return
            self.log(f"Bot process crashed ({err}), state was {state}", "💥", level=logging.ERROR)
            self.conn.emit("game/move", {"game_id": self.game_id, "move": ".."})
            if self.bot:
                self.bot.kill()
            self.bot = None

        if not self.bot:
            self.log("Starting new bot process", "🚀")
            self.bot = EngineBot(self, self.conn.settings.bot_command, self.conn.settings)
            self.bot.start()
            self.log("State loading for new bot", level=logging.DEBUG)
            self.bot.load_state(state, pass_and_restart)

        bot = self.bot
        if bot is None:
            return  # replay already failed and passed for us

        def on_move(move: EngineMove):
            if not finish():
                return
            if move.resign:
                self.log("Resigning", "🏳️")
                self.conn.emit("game/resign", {"game_id": self.game_id})
            else:
                self.log(f"Playing {move.text}", "⚡")
                self.conn.emit("game/move", {"game_id": self.game_id, "move": encode_move(move.as_move())})
            if not self.conn.settings.persist:
                bot.kill()
                if self.bot is bot:
                    self.bot = None

        bot.log(f"Generating move for game {self.game_id}", level=logging.DEBUG)
        bot.genmove(state, on_move, pass_and_restart)

    # -----------------
    # outbound
    # -----------------
    def send_chat(self, body, move_number: int, type: str = "discussion"):
        if not self.connected:
            return
        self.conn.emit("game/chat", {
            "game_id": self.game_id,
            "player_id": self.conn.session.bot_id,
            "body": body,
            "move_number": move_number,
            "type": type,
            "username": self.conn.settings.username,
        })

    def _drop_inflight(self):
        """Forget the pending move request; its engine reply, if any, is ignored."""
        if self._inflight and not self._inflight["done"]:
            self._inflight["done"] = True
            self.conn.session.moves_processing -= 1
        self._inflight = None

    def disconnect(self, notify: bool = True):
        self.log("disconnect()", "🔌", level=logging.DEBUG)
        self.connected = False
        self._drop_inflight()
        if notify:
            self.conn.emit("game/disconnect", {"game_id": self.game_id})
        if self.bot:
            self.bot.kill()
            self.bot = None

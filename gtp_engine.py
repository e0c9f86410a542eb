# gtp_engine.py — one GTP engine subprocess per game
"""
EngineBot owns the engine process for a single game.

Commands are written in submission order and every command takes one slot
in a FIFO of callbacks; replies are matched to slots strictly in order.
Nothing here blocks: the process is spawned in the background, commands
issued before it is up are held and flushed once it is, and stdout/stderr
are consumed by two reader tasks.

If the engine stalls, commands keep queueing; there is no timeout on a
reply.
"""
import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from botlog import debug, log, log_exc
from chatter import CHAT_TYPE, Chatter
from compute_time_management import clock_commands, time_system
from move_codec import decode_moves, gtpvertex2xy, move2gtpvertex, Move

COLOR_NAMES = {1: "black", 2: "white"}


class EngineError(RuntimeError):
    pass


@dataclass
class _Pending:
    command: str
    cb: Optional[Callable[[str], None]] = None
    eb: Optional[Callable[[Exception], None]] = None
    final: bool = False


@dataclass
class EngineMove:
    x: int
    y: int
    text: str
    resign: bool = False
    pass_: bool = False

    def as_move(self) -> Move:
        return Move(self.x, self.y)


def parse_genmove(reply, board_size: int) -> EngineMove:
    """Interpret a genmove reply; garbage is treated as a resignation."""
    text = reply.strip().lower() if isinstance(reply, str) else ""
    if text == "resign":
        return EngineMove(-1, -1, text, resign=True)
    if text == "pass":
        return EngineMove(-1, -1, text, pass_=True)
    x, y = gtpvertex2xy(text, board_size)
    if x < 0:
        log(f"genmove failed ({reply!r}), resigning", "🏳️")
        return EngineMove(-1, -1, text, resign=True)
    return EngineMove(x, y, text)


class EngineBot:
    def __init__(self, game, command_line: List[str], settings):
        self.game = game
        self.settings = settings
        state = game.state or {}
        players = state.get("players") or {}
        extra = settings.launch_policy.args_for(
            (players.get("black") or {}).get("id"),
            (players.get("white") or {}).get("id"),
            game.game_id,
        )
        self.argv = list(command_line) + extra
        self.proc: Optional[asyncio.subprocess.Process] = None
        self.pid = None

        self.command_callbacks: Deque[_Pending] = deque()
        self.commands_sent = 0
        self.firstmove = True
        self.kgs_time = settings.kgs_time == "on"
        self.json_initialized = False
        self.dead = False

        self.chatter = Chatter(int(state.get("width") or 19))
        self._held: List[str] = []
        self._stdout_buffer = ""
        self._stderr_buffer = ""
        self._response: List[str] = []
        self._tasks: List[asyncio.Task] = []

    # -----------------
    # process lifecycle
    # -----------------
    def start(self):
        log(f"Starting {' '.join(self.argv)}", "🚀", gid=self.game.game_id, level=logging.DEBUG)
        self._tasks.append(asyncio.ensure_future(self._spawn()))

    async def _spawn(self):
        try:
            self.proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            log_exc("engine spawn", e, gid=self.game.game_id)
            self.dead = True
            self._fail(EngineError(f"could not start engine: {e}"))
            return
        self.pid = self.proc.pid
        if self.dead:
            self._terminate()
            return
        self._tasks.append(asyncio.ensure_future(self._pump(self.proc.stdout, self.feed_stdout, eof=True)))
        self._tasks.append(asyncio.ensure_future(self._pump(self.proc.stderr, self.feed_stderr)))
        held, self._held = self._held, []
        for data in held:
            if not self._write_safely(data):
                break

    async def _pump(self, stream, handler, eof=False):
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            if self.dead:
                continue
            try:
                handler(chunk.decode("utf-8", errors="replace"))
            except Exception as e:
                log_exc("engine output", e, gid=self.game.game_id)
        if eof:
            if self.proc is not None:
                await self.proc.wait()
            if not self.dead and self.command_callbacks:
                self._fail(EngineError("engine exited with commands pending"))

    def kill(self):
        self.log("Killing process")
        self.dead = True
        self._terminate()
        if self._stderr_buffer.strip():
            self.log(f"stderr: {self._stderr_buffer.strip()}")
            self._stderr_buffer = ""

    def _terminate(self):
        if self.proc is None or self.proc.returncode is not None:
            return
        try:
            self.proc.kill()
        except ProcessLookupError:
            pass

    def _fail(self, err: Exception):
        """Drain the queue, calling every error callback still waiting."""
        pending, self.command_callbacks = list(self.command_callbacks), deque()
        for p in pending:
            if p.eb:
                p.eb(err)

    def log(self, msg: str, emoji: str = "", level: int = logging.INFO):
        log(msg, emoji, gid=f"{self.pid} {self.game.game_id}", level=level)

    # -----------------
    # writing
    # -----------------
    def command(self, cmd: str, cb=None, eb=None, final: bool = False):
        """Queue one GTP command; cb gets the reply payload, eb any failure."""
        self.command_callbacks.append(_Pending(cmd, cb, eb, final))
        self.commands_sent += 1
        self.log(f">>> {cmd}", level=logging.DEBUG)
        if self.settings.json:
            if not self.json_initialized:
                data = '{"gtp_commands": [' + json.dumps(cmd)
                self.json_initialized = True
            else:
                data = "," + json.dumps(cmd)
            if final:
                data += "]}"
        else:
            data = cmd + "\r\n"
        try:
            self._write(data, close=self.settings.json and final)
        except Exception as e:
            self.log(f"Failed to send command: {cmd} ({e})", "🧯", level=logging.ERROR)
            if eb:
                eb(e)

    def _write(self, data: str, close: bool = False):
        if self.dead:
            raise EngineError("engine process was killed")
        if self.proc is None:
            self._held.append(data)
            if close:
                self._held.append(None)
            return
        stdin = self.proc.stdin
        if self.proc.returncode is not None or stdin is None or stdin.is_closing():
            raise BrokenPipeError("engine stdin is closed")
        stdin.write(data.encode("utf-8"))
        if close:
            stdin.close()

    def _write_safely(self, data) -> bool:
        try:
            if data is None:
                self.proc.stdin.close()
            else:
                self._write(data)
            return True
        except Exception as e:
            self.log(f"Failed to flush held commands ({e})", "🧯", level=logging.ERROR)
            self._fail(e)
            return False

    # -----------------
    # reading
    # -----------------
    def feed_stdout(self, data: str):
        self._stdout_buffer += data
        if self.settings.json:
            try:
                parsed = json.loads(self._stdout_buffer)
            except ValueError:
                return  # partial document
            self._stdout_buffer = ""
            texts = parsed if isinstance(parsed, list) else [parsed]
            for text in texts:
                self._consume_lines(str(text).rstrip("\n") + "\n\n")
            return
        if not self._stdout_buffer.endswith("\n"):
            return
        text, self._stdout_buffer = self._stdout_buffer, ""
        self._consume_lines(text)

    def _consume_lines(self, text: str):
        self.log(f"<<< {text.rstrip()}", level=logging.DEBUG)
        lines = text.split("\n")
        if text.endswith("\n"):
            lines = lines[:-1]
        for line in lines:
            line = line.rstrip("\r")
            if self._response:
                if line.strip():
                    self._response.append(line)
                else:
                    self._finish_response()
                continue
            if not line.strip():
                continue
            if line[0] in "=?":
                self._response = [line]
            else:
                self.log(f"Unexpected output: {line}", "❓", level=logging.WARNING)

    def _finish_response(self):
        lines, self._response = self._response, []
        head = lines[0]
        pending = self.command_callbacks.popleft() if self.command_callbacks else None
        if head[0] == "=":
            payload = "\n".join([_strip_id(head[1:])] + lines[1:]).strip()
            if pending and pending.cb:
                pending.cb(payload)
            return
        msg = "\n".join(lines)
        self.log(msg, "❗", level=logging.ERROR)
        if pending and pending.final and pending.eb:
            pending.eb(EngineError(msg))

    def feed_stderr(self, data: str):
        self._stderr_buffer += data
        if not self._stderr_buffer.endswith("\n"):
            return
        lines, self._stderr_buffer = self._stderr_buffer.split("\n"), ""
        state = self.game.state or {}
        move_count = len(state.get("moves") or [])
        for line in lines:
            if not line.strip():
                continue
            res = self.chatter.feed(line, move_count)
            if isinstance(res, dict):
                self.game.send_chat(res, move_count + 1, CHAT_TYPE)
            if res is None:
                self.log(f"stderr: {line}", level=logging.INFO)
            else:
                debug(f"stderr: {line}", gid=self.game.game_id)

    # -----------------
    # GTP conversation
    # -----------------
    def load_state(self, state: dict, eb=None):
        """Replay the whole game: board, komi, handicap stones, then every move."""
        try:
            width = int(state["width"])
            self.command(f"boardsize {width}", eb=eb)
            self.command("clear_board", eb=eb)
            self.command(f"komi {state.get('komi', 0)}", eb=eb)

            initial = state.get("initial_state") or {}
            black = decode_moves(initial.get("black") or "", width)
            white = decode_moves(initial.get("white") or "", width)
            if black:
                vertices = " ".join(move2gtpvertex(m, width) for m in black)
                self.command(f"set_free_handicap {vertices}", eb=eb)
            # no white counterpart of set_free_handicap, so those are plain moves
            for m in white:
                self.command(f"play white {move2gtpvertex(m, width)}", eb=eb)

            color = state.get("initial_player") or "black"
            handicaps_left = int(state.get("handicap") or 0)
            for m in decode_moves(state.get("moves") or [], width):
                c = COLOR_NAMES.get(m.color, color) if m.edited else color
                self.command(f"play {c} {move2gtpvertex(m, width)}", eb=eb)
                if m.edited:
                    continue
                if state.get("free_handicap_placement") and handicaps_left > 1:
                    handicaps_left -= 1
                else:
                    color = "white" if color == "black" else "black"
        except Exception as e:
            log_exc("load_state", e, gid=self.game.game_id)
            if eb:
                eb(e)

    def load_clock(self, state: dict):
        if self.settings.no_clock:
            return
        now_ms = time.time() * 1000 - self.game.conn.session.clock_drift
        buffer_ms = self.settings.startup_buffer_sec * 1000 if self.firstmove else 0
        cmds = clock_commands(state, now_ms, buffer_ms, kgs_time=self.kgs_time)
        if not cmds:
            self.log(f"No time commands for system {time_system(state.get('time_control'))!r}", level=logging.DEBUG)
        for cmd in cmds:
            self.command(cmd)

    def genmove(self, state: dict, cb, eb=None):
        if self.settings.kgs_time == "auto" and not self.settings.json and not self.settings.no_clock:
            def known(reply):
                self.kgs_time = reply.strip().lower() == "true"
                self._genmove(state, cb, eb)

            def unknown(err):
                if self.dead or (self.proc is not None and self.proc.returncode is not None):
                    if eb:
                        eb(err)
                    return
                # engine without known_command: plain GTP time settings
                self.kgs_time = False
                self._genmove(state, cb, eb)

            self.command("known_command kgs-time_settings", known, unknown, final=True)
        else:
            self._genmove(state, cb, eb)

    def _genmove(self, state: dict, cb, eb=None):
        try:
            self.load_clock(state)
        except Exception as e:
            log_exc("load_clock", e, gid=self.game.game_id)
            if eb:
                eb(e)
            return
        self.firstmove = False
        width = int(state.get("width") or 19)
        self.command(
            f"genmove {self.game.my_color}",
            lambda reply: cb(parse_genmove(reply, width)),
            eb,
            final=True,
        )

    def send_move(self, move: Move, width: int, color: str):
        debug(f"Calling send_move with {move2gtpvertex(move, width)}", gid=self.game.game_id)
        self.command(f"play {color} {move2gtpvertex(move, width)}")

    def final_score(self, cb):
        self.command("final_score", lambda score: cb({"score": score}), final=True)

    def showboard(self, cb):
        self.command("showboard", lambda board: cb({"board": board}), final=True)


def _strip_id(rest: str) -> str:
    # "=12 D4" -> " D4"; GTP ids are optional and never used here
    i = 0
    while i < len(rest) and rest[i].isdigit():
        i += 1
    return rest[i:]

# move_codec.py — OGS move records <-> GTP vertices
"""
OGS sends moves in three shapes:

- packed letters, two per move ("ddpp"), where "!<color>" in front of a pair
  marks an edited stone (free handicap placement, admin edits)
- human coordinates ("D16Q4"), letters skipping "i", rows counted from the bottom
- arrays of numbers, [x, y, timedelta, color, {extra}] or a list of those

Everything decodes to a list of Move; off-board coordinates become the pass
sentinel (-1, -1).
"""
import re
from dataclasses import dataclass, field
from typing import List, Tuple

LETTERS = "abcdefghijklmnopqrstuvwxyz"
GTP_LETTERS = "abcdefghjklmnopqrstuvwxyz"  # no "i"
PASS_MARK = ".."

_PRETTY_RE = re.compile(r"[a-zA-Z][0-9]")
_PRETTY_SPLIT_RE = re.compile(r"([a-zA-Z][0-9]+|[.][.])")


@dataclass
class Move:
    x: int
    y: int
    color: int = 0          # 1 black, 2 white, 0 unknown
    edited: bool = False
    timedelta: float = -1
    extra: dict = field(default_factory=dict)

    @property
    def is_pass(self) -> bool:
        return self.x < 0


def char2num(ch: str) -> int:
    if ch == ".":
        return -1
    return LETTERS.find(ch)


def num2char(num: int) -> str:
    if num < 0:
        return "."
    return LETTERS[num]


def gtpchar2num(ch: str) -> int:
    if not ch or ch == ".":
        return -1
    return GTP_LETTERS.find(ch.lower())


def num2gtpchar(num: int) -> str:
    if num < 0:
        return "."
    return GTP_LETTERS[num]


def _on_board(x: int, y: int, width: int, height: int) -> Tuple[int, int]:
    if x < 0 or y < 0 or (width and x >= width) or (height and y >= height):
        return -1, -1
    return x, y


def _decode_array(arr) -> Move:
    extra = arr[4] if len(arr) > 4 and isinstance(arr[4], dict) else {}
    return Move(
        x=int(arr[0]),
        y=int(arr[1]),
        timedelta=arr[2] if len(arr) > 2 else -1,
        color=int(arr[3]) if len(arr) > 3 else 0,
        edited=bool(extra.get("edited", False)),
        extra={k: v for k, v in extra.items() if k != "edited"},
    )


def decode_moves(move_obj, width: int, height: int = None) -> List[Move]:
    """Decode any OGS move encoding into a list of Move."""
    height = width if height is None else height
    out: List[Move] = []

    if isinstance(move_obj, (list, tuple)):
        if move_obj and isinstance(move_obj[0], (int, float)):
            mv = _decode_array(move_obj)
            mv.x, mv.y = _on_board(mv.x, mv.y, width, height)
            return [mv]
        for arr in move_obj:
            if not isinstance(arr, (list, tuple)):
                raise ValueError(f"Unrecognized move format: {arr!r}")
            mv = _decode_array(arr)
            mv.x, mv.y = _on_board(mv.x, mv.y, width, height)
            out.append(mv)
        return out

    if not isinstance(move_obj, str):
        raise ValueError(f"Invalid move format: {move_obj!r}")

    if _PRETTY_RE.search(move_obj):
        parts = _PRETTY_SPLIT_RE.split(move_obj)
        for i, part in enumerate(parts):
            if i % 2 == 0:
                # text between matches must be empty
                if part.strip():
                    raise ValueError(f"Unparsed move input: {part!r}")
                continue
            if part == PASS_MARK:
                out.append(Move(-1, -1))
                continue
            x = gtpchar2num(part[0])
            y = height - int(part[1:])
            x, y = _on_board(x, y, width, height)
            out.append(Move(x, y))
        return out

    i = 0
    while i < len(move_obj) - 1:
        edited = False
        color = 0
        if move_obj[i] == "!":
            edited = True
            color = int(move_obj[i + 1])
            i += 2
            if i >= len(move_obj) - 1:
                raise ValueError(f"Truncated edited move in {move_obj!r}")
        x, y = _on_board(char2num(move_obj[i]), char2num(move_obj[i + 1]), width, height)
        out.append(Move(x, y, color=color, edited=edited))
        i += 2
    return out


def encode_move(move: Move) -> str:
    """Packed two-letter form; pass/resign become ".."."""
    if move.x < 0:
        return PASS_MARK
    return num2char(move.x) + num2char(move.y)


def encode_moves(moves: List[Move]) -> str:
    out = []
    for mv in moves:
        if mv.edited:
            out.append(f"!{mv.color}")
        out.append(encode_move(mv))
    return "".join(out)


def encode_pretty(moves: List[Move], height: int) -> str:
    """Human coordinate form ("D16Q4"), the inverse of the pretty decoder."""
    out = []
    for mv in moves:
        if mv.x < 0:
            out.append(PASS_MARK)
        else:
            out.append(num2gtpchar(mv.x).upper() + str(height - mv.y))
    return "".join(out)


def move2gtpvertex(move: Move, board_size: int) -> str:
    if move.x < 0:
        return "pass"
    return num2gtpchar(move.x).upper() + str(board_size - move.y)


def gtpvertex2xy(vertex: str, board_size: int) -> Tuple[int, int]:
    """GTP vertex -> (x, y); "pass" and anything unreadable give (-1, -1)."""
    v = (vertex or "").strip().lower()
    if not v or v == "pass":
        return -1, -1
    x = gtpchar2num(v[0])
    try:
        y = board_size - int(v[1:])
    except ValueError:
        return -1, -1
    return _on_board(x, y, board_size, board_size)

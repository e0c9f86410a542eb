# compute_time_management.py
"""
OGS clock -> GTP time commands.

GTP v2 only knows Canadian byoyomi (absolute is Canadian with a zero
period). kgs-time_settings adds Japanese byoyomi. Everything else OGS
offers is squeezed into one of those:

- absolute : time_settings <total> 0 0
- canadian : native
- byoyomi  : kgs-time_settings when the engine has it, otherwise the last
             period is a 1-stone Canadian period and the other periods are
             folded into main time
- fischer  : Canadian with one 1-stone period the size of the increment
- simple   : Canadian that starts immediately, 1 stone per period

Main-time values are floored at 0, anything that is a period budget is
floored at 1 so the engine never reads it as "no time".
"""
import math
from typing import List, Optional


def _floor0(v: float) -> int:
    return max(int(math.floor(v)), 0)


def _floor1(v: float) -> int:
    return max(int(math.floor(v)), 1)


def _num(v) -> str:
    v = float(v or 0)
    return str(int(v)) if v.is_integer() else str(v)


def time_system(time_control: dict) -> str:
    tc = time_control or {}
    return (tc.get("system") or tc.get("time_control") or "").lower()


def clock_offsets(clock: dict, now_ms: float, startup_buffer_ms: float = 0):
    """Seconds spent since the last move by whoever is on the clock.

    Returns (black_offset, white_offset); the side not on move gets 0.
    """
    elapsed = (startup_buffer_ms + now_ms - float(clock.get("last_move") or now_ms)) / 1000.0
    if clock.get("current_player") == clock.get("black_player_id"):
        return elapsed, 0.0
    return 0.0, elapsed


def _side(clock: dict, color: str) -> dict:
    t = clock.get(f"{color}_time")
    return t if isinstance(t, dict) else {}


def clock_commands(
    state: dict,
    now_ms: float,
    startup_buffer_ms: float = 0,
    kgs_time: bool = False,
) -> List[str]:
    """
    Build the GTP time commands for the position in `state`.

    now_ms must already be in the server's time frame (local clock minus
    measured drift). startup_buffer_ms is only non-zero for the first
    genmove a fresh engine process sees.
    """
    clock = state.get("clock") or {}
    tc = state.get("time_control") or {}
    system = time_system(tc)
    black_offset, white_offset = clock_offsets(clock, now_ms, startup_buffer_ms)
    black_on_move = clock.get("current_player") == clock.get("black_player_id")
    bt = _side(clock, "black")
    wt = _side(clock, "white")
    cmds: List[str] = []

    if system == "absolute":
        black_left = _floor0(float(bt.get("thinking_time", 0)) - black_offset)
        white_left = _floor0(float(wt.get("thinking_time", 0)) - white_offset)
        if kgs_time:
            cmds.append(f"kgs-time_settings absolute {_num(tc.get('total_time'))}")
        else:
            cmds.append(f"time_settings {_num(tc.get('total_time'))} 0 0")
        cmds.append(f"time_left black {black_left} 0")
        cmds.append(f"time_left white {white_left} 0")

    elif system == "byoyomi":
        main_time = float(tc.get("main_time", 0))
        period_time = float(tc.get("period_time", 0))
        periods = int(tc.get("periods", 1))
        if kgs_time:
            black_left = _floor0(float(bt.get("thinking_time", 0)) - black_offset)
            white_left = _floor0(float(wt.get("thinking_time", 0)) - white_offset)
            on_move_offset = black_offset if black_on_move else white_offset
            cmds.append(
                f"kgs-time_settings byoyomi {_num(main_time)} "
                f"{_floor1(period_time - on_move_offset)} {periods}"
            )
            # out of main time: seconds left in the current period, and periods left
            for color, left, side, off in (
                ("black", black_left, bt, black_offset),
                ("white", white_left, wt, white_offset),
            ):
                if left > 0:
                    cmds.append(f"time_left {color} {left} 0")
                else:
                    cmds.append(f"time_left {color} {_floor1(period_time - off)} {int(side.get('periods', 1))}")
        else:
            # N-1 periods go into main time, the last one is a 1-stone Canadian period
            black_left = _floor0(
                float(bt.get("thinking_time", 0)) - black_offset
                + (int(bt.get("periods", 1)) - 1) * period_time
            )
            white_left = _floor0(
                float(wt.get("thinking_time", 0)) - white_offset
                + (int(wt.get("periods", 1)) - 1) * period_time
            )
            if black_on_move:
                period_offset = 0 if black_left > 0 else black_offset
            else:
                period_offset = 0 if white_left > 0 else white_offset
            cmds.append(
                f"time_settings {_num(main_time + (periods - 1) * period_time)} "
                f"{_floor1(period_time - period_offset)} 1"
            )
            cmds.append(
                "time_left black "
                + (f"{black_left} 0" if black_left > 0 else f"{_floor1(period_time - black_offset)} 1")
            )
            cmds.append(
                "time_left white "
                + (f"{white_left} 0" if white_left > 0 else f"{_floor1(period_time - white_offset)} 1")
            )

    elif system == "canadian":
        black_left = _floor0(float(bt.get("thinking_time", 0)) - black_offset)
        white_left = _floor0(float(wt.get("thinking_time", 0)) - white_offset)
        head = "kgs-time_settings canadian" if kgs_time else "time_settings"
        cmds.append(
            f"{head} {_num(tc.get('main_time'))} {_num(tc.get('period_time'))} "
            f"{int(tc.get('stones_per_period', 1))}"
        )
        for color, left, side, off in (
            ("black", black_left, bt, black_offset),
            ("white", white_left, wt, white_offset),
        ):
            if left > 0:
                cmds.append(f"time_left {color} {left} 0")
            else:
                block = _floor1(float(side.get("block_time", 0)) - off)
                stones = max(int(side.get("moves_left", 1)), 1)
                cmds.append(f"time_left {color} {block} {stones}")

    elif system == "fischer":
        inc = float(tc.get("time_increment", 0))
        main = max(float(tc.get("initial_time", 0)) - inc, 0)
        black_left = _floor1(float(bt.get("thinking_time", 0)) - black_offset)
        white_left = _floor1(float(wt.get("thinking_time", 0)) - white_offset)
        head = "kgs-time_settings canadian" if kgs_time else "time_settings"
        cmds.append(f"{head} {_num(main)} {_floor1(inc)} 1")
        cmds.append(f"time_left black {black_left} 1")
        cmds.append(f"time_left white {white_left} 1")

    elif system == "simple":
        cmds.append(f"time_settings 0 {_floor1(float(tc.get('per_move', 0)))} 1")
        deadline = clock.get("black_time") if black_on_move else clock.get("white_time")
        if isinstance(deadline, (int, float)) and deadline > 0:
            left = _floor1((deadline - now_ms - startup_buffer_ms) / 1000.0)
        else:
            left = _floor1(float(tc.get("per_move", 0)) - (black_offset if black_on_move else white_offset))
        if black_on_move:
            cmds.append(f"time_left black {left} 1")
            cmds.append("time_left white 1 1")
        else:
            cmds.append("time_left black 1 1")
            cmds.append(f"time_left white {left} 1")

    # "none" is never sent to bots, nothing to do for it
    return cmds


def describe(time_control: Optional[dict]) -> str:
    """Short label for logs, e.g. "byoyomi 600+5x30"."""
    tc = time_control or {}
    system = time_system(tc)
    if system == "byoyomi":
        return f"byoyomi {_num(tc.get('main_time'))}+{tc.get('periods')}x{_num(tc.get('period_time'))}"
    if system == "canadian":
        return f"canadian {_num(tc.get('main_time'))}+{_num(tc.get('period_time'))}/{tc.get('stones_per_period')}"
    if system == "fischer":
        return f"fischer {_num(tc.get('initial_time'))}+{_num(tc.get('time_increment'))}"
    if system == "simple":
        return f"simple {_num(tc.get('per_move'))}/move"
    if system == "absolute":
        return f"absolute {_num(tc.get('total_time'))}"
    return system or "n/a"

# chatter.py — turns engine stderr chatter into OGS live commentary
"""
Leela-style engines print search info on stderr. Two line shapes matter:

  summary    "72622 visits, score 59.56% (from 59.46%) PV: R11 F16 G16 ..."
  candidate  " P5 ->  176749 (W: 65.66%) (U: 55.83%) (V: 77.66%:   4924) (N: 71.7%) PV: P5 P2 ..."
             " P5 ->    4924 (W: 65.66%) (N: 71.7%) PV: P5 P2 ..."     (no value network)

Candidates are remembered until the next summary; a summary with more than
one move becomes an "analysis" chat body and clears them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Union

from move_codec import encode_move, gtpvertex2xy, Move

SUMMARY_RE = re.compile(r"(?P<visits>\d*) visits, score (?P<score>.*) \(from.* PV: (?P<pv>.*)")
RICH_CANDIDATE_RE = re.compile(
    r"\s*(?P<move>.*) ->\s+(?P<nodes>\d*) \(W: (?P<winrate>[^%]*%)\) \(U: (?P<mcwinrate>[^%]*%)\)"
    r" \(V: (?P<vnwinrate>[^%]*%).* PV: (?P<pv>.*)"
)
BASIC_CANDIDATE_RE = re.compile(
    r"\s*(?P<move>.*) ->\s+(?P<nodes>\d*) \([UW]: (?P<winrate>[^%]*%)\) .* PV: (?P<pv>.*)"
)

CHAT_TYPE = "malkovich"


@dataclass
class Summary:
    visits: str
    score: str
    pv: list


@dataclass
class Candidate:
    move: str
    nodecount: str
    winrate: str
    moves: str
    mcwinrate: Optional[str] = None
    vnwinrate: Optional[str] = None

    @property
    def label(self) -> str:
        if self.vnwinrate:
            return f"{self.winrate} (MC {self.mcwinrate} VN {self.vnwinrate}) {self.nodecount} playouts"
        return f"{self.winrate} {self.nodecount} playouts"


def parse_line(line: str) -> Union[Summary, Candidate, None]:
    """Classify one stderr line; None for anything else."""
    m = SUMMARY_RE.search(line)
    if m:
        return Summary(visits=m["visits"], score=m["score"], pv=m["pv"].split())
    m = RICH_CANDIDATE_RE.match(line)
    if m:
        return Candidate(
            move=m["move"].strip(),
            nodecount=m["nodes"],
            winrate=m["winrate"],
            mcwinrate=m["mcwinrate"],
            vnwinrate=m["vnwinrate"],
            moves=m["pv"].strip(),
        )
    m = BASIC_CANDIDATE_RE.match(line)
    if m:
        return Candidate(
            move=m["move"].strip(),
            nodecount=m["nodes"],
            winrate=m["winrate"],
            moves=m["pv"].strip(),
        )
    return None


class Chatter:
    """
    Per-engine commentary state.

    feed(line) returns a chat body dict when a summary line should be posted,
    True when the line was search info that was consumed, and None when the
    line is plain diagnostic output the caller should just log.
    """

    def __init__(self, board_size: int):
        self.board_size = board_size
        self.variations: Dict[str, Candidate] = {}

    def analysis_body(self, summary: Summary, move_count: int) -> Optional[dict]:
        if len(summary.pv) <= 1:
            return None
        moves = ""
        marks = {}
        for i, vertex in enumerate(summary.pv):
            x, y = gtpvertex2xy(vertex, self.board_size)
            coord = encode_move(Move(x, y))
            moves += coord
            if i == 0:
                marks["circle"] = coord
            else:
                marks[str(i)] = coord
        cand = self.variations.get(summary.pv[0])
        return {
            "type": "analysis",
            "name": cand.label if cand else summary.score,
            "from": move_count,
            "marks": marks,
            "moves": moves,
        }

    def feed(self, line: str, move_count: int):
        parsed = parse_line(line)
        if isinstance(parsed, Summary):
            body = self.analysis_body(parsed, move_count)
            self.variations = {}
            return body if body else True
        if isinstance(parsed, Candidate):
            self.variations[parsed.move] = parsed
            return True
        return None

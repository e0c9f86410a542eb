"""Tests for the engine search-info parser."""
from chatter import Candidate, Chatter, Summary, parse_line

SUMMARY = "72622 visits, score 59.56% (from 59.46%) PV: R11 F16 G16"
RICH = " R11 ->  176749 (W: 65.66%) (U: 55.83%) (V: 77.66%:   4924) (N: 71.7%) PV: R11 F16 G16"
BASIC = " R11 ->    4924 (W: 65.66%) (N: 71.7%) PV: R11 F16"


def test_summary_line():
    parsed = parse_line(SUMMARY)
    assert parsed == Summary(visits="72622", score="59.56%", pv=["R11", "F16", "G16"])


def test_rich_candidate_line():
    parsed = parse_line(RICH)
    assert isinstance(parsed, Candidate)
    assert (parsed.move, parsed.nodecount, parsed.winrate) == ("R11", "176749", "65.66%")
    assert (parsed.mcwinrate, parsed.vnwinrate) == ("55.83%", "77.66%")
    assert parsed.moves == "R11 F16 G16"
    assert parsed.label == "65.66% (MC 55.83% VN 77.66%) 176749 playouts"


def test_basic_candidate_line():
    parsed = parse_line(BASIC)
    assert isinstance(parsed, Candidate)
    assert (parsed.move, parsed.nodecount, parsed.winrate) == ("R11", "4924", "65.66%")
    assert parsed.vnwinrate is None
    assert parsed.label == "65.66% 4924 playouts"


def test_other_output_is_not_search_info():
    assert parse_line("Leela Zero 0.17  Copyright (C) 2017-2019") is None
    assert parse_line("") is None


def test_summary_becomes_analysis_body():
    chatter = Chatter(19)
    assert chatter.feed(RICH, 10) is True
    body = chatter.feed(SUMMARY, 10)
    assert body == {
        "type": "analysis",
        "name": "65.66% (MC 55.83% VN 77.66%) 176749 playouts",
        "from": 10,
        "marks": {"circle": "qi", "1": "fd", "2": "gd"},
        "moves": "qifdgd",
    }
    # candidates are forgotten once a summary went out
    assert chatter.variations == {}


def test_summary_without_candidate_uses_score():
    body = Chatter(19).feed(SUMMARY, 0)
    assert body["name"] == "59.56%"


def test_single_move_pv_is_not_posted():
    chatter = Chatter(19)
    assert chatter.feed("10 visits, score 50.00% (from 49.00%) PV: D4", 3) is True


def test_plain_line_passes_through():
    assert Chatter(19).feed("NN eval=0.5", 0) is None

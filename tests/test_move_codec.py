"""Tests for OGS move decoding/encoding and GTP vertices."""
import pytest

from move_codec import (
    Move,
    decode_moves,
    encode_move,
    encode_moves,
    encode_pretty,
    gtpvertex2xy,
    move2gtpvertex,
)


def test_packed_letters():
    moves = decode_moves("ddpp", 19)
    assert [(m.x, m.y) for m in moves] == [(3, 3), (15, 15)]
    assert not any(m.edited for m in moves)


def test_packed_edited_stone_carries_color():
    moves = decode_moves("!1dd!2pp", 19)
    assert [(m.x, m.y, m.color, m.edited) for m in moves] == [(3, 3, 1, True), (15, 15, 2, True)]
    assert encode_moves(moves) == "!1dd!2pp"


def test_packed_pass_and_off_board():
    assert decode_moves("..", 19)[0].is_pass
    # "zz" is off a 9x9 board
    assert (decode_moves("zz", 9)[0].x, decode_moves("zz", 9)[0].y) == (-1, -1)


def test_pretty_coordinates_skip_i():
    moves = decode_moves("D16Q4", 19)
    assert [(m.x, m.y) for m in moves] == [(3, 3), (15, 15)]
    assert decode_moves("J10", 19)[0].x == 8
    assert encode_pretty(moves, 19) == "D16Q4"


def test_pretty_with_pass():
    moves = decode_moves("D16..", 19)
    assert moves[1].is_pass
    assert encode_pretty(moves, 19) == "D16.."


def test_pretty_garbage_between_moves_is_rejected():
    with pytest.raises(ValueError):
        decode_moves("D16 xx Q4", 19)


def test_array_forms():
    single = decode_moves([3, 3, 1234.5], 19)
    assert (single[0].x, single[0].y, single[0].timedelta) == (3, 3, 1234.5)

    many = decode_moves([[3, 3, 10], [-1, -1, 20], [15, 15, 30, 2, {"edited": True}]], 19)
    assert [(m.x, m.y) for m in many] == [(3, 3), (-1, -1), (15, 15)]
    assert many[2].edited and many[2].color == 2


def test_array_off_board_becomes_pass():
    assert decode_moves([19, 0, 5], 19)[0].is_pass


def test_invalid_type():
    with pytest.raises(ValueError):
        decode_moves(12, 19)


def test_encode_pass():
    assert encode_move(Move(-1, -1)) == ".."
    assert encode_move(Move(0, 18)) == "as"


@pytest.mark.parametrize("size", [9, 13, 19])
def test_vertex_bijection(size):
    for x in range(size):
        for y in range(size):
            vertex = move2gtpvertex(Move(x, y), size)
            assert "I" not in vertex
            assert gtpvertex2xy(vertex, size) == (x, y)


def test_vertex_examples():
    assert move2gtpvertex(Move(3, 3), 19) == "D16"
    assert move2gtpvertex(Move(8, 0), 19) == "J19"
    assert move2gtpvertex(Move(-1, -1), 19) == "pass"
    assert gtpvertex2xy("pass", 19) == (-1, -1)
    assert gtpvertex2xy("d16", 19) == (3, 3)
    assert gtpvertex2xy("resign", 19) == (-1, -1)

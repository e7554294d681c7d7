import pytest

from inkplot.program import (
    MotionProgram,
    Move,
    MoveKind,
    dip_comment,
    find_dip_markers,
    is_command,
    parse_move,
    strip_comment,
)


def test_move_formatting():
    assert Move.rapid(1, 2).to_gcode() == "G0 X1.000 Y2.000"
    assert Move.linear(1.5, -2, feed=1600).to_gcode() == "G1 X1.500 Y-2.000 F1600"
    assert Move.rapid(z=5).to_gcode() == "G0 Z5.000"
    assert Move.pause(0.5).to_gcode() == "G4 P0.5"
    assert Move.rapid(0, 0, comment="Backlash Fix").to_gcode() == "G0 X0.000 Y0.000 ; Backlash Fix"


def test_comments_and_commands():
    assert strip_comment("G1 X1 ; draw") == "G1 X1"
    assert strip_comment("G0 (travel) X5") == "G0  X5"
    assert not is_command("%")
    assert not is_command("   ")
    assert not is_command("(Dip #1 initial)")
    assert not is_command("; only a comment")
    assert is_command("M30")


def test_parse_move():
    move = parse_move("G1 X10 Y-2.5 F800 ; comment")
    assert move.kind is MoveKind.LINEAR
    assert (move.x, move.y, move.z, move.feed) == (10.0, -2.5, None, 800.0)
    assert parse_move("g0 z5").z == 5.0
    assert parse_move("G4 P2").dwell == 2.0
    assert parse_move("M30") is None
    assert parse_move("(G1 X5)") is None


def test_program_timing():
    program = MotionProgram.from_moves(
        [Move.rapid(50, 0), Move.linear(50, 16, feed=1600), Move.pause(0.5)],
        start=(0.0, 0.0, 5.0),
    )
    first, second, third = program.moves
    assert first.duration == pytest.approx(50 / 5000 * 60)
    assert second.start_time == pytest.approx(first.duration)
    assert second.duration == pytest.approx(0.6)
    assert third.duration == pytest.approx(0.5)
    assert program.total_time == pytest.approx(first.duration + 0.6 + 0.5)
    assert program.move_at(second.start_time + 0.1) == second
    assert program.move_at(program.total_time + 1) is None


def test_program_from_lines_uses_default_feed_and_skips_other_lines():
    lines = ["%", "G21 G90", "G0 Z5", "G1 X16 Y0", "M30", "%"]
    program = MotionProgram.from_lines(lines, default_feed=960)
    assert len(program) == 2
    assert program.moves[1].duration == pytest.approx(16 / 960 * 60)
    assert program.to_lines() == ["G0 Z5.000", "G1 X16.000 Y0.000"]


def test_dip_markers():
    lines = ["%", dip_comment(1, "initial"), "G0 X1 Y1", dip_comment(2, "at dist 51.2 - Color 3")]
    assert lines[1] == "(Dip #1 initial)"
    assert find_dip_markers(lines) == [(1, 1), (3, 2)]
    assert find_dip_markers(["( dip #7 )"]) == [(0, 7)]

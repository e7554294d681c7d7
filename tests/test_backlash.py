import pytest

from inkplot.backlash import BacklashConfig, BacklashState, compensate_move, compensate_path
from inkplot.program import MoveKind


def _run(config, targets):
    state = BacklashState.initial(config)
    out = []
    for target in targets:
        state, moves = compensate_move(config, state, target, rapid=False, feed=1600)
        out.append(moves)
    return state, out


def test_single_reversal_inserts_one_fix_move():
    config = BacklashConfig(x=2.0)
    state, out = _run(config, [(0, 0), (10, 0), (5, 0)])
    fixes = [m for moves in out for m in moves if m.comment == "Backlash Fix"]
    assert len(fixes) == 1
    assert [len(moves) for moves in out] == [1, 1, 2]
    fix, move = out[2]
    assert fix.kind is MoveKind.RAPID
    assert fix.x == pytest.approx(8.0)
    assert move.kind is MoveKind.LINEAR
    assert move.x == pytest.approx(5.0 - 2.0)
    assert state.offset == (-2.0, 0.0)
    assert state.cursor == (5, 0)


def test_offset_returns_when_direction_flips_back():
    config = BacklashConfig(x=1.5)
    state, out = _run(config, [(10, 0), (5, 0), (20, 0)])
    assert state.offset == (0.0, 0.0)
    assert out[2][-1].x == pytest.approx(20.0)


def test_small_deltas_do_not_change_direction():
    config = BacklashConfig(x=2.0, y=2.0)
    state, out = _run(config, [(10, 10), (9.97, 9.97), (20, 20)])
    assert all(len(moves) == 1 for moves in out)
    assert state.offset == (0.0, 0.0)


def test_initial_direction_unknown_skips_first_reversal():
    state, out = _run(BacklashConfig(x=2.0, initial_direction=0), [(-5, 0)])
    assert len(out[0]) == 1
    state, out = _run(BacklashConfig(x=2.0), [(-5, 0)])
    assert len(out[0]) == 2


def test_zero_backlash_never_adds_moves():
    config = BacklashConfig()
    assert not config.enabled
    _, out = _run(config, [(10, 0), (0, 10), (10, 0), (0, 0)])
    assert all(len(moves) == 1 for moves in out)


def test_fold_is_reproducible():
    config = BacklashConfig(x=1.0, y=1.0)
    start = BacklashState.initial(config)
    first = compensate_path(config, start, [(0, 0), (5, 5), (0, 0), (5, -5)], feed=1000)
    second = compensate_path(config, start, [(0, 0), (5, 5), (0, 0), (5, -5)], feed=1000)
    assert first == second
    _, moves = first
    assert moves[0].kind is MoveKind.RAPID
    assert moves[-1].feed == 1000

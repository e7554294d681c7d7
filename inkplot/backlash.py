"""Per-axis backlash compensation.

The compensator is a fold: every call takes the previous
:class:`BacklashState` and returns the next one together with the moves to
emit.  Nothing is stored on module or instance level, so independent
generation runs cannot interfere with each other.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from .geometry import XY
from .program import Move

DIRECTION_THRESHOLD = 0.05


@dataclass(frozen=True)
class BacklashConfig:
    x: float = 0.0
    y: float = 0.0
    threshold: float = DIRECTION_THRESHOLD
    # direction the machine last travelled before the run; 0 means unknown
    initial_direction: int = 1

    @property
    def enabled(self) -> bool:
        return self.x != 0.0 or self.y != 0.0


@dataclass(frozen=True)
class AxisState:
    direction: int = 1  # -1, 0 or 1
    offset: float = 0.0


@dataclass(frozen=True)
class BacklashState:
    x: AxisState = AxisState()
    y: AxisState = AxisState()
    cursor: XY = (0.0, 0.0)  # logical position, without offsets

    @staticmethod
    def initial(config: BacklashConfig, cursor: XY = (0.0, 0.0)) -> "BacklashState":
        axis = AxisState(direction=config.initial_direction)
        return BacklashState(x=axis, y=axis, cursor=cursor)

    @property
    def offset(self) -> XY:
        return self.x.offset, self.y.offset


def _step_axis(axis: AxisState, delta: float, slack: float, threshold: float) -> AxisState:
    if abs(delta) <= threshold:
        return axis
    direction = 1 if delta > 0 else -1
    offset = axis.offset
    if axis.direction != 0 and direction != axis.direction:
        offset += slack if direction > 0 else -slack
    return AxisState(direction=direction, offset=offset)


def compensate_move(
    config: BacklashConfig,
    state: BacklashState,
    target: XY,
    *,
    rapid: bool,
    feed: Optional[float] = None,
) -> Tuple[BacklashState, List[Move]]:
    """Compensate a single move to ``target``.

    Returns the next state and one or two moves: an optional rapid that takes
    up the slack at the current position, then the requested move shifted by
    the accumulated offsets.
    """

    cx, cy = state.cursor
    tx, ty = target
    nx = _step_axis(state.x, tx - cx, config.x, config.threshold)
    ny = _step_axis(state.y, ty - cy, config.y, config.threshold)

    moves: List[Move] = []
    if nx.offset != state.x.offset or ny.offset != state.y.offset:
        moves.append(Move.rapid(cx + nx.offset, cy + ny.offset, comment="Backlash Fix"))

    fx, fy = tx + nx.offset, ty + ny.offset
    if rapid:
        moves.append(Move.rapid(fx, fy))
    else:
        moves.append(Move.linear(fx, fy, feed=feed))
    return replace(state, x=nx, y=ny, cursor=(tx, ty)), moves


def compensate_path(
    config: BacklashConfig,
    state: BacklashState,
    points: Iterable[XY],
    *,
    feed: Optional[float] = None,
) -> Tuple[BacklashState, List[Move]]:
    """Rapid to the first point, then feed through the rest."""

    moves: List[Move] = []
    for i, point in enumerate(points):
        state, out = compensate_move(config, state, point, rapid=(i == 0), feed=feed)
        moves.extend(out)
    return state, moves


__all__ = [
    "DIRECTION_THRESHOLD",
    "BacklashConfig",
    "AxisState",
    "BacklashState",
    "compensate_move",
    "compensate_path",
]

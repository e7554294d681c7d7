"""Ink pickup (dip) scheduling.

A brush or dip pen runs dry after a certain length of line.  The scheduler
counts drawn distance and, once a stroke has finished and the interval has
been exceeded, asks for a dip sequence at the ink station.  Dips never
interrupt a stroke.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .geometry import XY

logger = logging.getLogger(__name__)

DEFAULT_DIP_SEQUENCE = """; Dip sequence
G0 X{dipX} Y{dipY}
G1 Z-2 F500
G4 P0.5
G0 Z{safeZ}
"""

# the well outline the brush circles while it soaks up ink
_WELL_CIRCLE = (
    (40.102, 7.295),
    (40.026, 7.642),
    (40, 8),
    (40.026, 8.358),
    (40.102, 8.705),
    (40.225, 9.041),
    (40.393, 9.362),
    (40.603, 9.668),
    (40.854, 9.957),
    (41.142, 10.226),
    (41.464, 10.475),
    (41.82, 10.701),
    (42.204, 10.902),
    (42.617, 11.078),
    (43.054, 11.225),
    (43.513, 11.343),
    (43.992, 11.429),
    (44.489, 11.482),
    (45, 11.5),
    (45.511, 11.482),
    (46.008, 11.429),
    (46.487, 11.343),
    (46.946, 11.225),
    (47.383, 11.078),
    (47.796, 10.902),
    (48.18, 10.701),
    (48.536, 10.475),
    (48.858, 10.226),
    (49.146, 9.957),
    (49.397, 9.668),
    (49.607, 9.362),
    (49.775, 9.041),
    (49.898, 8.705),
    (49.974, 8.358),
    (50, 8),
    (49.974, 7.642),
    (49.898, 7.295),
    (49.775, 6.959),
    (49.607, 6.638),
    (49.397, 6.332),
    (49.146, 6.043),
    (48.858, 5.774),
    (48.536, 5.525),
    (48.18, 5.299),
    (47.796, 5.098),
    (47.383, 4.922),
    (46.946, 4.775),
    (46.487, 4.657),
    (46.008, 4.571),
    (45.511, 4.518),
    (45, 4.5),
    (44.489, 4.518),
    (43.992, 4.571),
    (43.513, 4.657),
    (43.054, 4.775),
    (42.617, 4.922),
    (42.204, 5.098),
    (41.82, 5.299),
    (41.464, 5.525),
    (41.142, 5.774),
    (40.854, 6.043),
    (40.603, 6.332),
    (40.393, 6.638),
    (40.225, 6.959),
)


def _wiggle_sequence() -> str:
    moves = [f"G1 X{x:g} Y{y:g} Z0 F1200" for x, y in _WELL_CIRCLE]
    moves[0] = moves[0].replace(" Z0 ", " Z0 S800 ")
    lines = [
        "; Colour pickup with a circular wiggle in the well",
        "G1 Z10 F1000",
        "G0 X41 Y5 F1600",
        "G1 Z0 F1000",
        *moves,
        "G1 Z7 F800",
        "G1 X34 Y8 Z1 F1200",
        "G1 X24 Y18 Z8 F500",
        "G1 F1200",
    ]
    return "\n".join(lines) + "\n"


WIGGLE_DIP_SEQUENCE = _wiggle_sequence()

_AXIS_VALUE = re.compile(r"([XY])([-+]?[0-9.]+)", re.IGNORECASE)
_X_WORD = re.compile(r"X([-+]?[0-9.]+)", re.IGNORECASE)
_Y_WORD = re.compile(r"Y([-+]?[0-9.]+)", re.IGNORECASE)


@dataclass(frozen=True)
class DipPoint:
    """A dip inserted after stroke ``after_path_index`` (-1 for the initial dip)."""

    position: XY
    after_path_index: int


def fill_placeholders(template: str, dip_x: float, dip_y: float, safe_z: float) -> str:
    return (
        template.replace("{dipX}", f"{dip_x:g}")
        .replace("{dipY}", f"{dip_y:g}")
        .replace("{safeZ}", f"{safe_z:g}")
    )


def _clean_lines(template: str) -> List[str]:
    out = []
    for line in template.splitlines():
        clean = line.split(";", 1)[0].strip()
        if clean:
            out.append(clean)
    return out


def find_anchor(template: str) -> Optional[XY]:
    """First line carrying both an X and a Y word."""

    for line in template.splitlines():
        code = line.split(";", 1)[0]
        mx = _X_WORD.search(code)
        my = _Y_WORD.search(code)
        if mx and my:
            try:
                return float(mx.group(1)), float(my.group(1))
            except ValueError:
                continue
    return None


def realign_sequence(template: str, target_x: float, target_y: float) -> List[str]:
    """Translate every X/Y in ``template`` so its anchor lands on the target.

    Templates without an anchor are passed through unchanged (comments and
    blank lines removed).
    """

    anchor = find_anchor(template)
    lines = _clean_lines(template)
    if anchor is None:
        logger.warning("Dip sequence has no X/Y anchor; using it unshifted")
        return lines
    shift_x = target_x - anchor[0]
    shift_y = target_y - anchor[1]

    def shift(match: "re.Match[str]") -> str:
        axis = match.group(1).upper()
        try:
            value = float(match.group(2))
        except ValueError:
            return match.group(0)
        value += shift_x if axis == "X" else shift_y
        return f"{axis}{value:.3f}"

    return [_AXIS_VALUE.sub(shift, line) for line in lines]


def build_dip_sequence(
    station: XY, safe_z: float, custom_sequence: str = ""
) -> List[str]:
    """Lines for one dip at ``station``."""

    template = custom_sequence.strip() or DEFAULT_DIP_SEQUENCE
    filled = fill_placeholders(template, station[0], station[1], safe_z)
    return realign_sequence(filled, station[0], station[1])


class DipScheduler:
    """Tracks drawn distance and decides when to dip.

    ``interval <= 0`` or ``enabled=False`` (continuous plotting) turns the
    scheduler off completely, including the initial dip.
    """

    def __init__(self, interval: float, *, enabled: bool = True) -> None:
        self.interval = float(interval)
        self.enabled = bool(enabled) and self.interval > 0
        self.accumulated = 0.0
        self.points: List[DipPoint] = []

    def initial(self, station: XY) -> Optional[DipPoint]:
        if not self.enabled:
            return None
        point = DipPoint(position=station, after_path_index=-1)
        self.points.append(point)
        self.accumulated = 0.0
        return point

    def add_distance(self, length: float) -> None:
        if self.enabled:
            self.accumulated += length

    def stroke_completed(self, path_index: int, station: XY) -> Optional[DipPoint]:
        """Called after each stroke; returns a dip point when one is due."""

        if not self.enabled or self.accumulated <= self.interval:
            return None
        if self.points and path_index <= self.points[-1].after_path_index:
            return None
        point = DipPoint(position=station, after_path_index=path_index)
        self.points.append(point)
        logger.debug("Dip after stroke %d at %.1f mm", path_index, self.accumulated)
        self.accumulated = 0.0
        return point

    @property
    def count(self) -> int:
        return len(self.points)


__all__ = [
    "DEFAULT_DIP_SEQUENCE",
    "WIGGLE_DIP_SEQUENCE",
    "DipPoint",
    "DipScheduler",
    "fill_placeholders",
    "find_anchor",
    "realign_sequence",
    "build_dip_sequence",
]

"""Motion program model.

A motion program is the ordered list of machine moves produced for one
generation request.  The text form (one command per line) is what gets
streamed to the controller; :meth:`MotionProgram.from_lines` recovers the
timed moves from that text for previews and time estimates.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

RAPID_SPEED = 5000.0  # mm/min assumed for G0 when estimating time
DEFAULT_FEED = 1600.0
DEFAULT_DWELL_S = 0.5
INITIAL_Z = 5.0

_WORD = re.compile(r"([XYZFP])\s*([-+]?(?:\d+\.?\d*|\.\d+))", re.IGNORECASE)
_DIP_MARKER = re.compile(r"\(\s*Dip\s+#(\d+)\b[^)]*\)", re.IGNORECASE)
_PAREN_COMMENT = re.compile(r"\([^)]*\)")


class MoveKind(str, Enum):
    RAPID = "G0"
    LINEAR = "G1"
    DWELL = "G4"


def _fmt(value: float) -> str:
    return f"{value:.3f}"


@dataclass(frozen=True)
class Move:
    """A single rapid, linear or dwell command.

    ``x``/``y``/``z`` left as ``None`` keep the current coordinate.
    ``duration`` and ``start_time`` are derived and only meaningful for moves
    held by a :class:`MotionProgram`.
    """

    kind: MoveKind
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    feed: Optional[float] = None
    dwell: float = 0.0
    comment: Optional[str] = None
    duration: float = 0.0
    start_time: float = 0.0

    @staticmethod
    def rapid(x: Optional[float] = None, y: Optional[float] = None, z: Optional[float] = None,
              *, feed: Optional[float] = None, comment: Optional[str] = None) -> "Move":
        return Move(MoveKind.RAPID, x, y, z, feed=feed, comment=comment)

    @staticmethod
    def linear(x: Optional[float] = None, y: Optional[float] = None, z: Optional[float] = None,
               *, feed: Optional[float] = None, comment: Optional[str] = None) -> "Move":
        return Move(MoveKind.LINEAR, x, y, z, feed=feed, comment=comment)

    @staticmethod
    def pause(seconds: float, *, comment: Optional[str] = None) -> "Move":
        return Move(MoveKind.DWELL, dwell=float(seconds), comment=comment)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def target(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return self.x, self.y, self.z

    def to_gcode(self) -> str:
        if self.kind is MoveKind.DWELL:
            parts = [self.kind.value, f"P{self.dwell:g}"]
        else:
            parts = [self.kind.value]
            for axis, value in (("X", self.x), ("Y", self.y), ("Z", self.z)):
                if value is not None:
                    parts.append(f"{axis}{_fmt(value)}")
            if self.feed is not None:
                parts.append(f"F{self.feed:g}")
        line = " ".join(parts)
        if self.comment:
            line += f" ; {self.comment}"
        return line


def strip_comment(line: str) -> str:
    """Return the command part of ``line`` without ``;`` or ``( )`` comments."""

    return _PAREN_COMMENT.sub("", line.split(";", 1)[0]).strip()


def is_command(line: str) -> bool:
    """True when ``line`` carries something the controller must execute."""

    text = line.strip()
    if not text or text == "%":
        return False
    return bool(strip_comment(text))


def parse_move(line: str) -> Optional[Move]:
    """Parse a ``G0``/``G1``/``G4`` line; other commands return ``None``."""

    text = strip_comment(line).upper()
    if not text:
        return None
    head = text.split()[0]
    if head in ("G0", "G00"):
        kind = MoveKind.RAPID
    elif head in ("G1", "G01"):
        kind = MoveKind.LINEAR
    elif head in ("G4", "G04"):
        kind = MoveKind.DWELL
    else:
        return None
    words = {k.upper(): float(v) for k, v in _WORD.findall(text[len(head):])}
    if kind is MoveKind.DWELL:
        return Move.pause(words.get("P", DEFAULT_DWELL_S))
    return Move(kind, words.get("X"), words.get("Y"), words.get("Z"), feed=words.get("F"))


@dataclass(frozen=True)
class MotionProgram:
    """Immutable ordered moves with cumulative timing."""

    moves: Tuple[Move, ...] = ()
    total_time: float = 0.0

    @staticmethod
    def from_moves(
        moves: Iterable[Move],
        *,
        start: Tuple[float, float, float] = (0.0, 0.0, INITIAL_Z),
        default_feed: float = DEFAULT_FEED,
        rapid_speed: float = RAPID_SPEED,
    ) -> "MotionProgram":
        x, y, z = start
        feed = default_feed
        clock = 0.0
        timed: List[Move] = []
        for move in moves:
            if move.kind is MoveKind.DWELL:
                duration = max(0.0, move.dwell)
            else:
                nx = x if move.x is None else move.x
                ny = y if move.y is None else move.y
                nz = z if move.z is None else move.z
                if move.feed is not None and move.feed > 0:
                    feed = move.feed
                speed = rapid_speed if move.kind is MoveKind.RAPID else feed
                dist = math.sqrt((nx - x) ** 2 + (ny - y) ** 2 + (nz - z) ** 2)
                duration = dist / speed * 60.0 if dist > 0 else 0.0
                x, y, z = nx, ny, nz
            timed.append(replace(move, duration=duration, start_time=clock))
            clock += duration
        return MotionProgram(moves=tuple(timed), total_time=clock)

    @staticmethod
    def from_lines(lines: Iterable[str], **kwargs) -> "MotionProgram":
        moves = [m for m in (parse_move(line) for line in lines) if m is not None]
        return MotionProgram.from_moves(moves, **kwargs)

    def to_lines(self) -> List[str]:
        return [m.to_gcode() for m in self.moves]

    def move_at(self, t: float) -> Optional[Move]:
        """Move executing at time ``t`` (seconds from program start)."""

        for move in self.moves:
            if move.start_time <= t < move.end_time:
                return move
        return None

    def __len__(self) -> int:
        return len(self.moves)


def find_dip_markers(lines: Sequence[str]) -> List[Tuple[int, int]]:
    """Locate ``(Dip #n ...)`` comments as ``(line_index, n)`` pairs."""

    found: List[Tuple[int, int]] = []
    for index, line in enumerate(lines):
        m = _DIP_MARKER.search(line)
        if m:
            found.append((index, int(m.group(1))))
    return found


def dip_comment(number: int, detail: str = "") -> str:
    return f"(Dip #{number}{' ' + detail if detail else ''})"


__all__ = [
    "RAPID_SPEED",
    "DEFAULT_FEED",
    "MoveKind",
    "Move",
    "MotionProgram",
    "strip_comment",
    "is_command",
    "parse_move",
    "find_dip_markers",
    "dip_comment",
]

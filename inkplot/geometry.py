"""Geometry primitives shared by the toolpath pipeline.

Strokes are the unit every stage works with: an ordered run of points drawn
with the pen down, optionally tagged with the colour well (1..4) it should be
inked from.  Stages never mutate a stroke; they build new ones.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import math

XY = Tuple[float, float]
Bounds = Tuple[float, float, float, float]  # min_x, min_y, max_x, max_y

POINT_TOLERANCE = 0.01
LINE_TOLERANCE = 0.1


# ---------------------------------------------------------------------------
# Stroke
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Stroke:
    """Ordered set of points drawn in one pen-down motion."""

    points: Tuple[XY, ...]
    color: Optional[int] = None

    @classmethod
    def of(cls, points: Iterable[Sequence[float]], color: Optional[int] = None) -> "Stroke":
        return cls(points=tuple((float(p[0]), float(p[1])) for p in points), color=color)

    @property
    def start(self) -> XY:
        return self.points[0]

    @property
    def end(self) -> XY:
        return self.points[-1]

    def endpoints(self) -> Tuple[XY, XY]:
        if not self.points:
            return (0.0, 0.0), (0.0, 0.0)
        return self.points[0], self.points[-1]

    def reversed(self) -> "Stroke":
        return replace(self, points=tuple(reversed(self.points)))

    def with_points(self, points: Iterable[XY]) -> "Stroke":
        return replace(self, points=tuple(points))

    def length(self) -> float:
        return path_length(self.points)

    def segment_count(self) -> int:
        return max(0, len(self.points) - 1)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[XY]:
        return iter(self.points)

    def to_dict(self) -> dict:
        return {"points": [[x, y] for x, y in self.points], "color": self.color}

    @staticmethod
    def from_dict(data: dict) -> "Stroke":
        color = data.get("color")
        return Stroke.of(data.get("points", []), color=int(color) if color is not None else None)


StrokeLike = Union[Stroke, Dict[str, Any], Sequence[Sequence[float]]]


def as_stroke(obj: StrokeLike) -> Stroke:
    """Accept a :class:`Stroke`, a ``{"points", "color"}`` dict or bare points."""

    if isinstance(obj, Stroke):
        return obj
    if isinstance(obj, dict):
        return Stroke.from_dict(obj)
    return Stroke.of(obj)


def as_strokes(objs: Iterable[StrokeLike]) -> List[Stroke]:
    return [as_stroke(o) for o in objs]


# ---------------------------------------------------------------------------
# Point and segment helpers
# ---------------------------------------------------------------------------


def distance(a: XY, b: XY) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def points_equal(a: XY, b: XY, tolerance: float = POINT_TOLERANCE) -> bool:
    """Per-axis comparison, so the tolerance describes a square, not a disc."""

    return abs(a[0] - b[0]) < tolerance and abs(a[1] - b[1]) < tolerance


def cross(origin: XY, a: XY, b: XY) -> float:
    """Twice the signed area of the triangle ``origin, a, b``."""

    return (a[0] - origin[0]) * (b[1] - origin[1]) - (a[1] - origin[1]) * (b[0] - origin[0])


def is_collinear(prev: XY, point: XY, nxt: XY, tolerance: float = POINT_TOLERANCE) -> bool:
    return abs(cross(prev, point, nxt)) <= tolerance


def point_segment_distance(p: XY, a: XY, b: XY) -> float:
    ax, ay = a
    bx, by = b
    px, py = p
    dx, dy = bx - ax, by - ay
    if dx == 0 and dy == 0:
        return math.hypot(px - ax, py - ay)
    t = ((px - ax) * dx + (py - ay) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    cx, cy = ax + t * dx, ay + t * dy
    return math.hypot(px - cx, py - cy)


def segment_key(a: XY, b: XY, tolerance: float = LINE_TOLERANCE) -> Tuple[XY, XY]:
    """Direction independent key of a segment snapped to ``tolerance``."""

    def snap(p: XY) -> XY:
        return (round(p[0] / tolerance), round(p[1] / tolerance))

    pa, pb = snap(a), snap(b)
    return (pa, pb) if pa <= pb else (pb, pa)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def path_length(pts: Sequence[XY]) -> float:
    total = 0.0
    for a, b in zip(pts, pts[1:]):
        total += distance(a, b)
    return total


def total_length(strokes: Iterable[Stroke]) -> float:
    return sum(s.length() for s in strokes)


def travel_distance(strokes: Iterable[Stroke], start: XY = (0.0, 0.0)) -> float:
    """Pen-up distance needed to visit ``strokes`` in order from ``start``."""

    total = 0.0
    cur = start
    for s in strokes:
        if not s.points:
            continue
        total += distance(cur, s.start)
        cur = s.end
    return total


def segment_count(strokes: Iterable[Stroke]) -> int:
    return sum(s.segment_count() for s in strokes)


def bounds(strokes: Iterable[Stroke]) -> Optional[Bounds]:
    xs: List[float] = []
    ys: List[float] = []
    for s in strokes:
        for x, y in s.points:
            xs.append(x)
            ys.append(y)
    if not xs:
        return None
    return min(xs), min(ys), max(xs), max(ys)


# ---------------------------------------------------------------------------
# Reduction and clipping
# ---------------------------------------------------------------------------


def rdp(pts: Sequence[XY], eps: float) -> List[XY]:
    """Iterative Douglas-Peucker reduction."""

    if len(pts) <= 2:
        return list(pts)
    stack = [(0, len(pts) - 1)]
    keep = [False] * len(pts)
    keep[0] = keep[-1] = True
    while stack:
        i0, i1 = stack.pop()
        a, b = pts[i0], pts[i1]
        max_d = -1.0
        idx = None
        for i in range(i0 + 1, i1):
            d = point_segment_distance(pts[i], a, b)
            if d > max_d:
                max_d, idx = d, i
        if max_d > eps and idx is not None:
            keep[idx] = True
            stack.append((i0, idx))
            stack.append((idx, i1))
    return [p for p, k in zip(pts, keep) if k]


_INSIDE, _LEFT, _RIGHT, _BOTTOM, _TOP = 0, 1, 2, 4, 8


def _outcode(x: float, y: float, rect: Bounds) -> int:
    x0, y0, x1, y1 = rect
    code = _INSIDE
    if x < x0:
        code |= _LEFT
    elif x > x1:
        code |= _RIGHT
    if y < y0:
        code |= _BOTTOM
    elif y > y1:
        code |= _TOP
    return code


def clip_segment(a: XY, b: XY, rect: Bounds) -> Optional[Tuple[XY, XY]]:
    """Cohen-Sutherland clipping of segment ``a-b`` against ``rect``."""

    (xa, ya), (xb, yb) = a, b
    xmin, ymin, xmax, ymax = rect
    code_a = _outcode(xa, ya, rect)
    code_b = _outcode(xb, yb, rect)
    while True:
        if not (code_a | code_b):
            return (xa, ya), (xb, yb)
        if code_a & code_b:
            return None
        out = code_b if code_b > code_a else code_a
        if out & _TOP:
            x, y = xa + (xb - xa) * (ymax - ya) / (yb - ya), ymax
        elif out & _BOTTOM:
            x, y = xa + (xb - xa) * (ymin - ya) / (yb - ya), ymin
        elif out & _RIGHT:
            x, y = xmax, ya + (yb - ya) * (xmax - xa) / (xb - xa)
        else:
            x, y = xmin, ya + (yb - ya) * (xmin - xa) / (xb - xa)
        if out == code_a:
            xa, ya = x, y
            code_a = _outcode(xa, ya, rect)
        else:
            xb, yb = x, y
            code_b = _outcode(xb, yb, rect)


def clip_stroke(stroke: Stroke, rect: Bounds) -> List[Stroke]:
    """Clip ``stroke`` to ``rect``; a stroke leaving the area is split."""

    if len(stroke.points) < 2:
        return []
    pieces: List[List[XY]] = []
    current: List[XY] = []
    for a, b in zip(stroke.points, stroke.points[1:]):
        clipped = clip_segment(a, b, rect)
        if clipped is None:
            if len(current) >= 2:
                pieces.append(current)
            current = []
            continue
        ca, cb = clipped
        if current and not points_equal(current[-1], ca):
            if len(current) >= 2:
                pieces.append(current)
            current = []
        if not current:
            current = [ca]
        current.append(cb)
    if len(current) >= 2:
        pieces.append(current)
    return [stroke.with_points(p) for p in pieces]


__all__ = [
    "XY",
    "Bounds",
    "POINT_TOLERANCE",
    "LINE_TOLERANCE",
    "Stroke",
    "StrokeLike",
    "as_stroke",
    "as_strokes",
    "distance",
    "points_equal",
    "cross",
    "is_collinear",
    "point_segment_distance",
    "segment_key",
    "path_length",
    "total_length",
    "travel_distance",
    "segment_count",
    "bounds",
    "rdp",
    "clip_segment",
    "clip_stroke",
]

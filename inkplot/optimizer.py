"""Pen plotter path optimisation.

The pipeline runs four optional stages in a fixed order:

1. remove duplicate segments (never draw the same line twice)
2. simplify strokes (drop near-collinear interior points)
3. merge strokes that share endpoints (fewer pen lifts)
4. order strokes to shorten pen-up travel

Merging and ordering are greedy heuristics.  They are exposed as strategy
objects so a better optimiser can be dropped in without touching the rest
of the pipeline.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .geometry import (
    LINE_TOLERANCE,
    POINT_TOLERANCE,
    XY,
    Stroke,
    StrokeLike,
    as_stroke,
    as_strokes,
    cross,
    distance,
    points_equal,
    rdp,
    segment_count,
    segment_key,
    total_length,
    travel_distance,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def remove_duplicate_segments(
    paths: Iterable[StrokeLike], tolerance: float = LINE_TOLERANCE
) -> List[Stroke]:
    """Drop segments already drawn, splitting a stroke where one is dropped.

    Segments are compared by their endpoints snapped to ``tolerance``,
    independent of direction.  Strokes of different colours never share
    segments.
    """

    seen: Set[Tuple[Optional[int], tuple]] = set()
    result: List[Stroke] = []
    for stroke in as_strokes(paths):
        pts = stroke.points
        if len(pts) < 2:
            continue
        current: List[XY] = [pts[0]]
        for a, b in zip(pts, pts[1:]):
            key = (stroke.color, segment_key(a, b, tolerance))
            if key not in seen:
                seen.add(key)
                current.append(b)
            else:
                if len(current) >= 2:
                    result.append(stroke.with_points(current))
                current = [b]
        if len(current) >= 2:
            result.append(stroke.with_points(current))
    return result


def simplify_path(stroke: StrokeLike, tolerance: float = 0.01) -> Stroke:
    """Remove interior points whose cross product with their neighbours is small.

    The comparison is made against the last point kept, so a long run of
    nearly collinear points cannot drift away from the line.
    """

    stroke = as_stroke(stroke)
    pts = stroke.points
    if len(pts) <= 2:
        return stroke
    kept: List[XY] = [pts[0]]
    for i in range(1, len(pts) - 1):
        if abs(cross(kept[-1], pts[i], pts[i + 1])) > tolerance:
            kept.append(pts[i])
    kept.append(pts[-1])
    return stroke.with_points(kept)


def simplify_paths(
    paths: Iterable[StrokeLike], tolerance: float = 0.01, *, method: str = "collinear"
) -> List[Stroke]:
    if method == "collinear":
        out = [simplify_path(s, tolerance) for s in as_strokes(paths)]
    elif method == "rdp":
        out = [s.with_points(rdp(s.points, tolerance)) for s in as_strokes(paths)]
    else:
        raise ValueError(f"Unknown simplify method: {method!r}")
    return [s for s in out if len(s.points) >= 2]


def merge_connected_paths(
    paths: Iterable[StrokeLike], tolerance: float = POINT_TOLERANCE
) -> List[Stroke]:
    """Join strokes of the same colour whose endpoints touch.

    Each seed stroke absorbs candidates until no endpoint pairing is left, so
    the result is a fixpoint: no two output strokes can be merged further.
    """

    remaining = as_strokes(paths)
    result: List[Stroke] = []
    while remaining:
        current = remaining.pop(0)
        pts = list(current.points)
        merged = True
        while merged:
            merged = False
            for i, candidate in enumerate(remaining):
                if candidate.color != current.color or not candidate.points:
                    continue
                cand = list(candidate.points)
                if points_equal(pts[-1], cand[0], tolerance):
                    pts = pts + cand[1:]
                elif points_equal(pts[-1], cand[-1], tolerance):
                    pts = pts + cand[-2::-1]
                elif points_equal(pts[0], cand[-1], tolerance):
                    pts = cand + pts[1:]
                elif points_equal(pts[0], cand[0], tolerance):
                    pts = cand[::-1] + pts[1:]
                else:
                    continue
                del remaining[i]
                merged = True
                break
        result.append(current.with_points(pts))
    return result


def optimize_path_order(paths: Iterable[StrokeLike], start_point: XY = (0.0, 0.0)) -> List[Stroke]:
    """Greedy nearest-neighbour ordering over both endpoints of every stroke.

    Ties resolve to the first minimum found, preferring a stroke's start over
    its end.
    """

    remaining = as_strokes(paths)
    if len(remaining) <= 1:
        return remaining
    ordered: List[Stroke] = []
    cur = start_point
    while remaining:
        best_i, best_dist, reverse = 0, math.inf, False
        for i, stroke in enumerate(remaining):
            s, e = stroke.endpoints()
            d_start = distance(cur, s)
            d_end = distance(cur, e)
            if d_start < best_dist:
                best_i, best_dist, reverse = i, d_start, False
            if d_end < best_dist:
                best_i, best_dist, reverse = i, d_end, True
        stroke = remaining.pop(best_i)
        if reverse:
            stroke = stroke.reversed()
        ordered.append(stroke)
        cur = stroke.end
    return ordered


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class MergeStrategy(ABC):
    @abstractmethod
    def merge(self, strokes: List[Stroke], tolerance: float) -> List[Stroke]:
        ...


class OrderStrategy(ABC):
    @abstractmethod
    def order(self, strokes: List[Stroke], start_point: XY) -> List[Stroke]:
        ...


class EndpointMerge(MergeStrategy):
    def merge(self, strokes: List[Stroke], tolerance: float) -> List[Stroke]:
        return merge_connected_paths(strokes, tolerance)


class NearestNeighborOrder(OrderStrategy):
    def order(self, strokes: List[Stroke], start_point: XY) -> List[Stroke]:
        return optimize_path_order(strokes, start_point)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@dataclass
class OptimizeOptions:
    remove_duplicates: bool = True
    simplify: bool = True
    merge_paths: bool = True
    optimize_order: bool = True
    simplify_method: str = "collinear"  # collinear | rdp
    simplify_tolerance: float = 0.01
    merge_tolerance: float = POINT_TOLERANCE
    line_tolerance: float = LINE_TOLERANCE
    start_point: XY = (0.0, 0.0)
    # keep strokes of one colour together so each well is visited once
    group_by_color: bool = True

    @staticmethod
    def from_dict(data: Dict) -> "OptimizeOptions":
        from .config import apply_values  # config imports this module

        opts = OptimizeOptions()
        apply_values(opts, "optimize", dict(data))
        return opts

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["start_point"] = list(self.start_point)
        return data


@dataclass
class OptimizeStats:
    original_paths: int = 0
    optimized_paths: int = 0
    original_segments: int = 0
    optimized_segments: int = 0
    duplicates_removed: int = 0
    paths_merged: int = 0
    drawing_distance: float = 0.0
    travel_distance: float = 0.0
    original_travel_distance: float = 0.0
    travel_reduction: int = 0  # percent versus the input order

    def to_dict(self) -> Dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            "Optimize: paths {op} -> {np}, segments {os} -> {ns}, duplicates removed {dup}, "
            "merged {mg}, travel {tb:.2f} -> {ta:.2f} mm ({red} percent)."
        ).format(
            op=self.original_paths,
            np=self.optimized_paths,
            os=self.original_segments,
            ns=self.optimized_segments,
            dup=self.duplicates_removed,
            mg=self.paths_merged,
            tb=self.original_travel_distance,
            ta=self.travel_distance,
            red=self.travel_reduction,
        )


@dataclass
class PathOptimizer:
    """Runs the optimisation stages with pluggable merge/order strategies."""

    merge_strategy: MergeStrategy = field(default_factory=EndpointMerge)
    order_strategy: OrderStrategy = field(default_factory=NearestNeighborOrder)

    def optimize(
        self, paths: Iterable[StrokeLike], options: Optional[OptimizeOptions] = None
    ) -> Tuple[List[Stroke], OptimizeStats]:
        opts = options or OptimizeOptions()
        strokes = as_strokes(paths)
        stats = OptimizeStats(
            original_paths=len(strokes),
            original_segments=segment_count(strokes),
            original_travel_distance=travel_distance(strokes, opts.start_point),
        )

        result = strokes
        if opts.remove_duplicates:
            before = segment_count(result)
            result = remove_duplicate_segments(result, opts.line_tolerance)
            stats.duplicates_removed = before - segment_count(result)

        if opts.simplify:
            result = simplify_paths(result, opts.simplify_tolerance, method=opts.simplify_method)

        if opts.merge_paths:
            before = len(result)
            result = self.merge_strategy.merge(result, opts.merge_tolerance)
            stats.paths_merged = before - len(result)

        if opts.optimize_order:
            result = self._order(result, opts)

        stats.optimized_paths = len(result)
        stats.optimized_segments = segment_count(result)
        stats.drawing_distance = total_length(result)
        stats.travel_distance = travel_distance(result, opts.start_point)
        if stats.original_travel_distance > 0:
            ratio = 1.0 - stats.travel_distance / stats.original_travel_distance
            stats.travel_reduction = int(math.floor(ratio * 100.0 + 0.5))
        logger.debug(stats.summary())
        return result, stats

    def _order(self, strokes: List[Stroke], opts: OptimizeOptions) -> List[Stroke]:
        colors = list(dict.fromkeys(s.color for s in strokes))
        if not opts.group_by_color or len(colors) <= 1:
            return self.order_strategy.order(strokes, opts.start_point)
        ordered: List[Stroke] = []
        cur = opts.start_point
        for color in colors:
            group = self.order_strategy.order([s for s in strokes if s.color == color], cur)
            if group:
                cur = group[-1].end
            ordered.extend(group)
        return ordered


def optimize(
    paths: Iterable[StrokeLike], options: Optional[OptimizeOptions] = None
) -> Tuple[List[Stroke], OptimizeStats]:
    """Optimise ``paths`` with the default greedy strategies."""

    return PathOptimizer().optimize(paths, options)


__all__ = [
    "remove_duplicate_segments",
    "simplify_path",
    "simplify_paths",
    "merge_connected_paths",
    "optimize_path_order",
    "MergeStrategy",
    "OrderStrategy",
    "EndpointMerge",
    "NearestNeighborOrder",
    "OptimizeOptions",
    "OptimizeStats",
    "PathOptimizer",
    "optimize",
]

"""Motion program generation.

Turns user strokes into the text motion program streamed to the controller:
filter artefacts, optimise, map canvas units to millimetres, clip, then emit
moves with backlash compensation and dip sequences.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .backlash import BacklashConfig, BacklashState, compensate_move
from .config import OutputSettings, PlotterSettings
from .dip import DipPoint, DipScheduler, build_dip_sequence
from .geometry import Bounds, Stroke, StrokeLike, as_strokes, bounds, clip_stroke, distance
from .optimizer import OptimizeStats, PathOptimizer
from .program import MotionProgram, dip_comment

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


@dataclass
class Transform:
    """Uniform scale plus translation from canvas to output coordinates."""

    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0
    origin_x: float = 0.0
    origin_y: float = 0.0

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        return (
            (x - self.origin_x) * self.scale + self.offset_x,
            (y - self.origin_y) * self.scale + self.offset_y,
        )

    def apply_stroke(self, stroke: Stroke) -> Stroke:
        return stroke.with_points(self.apply(x, y) for x, y in stroke.points)


def output_transform(strokes: Iterable[Stroke], output: OutputSettings) -> Transform:
    """Fit the canvas (or, without one, the content) into the target area."""

    if output.canvas_width and output.canvas_height:
        scale = min(output.target_width / output.canvas_width, output.target_height / output.canvas_height)
        center_x = (output.target_width - output.canvas_width * scale) / 2.0
        center_y = (output.target_height - output.canvas_height * scale) / 2.0
        return Transform(
            scale=scale,
            offset_x=output.offset_x + center_x,
            offset_y=output.offset_y + center_y,
        )
    box = bounds(strokes)
    if box is None:
        return Transform(offset_x=output.offset_x, offset_y=output.offset_y)
    min_x, min_y, max_x, _ = box
    width = max_x - min_x
    scale = output.target_width / width if width > 0 else 1.0
    return Transform(
        scale=scale,
        offset_x=output.offset_x,
        offset_y=output.offset_y,
        origin_x=min_x,
        origin_y=min_y,
    )


def filter_artefacts(strokes: Iterable[Stroke], threshold: float) -> Tuple[List[Stroke], int]:
    """Drop strokes shorter than ``threshold``; returns kept strokes and the drop count."""

    kept: List[Stroke] = []
    removed = 0
    for stroke in strokes:
        if len(stroke.points) < 2 or stroke.length() < threshold:
            removed += 1
            continue
        kept.append(stroke)
    return kept, removed


@dataclass
class GenerationStats:
    bounds: Optional[Bounds] = None
    scale: float = 1.0
    path_count: int = 0
    draw_distance: float = 0.0
    travel_distance: float = 0.0
    artefacts_removed: int = 0
    dip_count: int = 0
    output_width: float = 0.0
    output_height: float = 0.0
    total_time: float = 0.0
    optimize: OptimizeStats = field(default_factory=OptimizeStats)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["bounds"] = list(self.bounds) if self.bounds else None
        return data


@dataclass
class GeneratedProgram:
    lines: List[str]
    program: MotionProgram
    dip_points: List[DipPoint]
    stats: GenerationStats
    strokes: List[Stroke] = field(default_factory=list)

    @property
    def gcode(self) -> str:
        return "\n".join(self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gcode": self.gcode,
            "lines": list(self.lines),
            "dip_points": [
                {"position": list(p.position), "after_path_index": p.after_path_index}
                for p in self.dip_points
            ],
            "stats": self.stats.to_dict(),
            "total_time": self.program.total_time,
        }


def generate_program(
    paths: Iterable[StrokeLike],
    settings: Optional[PlotterSettings] = None,
    *,
    optimizer: Optional[PathOptimizer] = None,
    status_cb: Optional[StatusCallback] = None,
) -> GeneratedProgram:
    """Build the motion program for ``paths``."""

    settings = settings or PlotterSettings()
    optimizer = optimizer or PathOptimizer()
    machine, dip, output = settings.machine, settings.dip, settings.output

    def report(msg: str) -> None:
        logger.info(msg)
        if status_cb:
            status_cb(msg)

    strokes, removed = filter_artefacts(as_strokes(paths), settings.artefact_threshold)
    stats = GenerationStats(artefacts_removed=removed)
    if removed:
        report(f"Artefact filter: removed {removed} strokes shorter than {settings.artefact_threshold:g}.")
    if not strokes:
        return GeneratedProgram(lines=[], program=MotionProgram(), dip_points=[], stats=stats)

    strokes, stats.optimize = optimizer.optimize(strokes, settings.optimize)
    report(stats.optimize.summary())

    stats.bounds = bounds(strokes)
    transform = output_transform(strokes, output)
    stats.scale = transform.scale
    if stats.bounds is not None:
        min_x, min_y, max_x, max_y = stats.bounds
        stats.output_width = (max_x - min_x) * transform.scale
        stats.output_height = (max_y - min_y) * transform.scale

    placed = [transform.apply_stroke(s) for s in strokes]
    if output.clip_to_work_area:
        area = output.work_area()
        placed = [piece for s in placed for piece in clip_stroke(s, area)]

    lines: List[str] = [
        "%",
        "(inkplot motion program)",
        "G21 G90",
        f"G0 Z{machine.safe_z:g}",
    ]

    def color_note(color: Optional[int]) -> str:
        if not dip.palette_enabled:
            return ""
        return f" - Color {color if color is not None else dip.main_color}"

    scheduler = DipScheduler(dip.interval, enabled=dip.enabled)
    first_color = placed[0].color if placed else None
    if scheduler.initial(dip.station_for(first_color)) is not None:
        lines.append(dip_comment(scheduler.count, "initial" + color_note(first_color)))
        lines.extend(build_dip_sequence(dip.station_for(first_color), machine.safe_z, dip.custom_sequence))

    backlash = BacklashConfig(x=machine.backlash_x, y=machine.backlash_y)
    state = BacklashState.initial(backlash)
    last = None
    for index, stroke in enumerate(placed):
        if last is not None:
            stats.travel_distance += distance(last, stroke.start)

        state, moves = compensate_move(backlash, state, stroke.start, rapid=True)
        lines.extend(m.to_gcode() for m in moves)
        lines.append(f"G1 Z{machine.draw_z:g} F{machine.pen_feed:g}")
        for a, b in zip(stroke.points, stroke.points[1:]):
            state, moves = compensate_move(backlash, state, b, rapid=False, feed=machine.feed_rate)
            lines.extend(m.to_gcode() for m in moves)
            d = distance(a, b)
            stats.draw_distance += d
            scheduler.add_distance(d)
        lines.append(f"G0 Z{machine.safe_z:g}")
        last = stroke.end

        drawn = scheduler.accumulated
        station = dip.station_for(stroke.color)
        if scheduler.stroke_completed(index, station) is not None:
            lines.append(dip_comment(scheduler.count, f"at dist {drawn:.1f}{color_note(stroke.color)}"))
            lines.extend(build_dip_sequence(station, machine.safe_z, dip.custom_sequence))

    lines.append(f"G0 X{machine.park_x:g} Y{machine.park_y:g}")
    lines.append("M30")
    lines.append("%")

    stats.path_count = len(placed)
    stats.dip_count = scheduler.count
    program = MotionProgram.from_lines(lines, default_feed=machine.feed_rate)
    stats.total_time = program.total_time
    report(
        f"Generated {len(lines)} lines: {stats.path_count} strokes, {stats.dip_count} dips, "
        f"draw {stats.draw_distance:.1f} mm, travel {stats.travel_distance:.1f} mm, "
        f"est. {stats.total_time:.0f} s."
    )
    return GeneratedProgram(
        lines=lines,
        program=program,
        dip_points=list(scheduler.points),
        stats=stats,
        strokes=placed,
    )


__all__ = [
    "Transform",
    "output_transform",
    "filter_artefacts",
    "GenerationStats",
    "GeneratedProgram",
    "generate_program",
]

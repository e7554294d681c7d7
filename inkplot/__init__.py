"""Top-level package for the inkplot toolkit.

This package turns vector strokes into motion programs for brush and pen
plotters, and streams them to GRBL/FluidNC style controllers.
"""

from .config import PlotterSettings
from .controller import PlotterController
from .geometry import Stroke, XY
from .optimizer import OptimizeOptions, PathOptimizer, optimize
from .toolpath import GeneratedProgram, generate_program

__all__ = [
    "Stroke",
    "XY",
    "OptimizeOptions",
    "PathOptimizer",
    "optimize",
    "PlotterSettings",
    "GeneratedProgram",
    "generate_program",
    "PlotterController",
]

"""Configuration models for the plotter pipeline and controller link."""

from __future__ import annotations

import copy
import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigError
from .optimizer import OptimizeOptions


@dataclass
class OutputSettings:
    """Mapping from the drawing canvas to physical output coordinates."""

    canvas_width: Optional[float] = None  # None -> fit content bounds to target width
    canvas_height: Optional[float] = None
    target_width: float = 100.0
    target_height: float = 100.0
    offset_x: float = 0.0
    offset_y: float = 0.0
    clip_to_work_area: bool = False

    def work_area(self) -> Tuple[float, float, float, float]:
        return (
            self.offset_x,
            self.offset_y,
            self.offset_x + self.target_width,
            self.offset_y + self.target_height,
        )


@dataclass
class MachineSettings:
    feed_rate: float = 1600.0  # mm/min while drawing
    pen_feed: float = 500.0  # mm/min for the pen-down Z move
    safe_z: float = 5.0
    draw_z: float = 0.0
    backlash_x: float = 0.0
    backlash_y: float = 0.0
    park_x: float = 10.0
    park_y: float = 130.0


@dataclass
class DipSettings:
    """Ink pickup configuration."""

    interval: float = 50.0  # mm of drawn line between dips
    x: float = 41.0
    y: float = 5.0
    continuous_plot: bool = False
    custom_sequence: str = ""
    main_color: int = 1
    palette_enabled: bool = False
    wells: Dict[int, Tuple[float, float]] = field(
        default_factory=lambda: {1: (41.0, 5.0), 2: (41.0, 25.0), 3: (41.0, 45.0), 4: (41.0, 65.0)}
    )

    @property
    def enabled(self) -> bool:
        return not self.continuous_plot and self.interval > 0

    def station_for(self, color: Optional[int]) -> Tuple[float, float]:
        if not self.palette_enabled:
            return self.x, self.y
        index = color if color is not None else self.main_color
        return self.wells.get(index, (self.x, self.y))


@dataclass
class LinkSettings:
    """Controller connection settings."""

    host: str = "192.168.0.1"
    ws_port: int = 81
    transport: str = "websocket"  # websocket | serial | mock
    serial_port: str = "/dev/ttyUSB0"
    baudrate: int = 115200
    auto_reconnect: bool = True
    reconnect_interval: float = 3.0  # seconds
    auto_report: bool = True
    report_interval_ms: int = 200
    max_pending: int = 4
    open_timeout: float = 5.0


@dataclass
class PlotterSettings:
    """Aggregate settings consumed from the presentation layer."""

    output: OutputSettings = field(default_factory=OutputSettings)
    machine: MachineSettings = field(default_factory=MachineSettings)
    dip: DipSettings = field(default_factory=DipSettings)
    link: LinkSettings = field(default_factory=LinkSettings)
    optimize: OptimizeOptions = field(default_factory=OptimizeOptions)
    artefact_threshold: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["dip"]["wells"] = {str(k): list(v) for k, v in self.dip.wells.items()}
        data["optimize"] = self.optimize.to_dict()
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PlotterSettings":
        settings = PlotterSettings()
        settings.update(data)
        return settings

    @staticmethod
    def load(path: "str | Path") -> "PlotterSettings":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        return PlotterSettings.from_dict(data)

    def save(self, path: "str | Path") -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    def update(self, data: Dict[str, Any]) -> "PlotterSettings":
        """Apply a partial settings dictionary in place.

        The update is validated on a copy first, so a rejected dictionary
        leaves every setting unchanged.
        """

        draft = copy.deepcopy(self)
        for key, value in data.items():
            if key == "artefact_threshold":
                draft.artefact_threshold = _coerce(float, key, value)
            elif key in _SECTIONS:
                _update_section(getattr(draft, key), key, value)
            else:
                raise ConfigError(f"Unknown settings section: {key}")
        # sections are shared with the link, so copy values rather than objects
        for name in _SECTIONS:
            section, changed = getattr(self, name), getattr(draft, name)
            for f in fields(section):
                setattr(section, f.name, getattr(changed, f.name))
        self.artefact_threshold = draft.artefact_threshold
        return self


_SECTIONS = ("output", "machine", "dip", "link", "optimize")


def _coerce(kind, name: str, value: Any) -> Any:
    if kind is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


_SCALARS = {"float": float, "int": int, "str": str, "bool": bool}


def _pair(name: str, value: Any) -> Tuple[float, float]:
    try:
        return float(value[0]), float(value[1])
    except (TypeError, ValueError, IndexError, KeyError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def _update_section(section: Any, name: str, values: Dict[str, Any]) -> None:
    if not isinstance(values, dict):
        raise ConfigError(f"Settings section {name} must be an object")
    known = {f.name: f for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown setting: {name}.{key}")
        label = f"{name}.{key}"
        annotation = str(known[key].type)
        if value is None:
            if not annotation.startswith("Optional["):
                raise ConfigError(f"{label} cannot be null")
            setattr(section, key, None)
        elif name == "dip" and key == "wells":
            if not isinstance(value, dict):
                raise ConfigError(f"Invalid colour wells: {value!r}")
            wells = {}
            for well, position in value.items():
                try:
                    index = int(well)
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"Invalid colour well: {well!r}") from exc
                wells[index] = _pair(f"{label}.{well}", position)
            setattr(section, key, wells)
        elif annotation == "XY":
            setattr(section, key, _pair(label, value))
        else:
            kind = _SCALARS.get(annotation.replace("Optional[", "").rstrip("]"), str)
            setattr(section, key, _coerce(kind, label, value))


def apply_values(target: Any, name: str, values: Dict[str, Any]) -> None:
    """Coerce and assign ``values`` onto the dataclass ``target``."""

    _update_section(target, name, values)


__all__ = [
    "ConfigError",
    "OutputSettings",
    "MachineSettings",
    "DipSettings",
    "LinkSettings",
    "PlotterSettings",
    "apply_values",
]

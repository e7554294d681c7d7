"""Wire-level vocabulary of GRBL/FluidNC style controllers."""
from __future__ import annotations

import re
from enum import Enum
from typing import Dict

from ..program import is_command, strip_comment

# Real-time commands: single bytes, never newline terminated, never acked.
RT_STATUS = "?"
RT_HOLD = "!"  # feed hold
RT_RESUME = "~"  # cycle start / resume
RT_RESET = "\x18"  # Ctrl-X soft reset
RT_JOG_CANCEL = "\x85"

FEED_OVERRIDE: Dict[str, str] = {
    "reset": "\x90",
    "+10": "\x91",
    "-10": "\x92",
    "+1": "\x93",
    "-1": "\x94",
}
RAPID_OVERRIDE: Dict[str, str] = {
    "reset": "\x95",
    "50": "\x96",
    "25": "\x97",
}
SPINDLE_OVERRIDE: Dict[str, str] = {
    "reset": "\x99",
    "+10": "\x9a",
    "-10": "\x9b",
    "+1": "\x9c",
    "-1": "\x9d",
}


class Response(str, Enum):
    OK = "ok"
    ERROR = "error"
    ALARM = "alarm"
    STATUS = "status"
    INFO = "info"
    OTHER = "other"


def classify(line: str) -> Response:
    s = line.strip()
    low = s.lower()
    if low == "ok":
        return Response.OK
    if low.startswith("error:"):
        return Response.ERROR
    if low.startswith("alarm:"):
        return Response.ALARM
    if s.startswith("<") and "|" in s:
        return Response.STATUS
    if s.startswith("[") or s.startswith("$"):
        return Response.INFO
    return Response.OTHER


def transmittable(line: str) -> bool:
    """Comment-only, blank and ``%`` lines are never sent."""

    return is_command(line)


def wire_form(line: str) -> str:
    """The text actually written for a program line (comments stripped)."""

    return strip_comment(line)


# ---------------------------------------------------------------------------
# Line commands
# ---------------------------------------------------------------------------


def report_interval(ms: int) -> str:
    return f"$Report/Interval={int(ms)}"


def jog(axis: str, dist: float, feed: float = 1000) -> str:
    axis = axis.upper()
    if axis not in ("X", "Y", "Z"):
        raise ValueError(f"Unknown axis: {axis}")
    return f"$J=G91 G21 {axis}{dist:.3f} F{feed:g}"


HOME = "$H"
UNLOCK = "$X"
SET_ZERO = "G10 L20 P1 X0 Y0 Z0"


def go_to_zero(feed: float = 1000) -> str:
    return f"G0 X0 Y0 F{feed:g}"


def go_to_z(z: float, feed: float = 500) -> str:
    return f"G0 Z{z:.3f} F{feed:g}"


_SCHEME = re.compile(r"^[a-z]+://", re.IGNORECASE)
_PORT = re.compile(r":\d+$")


def websocket_url(host: str, port: int = 81) -> str:
    """``http://plotter.local`` -> ``ws://plotter.local:81``."""

    bare = _SCHEME.sub("", host.strip()).rstrip("/")
    bare = _PORT.sub("", bare)
    return f"ws://{bare}:{port}"


__all__ = [
    "RT_STATUS",
    "RT_HOLD",
    "RT_RESUME",
    "RT_RESET",
    "RT_JOG_CANCEL",
    "FEED_OVERRIDE",
    "RAPID_OVERRIDE",
    "SPINDLE_OVERRIDE",
    "Response",
    "classify",
    "transmittable",
    "wire_form",
    "report_interval",
    "jog",
    "HOME",
    "UNLOCK",
    "SET_ZERO",
    "go_to_zero",
    "go_to_z",
    "websocket_url",
]

"""Status report parsing.

Frames look like ``<Idle|MPos:0.000,0.000,5.000|FS:0,0|Ov:100,100,100>``.
Parsing is tolerant: a field that does not parse is dropped and the previous
value is kept; a message that is not a frame yields ``None``.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

_FRAME = re.compile(r"<([^|>]+)(.*)>")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class MachineState(str, Enum):
    IDLE = "Idle"
    RUN = "Run"
    HOLD = "Hold"
    ALARM = "Alarm"
    CHECK = "Check"
    HOME = "Home"
    SLEEP = "Sleep"
    UNKNOWN = "Unknown"

    @staticmethod
    def parse(text: str) -> "MachineState":
        name = text.split(":", 1)[0].strip()  # Hold:0, Door:1 ...
        for state in MachineState:
            if state.value == name:
                return state
        return MachineState.UNKNOWN


@dataclass(frozen=True)
class MachinePosition:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_tuple(self) -> Tuple[float, float, float]:
        return self.x, self.y, self.z


@dataclass(frozen=True)
class Override:
    feed: float = 100.0
    rapid: float = 100.0
    spindle: float = 100.0


@dataclass(frozen=True)
class MachineStatus:
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    machine_state: MachineState = MachineState.UNKNOWN
    position: MachinePosition = MachinePosition()
    feed_rate: float = 0.0
    spindle_speed: float = 0.0
    override: Optional[Override] = None
    last_message: str = ""
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_state": self.connection_state.value,
            "machine_state": self.machine_state.value,
            "position": {"x": self.position.x, "y": self.position.y, "z": self.position.z},
            "feed_rate": self.feed_rate,
            "spindle_speed": self.spindle_speed,
            "override": None
            if self.override is None
            else {"feed": self.override.feed, "rapid": self.override.rapid, "spindle": self.override.spindle},
            "last_message": self.last_message,
            "last_error": self.last_error,
        }


def _numbers(value: str, count: int) -> Optional[List[float]]:
    parts = value.split(",")
    if len(parts) != count:
        return None
    try:
        nums = [float(p) for p in parts]
    except ValueError:
        return None
    if any(not math.isfinite(n) for n in nums):
        return None
    return nums


def parse_position(value: str) -> Optional[MachinePosition]:
    nums = _numbers(value, 3)
    return MachinePosition(*nums) if nums else None


def parse_feed_spindle(value: str) -> Optional[Tuple[float, float]]:
    nums = _numbers(value, 2)
    if not nums or nums[0] < 0 or nums[1] < 0:
        return None
    return nums[0], nums[1]


def parse_override(value: str) -> Optional[Override]:
    nums = _numbers(value, 3)
    if not nums:
        return None
    feed, rapid, spindle = nums
    if not (0 <= feed <= 200 and 0 <= rapid <= 100 and 0 <= spindle <= 200):
        return None
    return Override(feed, rapid, spindle)


def parse_frame(text: str) -> Optional[Dict[str, Any]]:
    """Return the fields a frame updates, keyed like :class:`MachineStatus`."""

    m = _FRAME.search(text)
    if not m:
        return None
    updates: Dict[str, Any] = {
        "machine_state": MachineState.parse(m.group(1)),
        "last_message": text.strip(),
    }
    for item in m.group(2).split("|"):
        key, sep, value = item.partition(":")
        if not sep:
            continue
        if key in ("MPos", "WPos"):
            position = parse_position(value)
            if position is not None:
                updates["position"] = position
        elif key == "FS":
            fs = parse_feed_spindle(value)
            if fs is not None:
                updates["feed_rate"], updates["spindle_speed"] = fs
        elif key == "Ov":
            override = parse_override(value)
            if override is not None:
                updates["override"] = override
    return updates


def apply_frame(status: MachineStatus, text: str) -> MachineStatus:
    updates = parse_frame(text)
    if updates is None:
        return status
    return replace(status, **updates)


def split_messages(data: str) -> List[str]:
    """One transport message may carry several newline separated lines."""

    return [line.strip() for line in data.split("\n") if line.strip()]


def position_changed(prev: MachinePosition, nxt: MachinePosition, threshold: float = 0.01) -> bool:
    return (
        abs(prev.x - nxt.x) > threshold
        or abs(prev.y - nxt.y) > threshold
        or abs(prev.z - nxt.z) > threshold
    )


__all__ = [
    "ConnectionState",
    "MachineState",
    "MachinePosition",
    "Override",
    "MachineStatus",
    "parse_position",
    "parse_feed_spindle",
    "parse_override",
    "parse_frame",
    "apply_frame",
    "split_messages",
    "position_changed",
]

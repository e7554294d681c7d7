"""High level orchestration for the inkplot server and scripts."""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from .config import PlotterSettings
from .device import protocol
from .device.link import DeviceLink, TimerFactory, TransportFactory
from .device.streaming import StreamingSession, StreamingState, StreamProgress
from .device.telemetry import ConnectionState, MachineStatus
from .errors import StateError
from .geometry import StrokeLike
from .program import find_dip_markers
from .toolpath import GeneratedProgram, generate_program

REALTIME = {
    "status": protocol.RT_STATUS,
    "hold": protocol.RT_HOLD,
    "resume": protocol.RT_RESUME,
    "reset": protocol.RT_RESET,
    "jog_cancel": protocol.RT_JOG_CANCEL,
}


@dataclass
class LogEntry:
    seq: int
    time: float
    level: str
    source: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "time": self.time,
            "level": self.level,
            "source": self.source,
            "message": self.message,
        }


@dataclass
class PlotterController:
    """Coordinate program generation, the controller link and streaming."""

    settings: PlotterSettings = field(default_factory=PlotterSettings)
    transport_factory: Optional[TransportFactory] = None
    timer_factory: TimerFactory = threading.Timer
    synchronous: bool = False
    clock: Callable[[], float] = time.monotonic
    log_size: int = 500

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._log: Deque[LogEntry] = deque(maxlen=self.log_size)
        self._seq = 0
        self._program: Optional[GeneratedProgram] = None
        self._external: List[str] = []
        self._stream_state = StreamingState.IDLE
        self.link = DeviceLink(
            self.settings.link,
            transport_factory=self.transport_factory,
            timer_factory=self.timer_factory,
            synchronous=self.synchronous,
        )
        self.session = StreamingSession(
            self.link,
            max_pending=self.settings.link.max_pending,
            clock=self.clock,
            ticker_factory=self.timer_factory,
        )
        self.link.subscribe(self._on_link_event)
        self.session.subscribe(self._on_progress)

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------
    def log(self, message: str, *, level: str = "info", source: str = "app") -> None:
        with self._lock:
            self._seq += 1
            self._log.append(LogEntry(self._seq, time.time(), level, source, message))

    def events(self, since: int = 0) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._log if e.seq > since]

    def clear_events(self) -> None:
        with self._lock:
            self._log.clear()

    def _on_link_event(self, kind: str, payload: Any) -> None:
        if kind == "connection":
            level = "error" if payload is ConnectionState.ERROR else "info"
            self.log(f"Connection {payload.value}", level=level, source="link")
        elif kind == "error":
            self.log(str(payload), level="error", source="link")
        elif kind == "message":
            self.log(str(payload), source="device")
        elif kind == "response" and protocol.classify(payload) is protocol.Response.ERROR:
            self.log(str(payload), level="warning", source="device")

    def _on_progress(self, progress: StreamProgress) -> None:
        if progress.state is self._stream_state:
            return
        self._stream_state = progress.state
        level = "error" if progress.state is StreamingState.ERROR else "info"
        detail = f" ({progress.errors[-1]})" if level == "error" and progress.errors else ""
        self.log(
            f"Stream {progress.state.value} at line {progress.current_line}/{progress.total_lines}{detail}",
            level=level,
            source="stream",
        )

    # ------------------------------------------------------------------
    # Settings and programs
    # ------------------------------------------------------------------
    def update_settings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.settings.update(data)
        return self.settings.to_dict()

    def generate(self, paths: Iterable[StrokeLike], settings: Optional[Dict[str, Any]] = None) -> GeneratedProgram:
        if settings:
            self.settings.update(settings)
        program = generate_program(
            paths,
            self.settings,
            status_cb=lambda msg: self.log(msg, source="generator"),
        )
        with self._lock:
            self._program = program
            self._external = []
        return program

    def load_program(self, text: str) -> List[str]:
        """Use an externally produced motion program as is."""

        lines = text.splitlines()
        with self._lock:
            self._program = None
            self._external = lines
        self.log(f"Loaded program with {len(lines)} lines")
        return lines

    def program_lines(self) -> List[str]:
        with self._lock:
            if self._program is not None:
                return list(self._program.lines)
            return list(self._external)

    def program_summary(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            program = self._program
        if program is None:
            lines = self.program_lines()
            if not lines:
                return None
            return {"lines": len(lines), "dips": len(find_dip_markers(lines))}
        return {
            "lines": len(program.lines),
            "dips": len(program.dip_points),
            "total_time": program.program.total_time,
            "stats": program.stats.to_dict(),
        }

    # ------------------------------------------------------------------
    # Device lifecycle
    # ------------------------------------------------------------------
    def connect(self) -> None:
        self.link.connect()

    def disconnect(self) -> None:
        self.link.disconnect()

    def close(self) -> None:
        self.session.close()
        self.link.shutdown()

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------
    def start_stream(self) -> StreamProgress:
        lines = self.program_lines()
        if not lines:
            raise StateError("No program loaded")
        if not self.link.is_connected:
            raise StateError("Controller not connected")
        self.session.max_pending = max(1, int(self.settings.link.max_pending))
        if not self.session.start(lines):
            raise StateError("A job is already streaming")
        return self.session.progress()

    def pause_stream(self) -> bool:
        return self.session.pause()

    def resume_stream(self) -> bool:
        return self.session.resume()

    def cancel_stream(self) -> bool:
        return self.session.cancel()

    def job_status(self) -> Dict[str, Any]:
        return self.session.progress().to_dict()

    # ------------------------------------------------------------------
    # Manual device helpers
    # ------------------------------------------------------------------
    def _require_idle_link(self) -> None:
        if not self.link.is_connected:
            raise StateError("Controller not connected")
        if self.session.active:
            raise StateError("Not available while a job is streaming")

    def send_command(self, command: str) -> bool:
        self._require_idle_link()
        self.log(command, source="user")
        return self.link.send(command)

    def realtime(self, name: str) -> bool:
        try:
            char = REALTIME[name]
        except KeyError:
            raise ValueError(f"Unknown real-time command: {name}") from None
        return self.link.send_realtime(char)

    def override(self, kind: str, step: str) -> bool:
        handlers = {
            "feed": self.link.feed_override,
            "rapid": self.link.rapid_override,
            "spindle": self.link.spindle_override,
        }
        if kind not in handlers:
            raise ValueError(f"Unknown override: {kind}")
        return handlers[kind](step)

    def jog(self, axis: str, distance: float, feed: float = 1000) -> bool:
        self._require_idle_link()
        return self.link.jog(axis, distance, feed)

    def home(self) -> bool:
        self._require_idle_link()
        return self.link.home()

    def unlock(self) -> bool:
        self._require_idle_link()
        return self.link.unlock()

    def set_zero(self) -> bool:
        self._require_idle_link()
        return self.link.set_zero()

    def go_to_zero(self) -> bool:
        self._require_idle_link()
        return self.link.go_to_zero(self.settings.machine.feed_rate)

    def go_to_z(self, z: float) -> bool:
        self._require_idle_link()
        return self.link.go_to_z(z, self.settings.machine.pen_feed)

    def device_status(self) -> Dict[str, Any]:
        status: MachineStatus = self.link.status
        data = status.to_dict()
        data["reconnect_pending"] = self.link.reconnect_pending
        return data


__all__ = ["PlotterController", "LogEntry", "REALTIME"]

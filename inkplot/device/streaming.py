"""Windowed streaming of a motion program over a :class:`DeviceLink`.

At most ``max_pending`` lines are unacknowledged at any time.  Every ``ok``
or ``error:`` frees a slot and triggers the next dispatch; firmware
rejections are recorded but do not stop the job.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from . import protocol
from .link import DeviceLink, TimerFactory
from .telemetry import ConnectionState

logger = logging.getLogger(__name__)

TICK_INTERVAL = 1.0  # seconds between elapsed-time updates


class StreamingState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class StreamProgress:
    state: StreamingState = StreamingState.IDLE
    current_line: int = 0
    total_lines: int = 0
    current_command: str = ""
    pending: int = 0
    elapsed: float = 0.0
    errors: Tuple[str, ...] = ()

    @property
    def percentage(self) -> float:
        if self.total_lines <= 0:
            return 0.0
        return round(100.0 * self.current_line / self.total_lines, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "current_line": self.current_line,
            "total_lines": self.total_lines,
            "percentage": self.percentage,
            "current_command": self.current_command,
            "pending": self.pending,
            "elapsed": round(self.elapsed, 1),
            "errors": list(self.errors),
        }


ProgressCallback = Callable[[StreamProgress], None]


class StreamingSession:
    """Feeds program lines to the link as acknowledgements come back."""

    def __init__(
        self,
        link: DeviceLink,
        *,
        max_pending: int = 4,
        clock: Callable[[], float] = time.monotonic,
        ticker_factory: TimerFactory = threading.Timer,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.link = link
        self.max_pending = max_pending
        self._clock = clock
        self._ticker_factory = ticker_factory
        self._listeners: List[ProgressCallback] = [progress_cb] if progress_cb else []
        self._lock = threading.RLock()
        self._ticker: Any = None
        self._reset()
        self._unsubscribe = link.subscribe(self._on_link_event)

    def _reset(self, errors: Iterable[str] = ()) -> None:
        self.state = StreamingState.IDLE
        self.lines: List[str] = []
        self.cursor = 0
        self.pending = 0
        self.current_command = ""
        self.errors: List[str] = list(errors)
        self.started_at: Optional[float] = None
        self.elapsed = 0.0
        self._in_flight: Deque[Tuple[int, str]] = deque()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def active(self) -> bool:
        return self.state in (StreamingState.STREAMING, StreamingState.PAUSED)

    def progress(self) -> StreamProgress:
        with self._lock:
            return StreamProgress(
                state=self.state,
                current_line=self.cursor,
                total_lines=len(self.lines),
                current_command=self.current_command,
                pending=self.pending,
                elapsed=self.elapsed,
                errors=tuple(self.errors),
            )

    def subscribe(self, listener: ProgressCallback) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.progress()
        for listener in list(self._listeners):
            listener(snapshot)

    def close(self) -> None:
        self._stop_ticker()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    def start(self, lines: Iterable[str]) -> bool:
        """Begin streaming; False when the link is down or a job is active."""

        with self._lock:
            if self.active:
                logger.warning("A job is already streaming")
                return False
            if not self.link.is_connected:
                logger.warning("Cannot stream: controller not connected")
                return False
            self._reset()
            self.lines = list(lines)
            self.state = StreamingState.STREAMING
            self.started_at = self._clock()
            logger.info("Streaming %d lines", len(self.lines))
            self._arm_ticker()
            self._dispatch()
        self._notify()
        return True

    def pause(self) -> bool:
        with self._lock:
            if self.state is not StreamingState.STREAMING:
                return False
            self.link.send_realtime(protocol.RT_HOLD)
            self.state = StreamingState.PAUSED
            logger.info("Paused at line %d", self.cursor)
        self._notify()
        return True

    def resume(self) -> bool:
        with self._lock:
            if self.state is not StreamingState.PAUSED:
                return False
            self.link.send_realtime(protocol.RT_RESUME)
            self.state = StreamingState.STREAMING
            logger.info("Resumed at line %d", self.cursor)
            self._dispatch()
        self._notify()
        return True

    def cancel(self) -> bool:
        """Back to idle; a running job is stopped with a soft reset."""

        with self._lock:
            was_active = self.active
            self._stop_ticker()
            self._reset(errors=self.errors)
            if was_active:
                self.link.send_realtime(protocol.RT_RESET)
                logger.info("Stream cancelled")
        self._notify()
        return was_active

    # ------------------------------------------------------------------
    # Acknowledgements
    # ------------------------------------------------------------------
    def handle_response(self, line: str) -> None:
        kind = protocol.classify(line)
        if kind not in (protocol.Response.OK, protocol.Response.ERROR):
            return
        with self._lock:
            if not self.active:
                return
            self.pending = max(0, self.pending - 1)
            index, command = self._in_flight.popleft() if self._in_flight else (-1, "")
            if kind is protocol.Response.ERROR:
                entry = f"Line {index + 1}: {line} ({command})" if index >= 0 else line
                self.errors.append(entry)
                logger.warning("Rejected %s", entry)
            self._dispatch()
        self._notify()

    def _on_link_event(self, kind: str, payload: Any) -> None:
        if kind == "response":
            self.handle_response(payload)
        elif kind == "connection" and payload in (ConnectionState.DISCONNECTED, ConnectionState.ERROR):
            with self._lock:
                if not self.active:
                    return
                self._fail("Connection lost")
            self._notify()

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------
    def _dispatch(self) -> None:
        while (
            self.state is StreamingState.STREAMING
            and self.pending < self.max_pending
            and self.cursor < len(self.lines)
        ):
            index = self.cursor
            line = self.lines[index]
            self.cursor += 1
            if not protocol.transmittable(line):
                continue
            command = protocol.wire_form(line)
            # count before sending: the ack may arrive before send returns
            self.pending += 1
            self._in_flight.append((index, command))
            self.current_command = command
            if not self.link.send(command):
                self._fail("Link not ready")
                return
        self._check_complete()

    def _check_complete(self) -> None:
        if (
            self.state is StreamingState.STREAMING
            and self.cursor >= len(self.lines)
            and self.pending == 0
        ):
            self.state = StreamingState.COMPLETED
            self._update_elapsed()
            self._stop_ticker()
            logger.info(
                "Stream completed: %d lines in %.1f s, %d errors",
                len(self.lines),
                self.elapsed,
                len(self.errors),
            )

    def _fail(self, reason: str) -> None:
        self.state = StreamingState.ERROR
        self.errors.append(reason)
        self._update_elapsed()
        self._stop_ticker()
        logger.error("Stream failed at line %d: %s", self.cursor, reason)

    def _update_elapsed(self) -> None:
        if self.started_at is not None:
            self.elapsed = self._clock() - self.started_at

    def _arm_ticker(self) -> None:
        ticker = self._ticker_factory(TICK_INTERVAL, self._tick)
        ticker.daemon = True
        self._ticker = ticker
        ticker.start()

    def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()

    def _tick(self) -> None:
        with self._lock:
            if not self.active:
                return
            self._update_elapsed()
            self._arm_ticker()
        self._notify()


__all__ = ["StreamingState", "StreamProgress", "StreamingSession", "TICK_INTERVAL"]

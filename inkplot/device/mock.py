"""In-memory firmware simulator used for development and unit tests."""
from __future__ import annotations

import re
from collections import deque
from typing import Deque, List, Optional, Set

from ..errors import LinkError
from ..program import MoveKind, parse_move, strip_comment
from . import protocol
from .transport import Closed, Frame, Opened, Publish, Transport

_JOG_WORD = re.compile(r"([XYZ])([-+]?[0-9.]+)", re.IGNORECASE)


class MockFirmware(Transport):
    """Small simulation that speaks the controller's wire protocol.

    Every line is acknowledged with ``ok`` (or ``error:<code>`` when it
    starts with one of ``reject``), ``?`` is answered with a status frame and
    feed hold, resume and soft reset change the reported machine state.
    With ``auto_ack=False`` lines are only acknowledged by :meth:`ack`.
    """

    def __init__(self, *, auto_ack: bool = True, reject: Optional[Set[str]] = None,
                 error_code: int = 20) -> None:
        self.auto_ack = auto_ack
        self.reject = set(reject or ())
        self.error_code = error_code
        self.position = [0.0, 0.0, 0.0]
        self.state = "Idle"
        self.feed = 0.0
        self.received: List[str] = []
        self.realtime: List[str] = []
        self.unacked: Deque[str] = deque()
        self._publish: Optional[Publish] = None
        self._outbox: Deque[str] = deque()
        self._delivering = False

    # Connection ---------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._publish is not None

    def open(self, publish: Publish) -> None:
        self._publish = publish
        publish(Opened())

    def close(self) -> None:
        publish, self._publish = self._publish, None
        if publish is not None:
            publish(Closed())

    def drop(self) -> None:
        """Simulate the controller going away."""

        self.close()

    # Wire ---------------------------------------------------------------
    def send(self, data: str) -> None:
        if self._publish is None:
            raise LinkError("Mock firmware is not connected")
        if not data.endswith("\n"):
            for char in data:
                self._realtime(char)
            return
        for line in data.splitlines():
            line = line.strip()
            if not line:
                continue
            self.received.append(line)
            if self.auto_ack:
                self._emit(self._execute(line))
            else:
                self.unacked.append(line)

    def ack(self, count: int = 1) -> None:
        for _ in range(min(count, len(self.unacked))):
            self._emit(self._execute(self.unacked.popleft()))

    def status_frame(self) -> str:
        x, y, z = self.position
        return f"<{self.state}|MPos:{x:.3f},{y:.3f},{z:.3f}|FS:{self.feed:g},0|Ov:100,100,100>"

    def _emit(self, text: str) -> None:
        # replies produced while a reply is being handled are queued, not nested
        self._outbox.append(text)
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._outbox and self._publish is not None:
                self._publish(Frame(self._outbox.popleft()))
        finally:
            self._delivering = False

    def _realtime(self, char: str) -> None:
        self.realtime.append(char)
        if char == protocol.RT_STATUS:
            self._emit(self.status_frame())
        elif char == protocol.RT_HOLD:
            self.state = "Hold:0"
        elif char == protocol.RT_RESUME:
            self.state = "Idle"
        elif char == protocol.RT_RESET:
            self.state = "Idle"
            self.unacked.clear()
            self._emit("Grbl 3.7 [FluidNC mock '$' for help]")

    def _execute(self, line: str) -> str:
        if any(line.startswith(prefix) for prefix in self.reject):
            return f"error:{self.error_code}"
        code = strip_comment(line).upper()
        if code.startswith("$J="):
            for axis, value in _JOG_WORD.findall(code[3:]):
                self.position["XYZ".index(axis.upper())] += float(value)
            return "ok"
        if code.startswith("G10 L20"):
            self.position = [0.0, 0.0, 0.0]
            return "ok"
        move = parse_move(code)
        if move is not None and move.kind is not MoveKind.DWELL:
            for index, value in enumerate((move.x, move.y, move.z)):
                if value is not None:
                    self.position[index] = value
            if move.feed is not None:
                self.feed = move.feed
        return "ok"


__all__ = ["MockFirmware"]

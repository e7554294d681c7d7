"""Byte pipes to the controller.

A transport only moves text: it reports what happens on the wire as
:data:`LinkEvent` values through the ``publish`` callback it is opened with.
All interpretation (state machine, telemetry, acknowledgements) lives in
:class:`inkplot.device.link.DeviceLink`.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

import serial
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException
from websockets.sync.client import ClientConnection, connect as ws_connect

from ..errors import LinkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class Frame:
    text: str


@dataclass(frozen=True)
class Closed:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str


LinkEvent = Union[Opened, Frame, Closed, Failed]
Publish = Callable[[LinkEvent], None]


def _encode(data: str) -> bytes:
    # real-time commands above 0x7f are raw bytes, not UTF-8 characters
    return data.encode("latin-1", errors="replace")


class Transport(ABC):
    """One duplex connection; ``open`` reports progress via events."""

    @abstractmethod
    def open(self, publish: Publish) -> None:
        ...

    @abstractmethod
    def send(self, data: str) -> None:
        """Write ``data`` as is; raises :class:`LinkError` on failure."""

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...


class WebSocketTransport(Transport):
    """FluidNC style WebSocket link (the controller listens on port 81)."""

    def __init__(self, url: str, *, open_timeout: float = 5.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._closing = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing.is_set()

    def open(self, publish: Publish) -> None:
        self._thread = threading.Thread(target=self._run, args=(publish,), daemon=True)
        self._thread.start()

    def _run(self, publish: Publish) -> None:
        try:
            ws = ws_connect(self.url, open_timeout=self.open_timeout)
        except (OSError, TimeoutError, WebSocketException) as exc:
            publish(Failed(f"Cannot connect to {self.url}: {exc}"))
            publish(Closed())
            return
        self._ws = ws
        if self._closing.is_set():
            # closed while the handshake was still running
            self._ws = None
            ws.close()
            publish(Closed())
            return
        publish(Opened())
        try:
            for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                publish(Frame(message))
        except ConnectionClosedError as exc:
            publish(Failed(f"Connection lost: {exc}"))
        finally:
            self._ws = None
            publish(Closed())

    def send(self, data: str) -> None:
        ws = self._ws
        if ws is None:
            raise LinkError("WebSocket is not open")
        try:
            if any(ord(c) > 0x7F for c in data):
                ws.send(_encode(data))
            else:
                ws.send(data)
        except (ConnectionClosed, OSError) as exc:
            raise LinkError(str(exc)) from exc

    def close(self) -> None:
        self._closing.set()
        ws = self._ws
        if ws is not None:
            ws.close()


class SerialTransport(Transport):
    """USB serial link for controllers without networking."""

    def __init__(self, port: str, baudrate: int = 115200, *, read_timeout: float = 0.1) -> None:
        self.port = port
        self.baudrate = baudrate
        self.read_timeout = read_timeout
        self._ser: Optional[serial.Serial] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return bool(self._ser and self._ser.is_open)

    def open(self, publish: Publish) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(publish,), daemon=True)
        self._thread.start()

    def _run(self, publish: Publish) -> None:
        try:
            self._ser = serial.Serial(self.port, baudrate=self.baudrate, timeout=self.read_timeout)
        except serial.SerialException as exc:
            publish(Failed(f"Cannot open {self.port}: {exc}"))
            publish(Closed())
            return
        publish(Opened())
        try:
            while not self._stop.is_set():
                raw = self._ser.readline()
                if raw:
                    publish(Frame(raw.decode("utf-8", errors="replace")))
        except (serial.SerialException, OSError) as exc:
            if not self._stop.is_set():
                publish(Failed(f"Serial link lost: {exc}"))
        finally:
            ser, self._ser = self._ser, None
            if ser is not None and ser.is_open:
                ser.close()
            publish(Closed())

    def send(self, data: str) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise LinkError("Serial port is not open")
        try:
            ser.write(_encode(data))
            ser.flush()
        except (serial.SerialException, OSError) as exc:
            raise LinkError(str(exc)) from exc

    def close(self) -> None:
        self._stop.set()


__all__ = [
    "Opened",
    "Frame",
    "Closed",
    "Failed",
    "LinkEvent",
    "Publish",
    "Transport",
    "WebSocketTransport",
    "SerialTransport",
]

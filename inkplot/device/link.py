"""Device link: one persistent connection to the controller.

Transports publish :data:`LinkEvent` values from their own threads; the link
queues them and a single dispatcher thread applies them to the connection
state machine, so listeners never see concurrent callbacks.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple

from ..config import LinkSettings
from ..errors import LinkError
from . import protocol
from .mock import MockFirmware
from .telemetry import ConnectionState, MachineStatus, parse_frame, split_messages
from .transport import (
    Closed,
    Failed,
    Frame,
    LinkEvent,
    Opened,
    SerialTransport,
    Transport,
    WebSocketTransport,
)

logger = logging.getLogger(__name__)

# listener(kind, payload); kinds: connection, status, response, message, error
Listener = Callable[[str, Any], None]
TransportFactory = Callable[[LinkSettings], Transport]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def default_transport(settings: LinkSettings) -> Transport:
    kind = settings.transport.lower()
    if kind == "serial":
        return SerialTransport(settings.serial_port, settings.baudrate)
    if kind == "mock":
        return MockFirmware()
    return WebSocketTransport(
        protocol.websocket_url(settings.host, settings.ws_port),
        open_timeout=settings.open_timeout,
    )


class DeviceLink:
    """Connection state machine plus fire-and-forget command sending.

    ``synchronous=True`` dispatches events on the publishing thread, which
    keeps tests deterministic.
    """

    def __init__(
        self,
        settings: Optional[LinkSettings] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        timer_factory: TimerFactory = threading.Timer,
        synchronous: bool = False,
    ) -> None:
        self.settings = settings or LinkSettings()
        self._transport_factory = transport_factory or default_transport
        self._timer_factory = timer_factory
        self._synchronous = synchronous
        self._lock = threading.RLock()
        self._write_lock = threading.RLock()
        self._transport: Optional[Transport] = None
        self._generation = 0
        self._manual_disconnect = False
        self._reconnect_timer: Any = None
        self._status = MachineStatus()
        self._listeners: List[Listener] = []
        self._events: "queue.Queue[Optional[Tuple[int, LinkEvent]]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def status(self) -> MachineStatus:
        return self._status

    @property
    def state(self) -> ConnectionState:
        return self._status.connection_state

    @property
    def is_connected(self) -> bool:
        transport = self._transport
        return (
            self.state is ConnectionState.CONNECTED
            and transport is not None
            and transport.is_open
        )

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, payload: Any) -> None:
        for listener in list(self._listeners):
            listener(kind, payload)

    def _set_status(self, **changes: Any) -> None:
        previous = self._status.connection_state
        self._status = replace(self._status, **changes)
        if self._status.connection_state is not previous:
            logger.info("Link %s", self._status.connection_state.value)
            self._notify("connection", self._status.connection_state)
        self._notify("status", self._status)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def connect(self) -> None:
        """Open a new connection unless one is already open or opening."""

        self._connect(from_timer=False)

    def _connect(self, *, from_timer: bool) -> None:
        with self._lock:
            if from_timer:
                self._reconnect_timer = None
                # checked under the lock that creates the transport
                if self._manual_disconnect:
                    logger.debug("Reconnect skipped after manual disconnect")
                    return
            if self._transport is not None and self.state in (
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ):
                return
            self._cancel_reconnect()
            if not from_timer:
                self._manual_disconnect = False
            self._generation += 1
            generation = self._generation
            stale = self._transport
            transport = self._transport_factory(self.settings)
            self._transport = transport
            self._set_status(connection_state=ConnectionState.CONNECTING, last_error=None)
        if stale is not None:
            stale.close()
        self._ensure_worker()
        logger.info("Connecting via %s", type(transport).__name__)
        try:
            transport.open(lambda event: self.publish(event, generation))
        except LinkError as exc:
            self.publish(Failed(str(exc)), generation)
            self.publish(Closed(), generation)

    def disconnect(self) -> None:
        """Close on request; no reconnect follows."""

        with self._lock:
            self._manual_disconnect = True
            self._cancel_reconnect()
            transport, self._transport = self._transport, None
            # late events from the old transport are ignored
            self._generation += 1
        if transport is not None:
            if transport.is_open and self.settings.auto_report:
                self._write(transport, protocol.report_interval(0) + "\n")
            transport.close()
        with self._lock:
            self._status = MachineStatus(connection_state=self._status.connection_state)
            self._set_status(connection_state=ConnectionState.DISCONNECTED)

    def shutdown(self) -> None:
        self.disconnect()
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._events.put(None)
            if worker is not threading.current_thread():
                worker.join(timeout=2.0)
        self._worker = None

    def _cancel_reconnect(self) -> None:
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        interval = self.settings.reconnect_interval
        timer = self._timer_factory(interval, self._reconnect)
        timer.daemon = True
        self._reconnect_timer = timer
        timer.start()
        logger.info("Reconnecting in %.1f s", interval)
        self._notify("message", f"Reconnecting in {interval:g} s")

    def _reconnect(self) -> None:
        self._connect(from_timer=True)

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------
    def publish(self, event: LinkEvent, generation: Optional[int] = None) -> None:
        """Hand a transport event to the dispatcher."""

        if generation is None:
            generation = self._generation
        if self._synchronous:
            self._dispatch(generation, event)
        else:
            self._events.put((generation, event))

    def _ensure_worker(self) -> None:
        if self._synchronous:
            return
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(target=self._run, name="inkplot-link", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._events.get()
            if item is None:
                break
            try:
                self._dispatch(*item)
            except Exception:  # pragma: no cover - runtime safety
                logger.exception("Link event handler failed")

    def _dispatch(self, generation: int, event: LinkEvent) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Dropping stale %s", type(event).__name__)
                return
            if isinstance(event, Opened):
                self._on_open()
            elif isinstance(event, Frame):
                for line in split_messages(event.text):
                    self._on_line(line)
            elif isinstance(event, Failed):
                logger.warning("Link error: %s", event.reason)
                self._set_status(connection_state=ConnectionState.ERROR, last_error=event.reason)
                self._notify("error", event.reason)
            elif isinstance(event, Closed):
                self._on_close()

    def _on_open(self) -> None:
        self._set_status(connection_state=ConnectionState.CONNECTED, last_error=None)
        if self.settings.auto_report:
            self.send(protocol.report_interval(self.settings.report_interval_ms))
        self.send_realtime(protocol.RT_STATUS)

    def _on_close(self) -> None:
        self._transport = None
        self._set_status(connection_state=ConnectionState.DISCONNECTED)
        if self.settings.auto_reconnect and not self._manual_disconnect:
            self._schedule_reconnect()

    def _on_line(self, line: str) -> None:
        kind = protocol.classify(line)
        logger.debug("<< %s", line)
        if kind is protocol.Response.STATUS:
            changes = parse_frame(line)
            if changes:
                self._set_status(**changes)
            return
        if kind is protocol.Response.OK:
            self._notify("response", line)
        elif kind is protocol.Response.ERROR:
            logger.warning("Controller rejected command: %s", line)
            self._set_status(last_message=line, last_error=line)
            self._notify("response", line)
        elif kind is protocol.Response.ALARM:
            logger.warning("Controller alarm: %s", line)
            self._set_status(last_message=line, last_error=line)
            self._notify("message", line)
        else:
            self._set_status(last_message=line)
            self._notify("message", line)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def _write(self, transport: Transport, data: str) -> bool:
        with self._write_lock:
            try:
                transport.send(data)
            except LinkError as exc:
                logger.warning("Send failed: %s", exc)
                return False
            return True

    def send(self, command: str) -> bool:
        """Send one newline terminated line; False when the link is not ready."""

        with self._write_lock:
            transport = self._transport
            if transport is None or not transport.is_open:
                return False
            line = command.rstrip("\r\n")
            logger.debug(">> %s", line)
            return self._write(transport, line + "\n")

    def send_realtime(self, char: str) -> bool:
        """Send a single unterminated real-time byte."""

        with self._write_lock:
            transport = self._transport
            if transport is None or not transport.is_open:
                return False
            logger.debug(">> rt 0x%02x", ord(char[:1] or "\0"))
            return self._write(transport, char)

    # ------------------------------------------------------------------
    # Conveniences
    # ------------------------------------------------------------------
    def query_status(self) -> bool:
        return self.send_realtime(protocol.RT_STATUS)

    def pause(self) -> bool:
        return self.send_realtime(protocol.RT_HOLD)

    def resume(self) -> bool:
        return self.send_realtime(protocol.RT_RESUME)

    def stop(self) -> bool:
        return self.send_realtime(protocol.RT_RESET)

    def feed_override(self, step: str) -> bool:
        return self.send_realtime(_lookup(protocol.FEED_OVERRIDE, step, "feed"))

    def rapid_override(self, step: str) -> bool:
        return self.send_realtime(_lookup(protocol.RAPID_OVERRIDE, step, "rapid"))

    def spindle_override(self, step: str) -> bool:
        return self.send_realtime(_lookup(protocol.SPINDLE_OVERRIDE, step, "spindle"))

    def jog(self, axis: str, distance: float, feed: float = 1000) -> bool:
        return self.send(protocol.jog(axis, distance, feed))

    def jog_cancel(self) -> bool:
        return self.send_realtime(protocol.RT_JOG_CANCEL)

    def home(self) -> bool:
        return self.send(protocol.HOME)

    def unlock(self) -> bool:
        return self.send(protocol.UNLOCK)

    def set_zero(self) -> bool:
        return self.send(protocol.SET_ZERO)

    def go_to_zero(self, feed: float = 1000) -> bool:
        return self.send(protocol.go_to_zero(feed))

    def go_to_z(self, z: float, feed: float = 500) -> bool:
        return self.send(protocol.go_to_z(z, feed))


def _lookup(table: dict, step: str, name: str) -> str:
    try:
        return table[step]
    except KeyError:
        raise ValueError(f"Unknown {name} override step: {step!r}") from None


__all__ = ["DeviceLink", "Listener", "default_transport"]

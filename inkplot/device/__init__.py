"""Controller connectivity: wire protocol, telemetry, link and streaming."""

from .link import DeviceLink
from .mock import MockFirmware
from .streaming import StreamingSession, StreamingState, StreamProgress
from .telemetry import ConnectionState, MachineState, MachineStatus
from .transport import SerialTransport, Transport, WebSocketTransport

__all__ = [
    "DeviceLink",
    "MockFirmware",
    "StreamingSession",
    "StreamingState",
    "StreamProgress",
    "ConnectionState",
    "MachineState",
    "MachineStatus",
    "Transport",
    "SerialTransport",
    "WebSocketTransport",
]

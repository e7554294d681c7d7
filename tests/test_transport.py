import threading

from inkplot.device import transport as transport_mod
from inkplot.device.transport import Closed, Frame, Opened, WebSocketTransport


class FakeSocket:
    def __init__(self, messages=()):
        self.messages = list(messages)
        self.closed = False
        self.sent = []

    def __iter__(self):
        return iter(self.messages)

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True


def _open(transport):
    events = []
    transport.open(events.append)
    return events


def test_websocket_reader_publishes_frames(monkeypatch):
    sock = FakeSocket(["ok", b"<Idle|MPos:0,0,0>"])
    monkeypatch.setattr(transport_mod, "ws_connect", lambda url, open_timeout: sock)
    link = WebSocketTransport("ws://plotter:81/")
    events = _open(link)
    link._thread.join(timeout=2)
    assert events == [Opened(), Frame("ok"), Frame("<Idle|MPos:0,0,0>"), Closed()]
    assert not link.is_open


def test_close_during_handshake_does_not_leak_the_socket(monkeypatch):
    sock = FakeSocket(["ok"])
    handshake = threading.Event()
    release = threading.Event()

    def slow_connect(url, open_timeout):
        handshake.set()
        release.wait(timeout=2)
        return sock

    monkeypatch.setattr(transport_mod, "ws_connect", slow_connect)
    link = WebSocketTransport("ws://plotter:81/")
    events = _open(link)
    assert handshake.wait(timeout=2)
    link.close()
    release.set()
    link._thread.join(timeout=2)
    assert not link._thread.is_alive()
    assert sock.closed
    assert events == [Closed()]
    assert not link.is_open


def test_high_bytes_are_sent_as_binary():
    sock = FakeSocket()
    link = WebSocketTransport("ws://plotter:81/")
    link._ws = sock
    link.send("\x92")
    link.send("G0 X1\n")
    assert sock.sent == [b"\x92", "G0 X1\n"]

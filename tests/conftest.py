import pytest

from inkplot.config import LinkSettings
from inkplot.device.link import DeviceLink
from inkplot.device.transport import Closed, Failed, Frame, Opened, Transport
from inkplot.errors import LinkError


class FakeTransport(Transport):
    """Transport driven by the test: nothing happens until an ``emit_*`` call."""

    def __init__(self):
        self.publish = None
        self.sent = []
        self.closed = False
        self.fail_sends = False
        self._open = False

    @property
    def is_open(self):
        return self._open

    def open(self, publish):
        self.publish = publish

    def send(self, data):
        if self.fail_sends:
            raise LinkError("broken pipe")
        self.sent.append(data)

    def close(self):
        self._open = False
        self.closed = True

    def emit_open(self):
        self._open = True
        self.publish(Opened())

    def emit(self, text):
        self.publish(Frame(text))

    def emit_fail(self, reason="refused"):
        self.publish(Failed(reason))

    def emit_close(self):
        self._open = False
        self.publish(Closed())

    def lines(self):
        return [s for s in self.sent if s.endswith("\n")]


class FakeTimer:
    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fired = True
            self.fn()


class Timers:
    def __init__(self):
        self.created = []

    def __call__(self, interval, fn):
        timer = FakeTimer(interval, fn)
        self.created.append(timer)
        return timer

    def live(self):
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]


class Transports:
    def __init__(self):
        self.made = []

    def __call__(self, settings):
        transport = FakeTransport()
        self.made.append(transport)
        return transport

    @property
    def last(self):
        return self.made[-1]


@pytest.fixture
def timers():
    return Timers()


@pytest.fixture
def transports():
    return Transports()


@pytest.fixture
def link_settings():
    return LinkSettings()


@pytest.fixture
def link(link_settings, transports, timers):
    return DeviceLink(link_settings, transport_factory=transports, timer_factory=timers, synchronous=True)


@pytest.fixture
def connected(link, transports):
    link.connect()
    transports.last.emit_open()
    transports.last.sent.clear()
    return link

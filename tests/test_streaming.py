import pytest

from inkplot.config import LinkSettings
from inkplot.device.link import DeviceLink
from inkplot.device.mock import MockFirmware
from inkplot.device.streaming import TICK_INTERVAL, StreamingSession, StreamingState


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session(connected, timers, clock):
    return StreamingSession(connected, max_pending=4, clock=clock, ticker_factory=timers)


def _program(count):
    return [f"G1 X{i + 1}" for i in range(count)]


def test_window_limits_lines_in_flight(session, transports):
    wire = transports.last
    assert session.start(_program(10))
    assert wire.lines() == ["G1 X1\n", "G1 X2\n", "G1 X3\n", "G1 X4\n"]
    assert session.pending == 4

    for expected in range(5, 11):
        wire.emit("ok")
        assert len(wire.lines()) == expected
        assert session.pending == 4

    for remaining in (3, 2, 1):
        wire.emit("ok")
        assert session.pending == remaining
        assert session.state is StreamingState.STREAMING
    wire.emit("ok")
    assert session.pending == 0
    assert session.state is StreamingState.COMPLETED
    assert len(wire.lines()) == 10


def test_comment_lines_are_skipped_but_counted(session, transports):
    wire = transports.last
    program = ["%", "(Dip #1 initial)", "G0 X1", "", "G1 X2 ; note", "%"]
    session.start(program)
    assert wire.lines() == ["G0 X1\n", "G1 X2\n"]
    assert session.progress().current_line == 6
    wire.emit("ok\nok")
    progress = session.progress()
    assert progress.state is StreamingState.COMPLETED
    assert progress.percentage == 100.0


def test_program_without_commands_completes_at_once(session, transports):
    assert session.start(["%", "(nothing)", "%"])
    assert session.state is StreamingState.COMPLETED
    assert transports.last.lines() == []


def test_errors_are_recorded_and_streaming_continues(session, transports):
    wire = transports.last
    session.start(_program(6))
    wire.emit("error:20")
    assert session.state is StreamingState.STREAMING
    assert session.errors == ["Line 1: error:20 (G1 X1)"]
    assert len(wire.lines()) == 5
    wire.emit("ok\nok\nerror:9\nok\nok")
    assert session.state is StreamingState.COMPLETED
    assert session.errors[1] == "Line 4: error:9 (G1 X4)"


def test_pause_holds_dispatch_until_resume(session, transports):
    wire = transports.last
    session.start(_program(8))
    assert session.pause()
    assert wire.sent[-1] == "!"
    wire.emit("ok\nok")
    assert session.pending == 2
    assert len(wire.lines()) == 4
    assert session.state is StreamingState.PAUSED

    assert session.resume()
    assert "~" in wire.sent
    assert len(wire.lines()) == 6
    assert session.pending == 4
    assert not session.resume()


def test_cancel_from_paused_returns_to_idle(session, transports):
    wire = transports.last
    session.start(_program(8))
    session.pause()
    assert session.cancel()
    assert wire.sent[-1] == "\x18"
    progress = session.progress()
    assert progress.state is StreamingState.IDLE
    assert progress.errors == ()
    assert progress.total_lines == 0
    assert progress.pending == 0


def test_cancel_keeps_errors_recorded_before(session, transports):
    wire = transports.last
    session.start(_program(8))
    wire.emit("error:2")
    session.cancel()
    assert session.state is StreamingState.IDLE
    assert session.errors == ["Line 1: error:2 (G1 X1)"]


def test_cancel_when_idle_sends_nothing(session, transports):
    assert not session.cancel()
    assert "\x18" not in transports.last.sent


def test_start_requires_connection_and_no_active_job(link, timers, clock, transports):
    session = StreamingSession(link, clock=clock, ticker_factory=timers)
    assert not session.start(_program(2))
    link.connect()
    transports.last.emit_open()
    assert session.start(_program(10))
    assert not session.start(_program(2))
    assert session.progress().total_lines == 10


def test_link_drop_while_streaming_is_an_error(session, transports):
    wire = transports.last
    session.start(_program(8))
    wire.emit_close()
    assert session.state is StreamingState.ERROR
    assert session.errors[-1] == "Connection lost"


def test_link_drop_after_completion_is_ignored(session, transports):
    wire = transports.last
    session.start(_program(1))
    wire.emit("ok")
    wire.emit_close()
    assert session.state is StreamingState.COMPLETED


def test_elapsed_ticker(session, timers, clock, transports):
    session.start(_program(5))
    ticker = timers.live()[-1]
    assert ticker.interval == TICK_INTERVAL
    clock.now += 1.0
    ticker.fire()
    assert session.progress().elapsed == pytest.approx(1.0)
    assert timers.live()[-1] is not ticker

    clock.now += 2.5
    transports.last.emit("ok\nok\nok\nok\nok")
    assert session.state is StreamingState.COMPLETED
    assert session.elapsed == pytest.approx(3.5)
    assert timers.live() == []


def test_progress_listener(session, transports):
    seen = []
    session.subscribe(seen.append)
    session.start(_program(2))
    transports.last.emit("ok\nok")
    states = [p.state for p in seen]
    assert states[0] is StreamingState.STREAMING
    assert states[-1] is StreamingState.COMPLETED
    assert seen[-1].to_dict()["percentage"] == 100.0


def test_streams_whole_program_through_mock_firmware(timers, clock):
    mock = MockFirmware()
    link = DeviceLink(LinkSettings(), transport_factory=lambda s: mock, timer_factory=timers, synchronous=True)
    link.connect()
    session = StreamingSession(link, max_pending=4, clock=clock, ticker_factory=timers)
    program = ["%", "G21 G90", "G0 Z5"] + [f"G1 X{i} Y{i % 7} F1600 ; seg" for i in range(200)] + ["M30", "%"]
    assert session.start(program)
    assert session.state is StreamingState.COMPLETED
    sent = mock.received[1:]
    assert sent[:2] == ["G21 G90", "G0 Z5"]
    assert sent[-1] == "M30"
    assert len(sent) == 203
    assert mock.position[:2] == [199.0, 3.0]


def test_mock_rejections_are_collected(timers, clock):
    mock = MockFirmware(reject={"M3"})
    link = DeviceLink(LinkSettings(), transport_factory=lambda s: mock, timer_factory=timers, synchronous=True)
    link.connect()
    session = StreamingSession(link, clock=clock, ticker_factory=timers)
    session.start(["G0 X1", "M3 S100", "G0 X2"])
    assert session.state is StreamingState.COMPLETED
    assert session.errors == ["Line 2: error:20 (M3 S100)"]
    assert mock.position[0] == 2.0

import pytest
from fastapi.testclient import TestClient

from inkplot.controller import PlotterController
from inkplot.device.mock import MockFirmware
from inkplot.server.app import create_app

from conftest import Timers

STROKES = [
    {"points": [[0, 0], [30, 0]], "color": 1},
    {"points": [[0, 10], [30, 10]], "color": 1},
]
LAYOUT = {
    "output": {"canvas_width": 100, "canvas_height": 100},
    "optimize": {"merge_paths": False, "optimize_order": False},
    "dip": {"interval": 20},
}


@pytest.fixture
def mock():
    return MockFirmware()


@pytest.fixture
def client(mock):
    controller = PlotterController(transport_factory=lambda settings: mock, timer_factory=Timers(), synchronous=True)
    return TestClient(create_app(controller))


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_status_shape(client):
    data = client.get("/api/status").json()
    assert data["job"]["state"] == "idle"
    assert data["device"]["connection_state"] == "disconnected"
    assert data["program"] is None


def test_settings_round_trip(client):
    res = client.put("/api/settings", json={"machine": {"feed_rate": 1200}})
    assert res.status_code == 200
    assert res.json()["machine"]["feed_rate"] == 1200
    assert client.get("/api/settings").json()["machine"]["feed_rate"] == 1200
    bad = client.put("/api/settings", json={"machine": {"feed_rate": 500, "warp": 9}})
    assert bad.status_code == 400
    assert client.get("/api/settings").json()["machine"]["feed_rate"] == 1200


def test_generate_program(client):
    res = client.post("/api/program", json={"strokes": STROKES, "settings": LAYOUT})
    assert res.status_code == 200
    data = res.json()
    assert data["lines"][0] == "%"
    assert [d["after_path_index"] for d in data["dip_points"]] == [-1, 0, 1]
    assert data["stats"]["path_count"] == 2
    program = client.get("/api/program").json()
    assert program["lines"] == data["lines"]
    assert program["summary"]["dips"] == 3


def test_generate_rejects_bad_payload(client):
    assert client.post("/api/program", json={"strokes": "nope"}).status_code == 400
    assert client.post("/api/program", json={"strokes": [{"points": [["a", 1]]}]}).status_code == 400


def test_stream_requires_connection(client):
    client.post("/api/program", json={"strokes": STROKES})
    res = client.post("/api/stream/start")
    assert res.status_code == 409


def test_connect_and_stream(client, mock):
    assert client.post("/api/connect").json() == {"ok": True, "state": "connected"}
    client.post("/api/program", json={"strokes": STROKES})
    res = client.post("/api/stream/start")
    assert res.status_code == 200
    assert res.json()["state"] == "completed"
    assert client.get("/api/status").json()["job"]["percentage"] == 100.0
    assert mock.received[-1] == "M30"
    assert client.post("/api/stream/pause").json()["ok"] is False
    events = client.get("/api/events").json()["events"]
    assert any(e["message"].startswith("Stream completed") for e in events)
    assert client.post("/api/disconnect").json()["state"] == "disconnected"


def test_device_endpoints(client, mock):
    assert client.post("/api/device/home").status_code == 409
    client.post("/api/connect")
    assert client.post("/api/device/jog", json={"axis": "x", "distance": 4}).json() == {"ok": True}
    assert mock.position[0] == 4.0
    assert client.post("/api/device/jog", json={"axis": "x"}).status_code == 400
    assert client.post("/api/device/jog", json={"axis": "q", "distance": 1}).status_code == 400
    assert client.post("/api/device/realtime", json={"name": "hold"}).json() == {"ok": True}
    assert mock.state == "Hold:0"
    assert client.post("/api/device/realtime", json={"name": "boom"}).status_code == 400
    assert client.post("/api/device/override", json={"kind": "rapid", "step": "50"}).json() == {"ok": True}
    assert client.post("/api/device/command", json={"command": "G0 X1 Y2"}).json() == {"ok": True}
    assert mock.position[:2] == [1.0, 2.0]
    assert client.post("/api/device/command", json={}).status_code == 400
    assert client.post("/api/device/z", json={"z": 7}).json() == {"ok": True}
    assert mock.position[2] == 7.0
    assert client.post("/api/device/goto-zero").json() == {"ok": True}
    assert client.post("/api/device/zero").json() == {"ok": True}
    assert client.post("/api/device/unlock").json() == {"ok": True}
    assert mock.received[-1] == "$X"


def test_load_program_text(client):
    res = client.post("/api/program/text", json={"gcode": "G0 X1\n(Dip #1 x)\nG0 X2"})
    assert res.json() == {"ok": True, "lines": 3}
    assert client.get("/api/status").json()["program"] == {"lines": 3, "dips": 1}
    assert client.post("/api/program/text", json={"gcode": 5}).status_code == 400

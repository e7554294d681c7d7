"""FastAPI application exposing the plotter controller over HTTP."""
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..config import PlotterSettings
from ..controller import PlotterController
from ..errors import ConfigError, StateError


def _guard(fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except StateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (ConfigError, ValueError, TypeError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _number(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    value = payload.get(key, default)
    if value is None:
        raise HTTPException(status_code=400, detail=f"{key} is required")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"{key} must be a number") from exc


def create_controller() -> PlotterController:
    """Controller configured from the JSON file named by ``INKPLOT_SETTINGS``."""

    path = os.environ.get("INKPLOT_SETTINGS")
    settings = PlotterSettings.load(path) if path else PlotterSettings()
    return PlotterController(settings=settings)


def create_app(controller: Optional[PlotterController] = None) -> FastAPI:
    controller = controller or create_controller()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        controller.close()

    app = FastAPI(title="inkplot control server", lifespan=lifespan)
    app.state.controller = controller
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        return {
            "job": controller.job_status(),
            "device": controller.device_status(),
            "program": controller.program_summary(),
        }

    @app.get("/api/events")
    def events(since: int = 0) -> Dict[str, Any]:
        return {"events": controller.events(since)}

    # Settings ------------------------------------------------------------
    @app.get("/api/settings")
    def get_settings() -> Dict[str, Any]:
        return controller.settings.to_dict()

    @app.put("/api/settings")
    def put_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
        return _guard(lambda: controller.update_settings(payload))

    # Program -------------------------------------------------------------
    @app.post("/api/program")
    def post_program(payload: Dict[str, Any]) -> Dict[str, Any]:
        strokes = payload.get("strokes")
        if not isinstance(strokes, list):
            raise HTTPException(status_code=400, detail="strokes must be a list")
        program = _guard(lambda: controller.generate(strokes, payload.get("settings")))
        return program.to_dict()

    @app.post("/api/program/text")
    def post_program_text(payload: Dict[str, Any]) -> Dict[str, Any]:
        text = payload.get("gcode")
        if not isinstance(text, str):
            raise HTTPException(status_code=400, detail="gcode must be a string")
        lines = controller.load_program(text)
        return {"ok": True, "lines": len(lines)}

    @app.get("/api/program")
    def get_program() -> Dict[str, Any]:
        return {"lines": controller.program_lines(), "summary": controller.program_summary()}

    # Connection ----------------------------------------------------------
    @app.post("/api/connect")
    def connect() -> Dict[str, Any]:
        controller.connect()
        return {"ok": True, "state": controller.link.state.value}

    @app.post("/api/disconnect")
    def disconnect() -> Dict[str, Any]:
        controller.disconnect()
        return {"ok": True, "state": controller.link.state.value}

    # Streaming -----------------------------------------------------------
    @app.post("/api/stream/start")
    def stream_start() -> Dict[str, Any]:
        progress = _guard(controller.start_stream)
        return progress.to_dict()

    @app.post("/api/stream/pause")
    def stream_pause() -> Dict[str, Any]:
        return {"ok": controller.pause_stream(), "job": controller.job_status()}

    @app.post("/api/stream/resume")
    def stream_resume() -> Dict[str, Any]:
        return {"ok": controller.resume_stream(), "job": controller.job_status()}

    @app.post("/api/stream/cancel")
    def stream_cancel() -> Dict[str, Any]:
        return {"ok": controller.cancel_stream(), "job": controller.job_status()}

    # Manual device control -------------------------------------------------
    @app.post("/api/device/command")
    def device_command(payload: Dict[str, Any]) -> Dict[str, Any]:
        command = str(payload.get("command", "")).strip()
        if not command:
            raise HTTPException(status_code=400, detail="command is required")
        return {"ok": _guard(lambda: controller.send_command(command))}

    @app.post("/api/device/realtime")
    def device_realtime(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"ok": _guard(lambda: controller.realtime(str(payload.get("name", ""))))}

    @app.post("/api/device/override")
    def device_override(payload: Dict[str, Any]) -> Dict[str, Any]:
        kind = str(payload.get("kind", "feed"))
        step = str(payload.get("step", "reset"))
        return {"ok": _guard(lambda: controller.override(kind, step))}

    @app.post("/api/device/jog")
    def device_jog(payload: Dict[str, Any]) -> Dict[str, Any]:
        axis = str(payload.get("axis", ""))
        distance = _number(payload, "distance")
        feed = _number(payload, "feed", 1000)
        return {"ok": _guard(lambda: controller.jog(axis, distance, feed))}

    @app.post("/api/device/home")
    def device_home() -> Dict[str, Any]:
        return {"ok": _guard(controller.home)}

    @app.post("/api/device/unlock")
    def device_unlock() -> Dict[str, Any]:
        return {"ok": _guard(controller.unlock)}

    @app.post("/api/device/zero")
    def device_zero() -> Dict[str, Any]:
        return {"ok": _guard(controller.set_zero)}

    @app.post("/api/device/goto-zero")
    def device_goto_zero() -> Dict[str, Any]:
        return {"ok": _guard(controller.go_to_zero)}

    @app.post("/api/device/z")
    def device_z(payload: Dict[str, Any]) -> Dict[str, Any]:
        z = _number(payload, "z")
        return {"ok": _guard(lambda: controller.go_to_z(z))}

    return app


app = create_app()

__all__ = ["app", "create_app", "create_controller"]

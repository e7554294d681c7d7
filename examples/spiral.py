"""Example script that generates a spiral and sends it to the server."""
from __future__ import annotations

import math
import requests

SERVER = "http://localhost:8000"


def build_spiral(turns: int = 10, radius: float = 100.0, steps: int = 800) -> list:
    pts = []
    for i in range(steps):
        t = i / (steps - 1)
        angle = turns * 2 * math.pi * t
        r = radius * t
        x = r * math.cos(angle)
        y = r * math.sin(angle)
        pts.append([x + radius, y + radius])
    # two colours: inner half from well 1, outer half from well 2
    half = steps // 2
    return [
        {"points": pts[: half + 1], "color": 1},
        {"points": pts[half:], "color": 2},
    ]


def main() -> None:
    payload = {
        "strokes": build_spiral(),
        "settings": {
            "output": {"canvas_width": 200, "canvas_height": 200, "target_width": 120, "target_height": 120},
            "dip": {"palette_enabled": True},
        },
    }
    res = requests.post(f"{SERVER}/api/program", json=payload, timeout=10)
    res.raise_for_status()
    data = res.json()
    print(f"{len(data['lines'])} lines, {len(data['dip_points'])} dips, est. {data['total_time']:.0f} s")

    res = requests.post(f"{SERVER}/api/connect", timeout=5)
    res.raise_for_status()
    print(res.json())


if __name__ == "__main__":
    main()

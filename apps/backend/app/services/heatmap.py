"""
heatmap.py — Cosmetic anomaly-intensity grid for the dashboard overlay.

A 10×10 grid of {x, y, value} cells, value in [0, 1]. Intensity is driven
by the decision's p_fake and concentrated on detected face regions; with no
face regions (video, audio, face gate disabled) the grid is flat.

Never decision-bearing: nothing reads the grid back into the verdict.
"""

from __future__ import annotations

from typing import Sequence

from app.ai.face_gate import FaceRegion
from app.services.decision_engine import Decision

GRID_SIZE = 10
_CELL_PCT = 100.0 / GRID_SIZE
_NEAR_MARGIN_PCT = 10.0


def _inside(region: FaceRegion, px: float, py: float, margin: float = 0.0) -> bool:
    return (
        region.x - margin <= px <= region.x + region.width + margin
        and region.y - margin <= py <= region.y + region.height + margin
    )


def build_heatmap(decision: Decision, face_regions: Sequence[FaceRegion] = ()) -> list[dict]:
    """Deterministic grid — the same decision and regions give the same cells."""
    p = decision.p_fake
    background = round(0.2 * p, 3)
    face_value = round(0.3 + 0.6 * p, 3)
    near_value = round((background + face_value) / 2, 3)

    cells = []
    for y in range(GRID_SIZE):
        for x in range(GRID_SIZE):
            px = (x + 0.5) * _CELL_PCT
            py = (y + 0.5) * _CELL_PCT
            if any(_inside(r, px, py) for r in face_regions):
                value = face_value
            elif any(_inside(r, px, py, _NEAR_MARGIN_PCT) for r in face_regions):
                value = near_value
            else:
                value = background
            cells.append({"x": x, "y": y, "value": value})
    return cells

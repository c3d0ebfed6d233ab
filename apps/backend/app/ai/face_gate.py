"""
face_gate.py — Decides whether an image contains analysable facial content.

The classifiers behind this pipeline are face-manipulation detectors; their
score means nothing on a landscape or a screenshot. The gate asks Gemini
Vision for a structured {hasFaces, faceCount, faceRegions, reason} object.

Fail-safe, not fail-fatal: a malformed reply or a failed Gemini call is
reported as "no faces", which routes the image to the explicit uncertain
decision instead of letting non-facial content be scored.

Bounding boxes are percentages (0–100) of the image width / height.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.ai.gemini_client import GeminiClient
from app.ai.parsing import extract_json

logger = logging.getLogger(__name__)

_FACE_PROMPT = """\
You are a face detection component in a forensic media pipeline.

Determine whether this image contains one or more human faces that are
large and clear enough for facial manipulation analysis.

Respond with valid JSON only:
{
  "hasFaces": <true|false>,
  "faceCount": <integer >= 0>,
  "faceRegions": [{"x": <0-100>, "y": <0-100>, "width": <0-100>, "height": <0-100>}],
  "reason": "<why no face is analysable, or null>"
}

Coordinates are percentages of the image width/height, measured from the top-left corner."""

_PARSE_FAILURE_REASON = "Face detection response could not be interpreted."
_CALL_FAILURE_REASON = "Face detection service unavailable."


@dataclass(frozen=True)
class FaceRegion:
    x: float
    y: float
    width: float
    height: float

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FaceDetectionResult:
    has_faces: bool
    face_count: int = 0
    face_regions: tuple[FaceRegion, ...] = field(default_factory=tuple)
    reason: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "has_faces": self.has_faces,
            "face_count": self.face_count,
            "face_regions": [r.as_dict() for r in self.face_regions],
            "reason": self.reason,
        }


def _pct(v) -> float:
    return round(max(0.0, min(100.0, float(v))), 2)


def _parse_regions(raw_regions) -> tuple[FaceRegion, ...]:
    if not isinstance(raw_regions, list):
        return ()
    regions = []
    for item in raw_regions:
        if not isinstance(item, dict):
            continue
        try:
            regions.append(
                FaceRegion(
                    x=_pct(item.get("x", 0)),
                    y=_pct(item.get("y", 0)),
                    width=_pct(item.get("width", 0)),
                    height=_pct(item.get("height", 0)),
                )
            )
        except (TypeError, ValueError, OverflowError):
            logger.debug("Skipping malformed face region: %r", item)
    return tuple(regions)


def _interpret(data: dict) -> FaceDetectionResult:
    regions = _parse_regions(data.get("faceRegions"))
    try:
        count = max(0, int(data.get("faceCount", len(regions))))
    except (TypeError, ValueError, OverflowError):
        count = len(regions)

    if not data["hasFaces"] or (count == 0 and not regions):
        reason = data.get("reason") or "No analysable face detected."
        return FaceDetectionResult(has_faces=False, reason=str(reason))

    return FaceDetectionResult(
        has_faces=True,
        face_count=max(count, len(regions)),
        face_regions=regions,
    )


def parse_face_detection(raw: str) -> FaceDetectionResult:
    """Parse the model reply; any malformed reply degrades to has_faces=False."""
    data = extract_json(raw)
    if data is None or not isinstance(data.get("hasFaces"), bool):
        return FaceDetectionResult(has_faces=False, reason=_PARSE_FAILURE_REASON)
    try:
        return _interpret(data)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.warning("Unreadable face detection reply: %s", exc)
        return FaceDetectionResult(has_faces=False, reason=_PARSE_FAILURE_REASON)


class FaceGate:
    """Usage: result = await FaceGate(gemini).detect(image_bytes, "image/jpeg")"""

    def __init__(self, gemini: GeminiClient):
        self._gemini = gemini

    async def detect(self, data: bytes, mime_type: str = "image/jpeg") -> FaceDetectionResult:
        try:
            raw = await self._gemini.generate_with_vision(
                _FACE_PROMPT,
                base64.b64encode(data).decode(),
                mime_type,
                response_key="face_detection",
                expect_json=True,
            )
        except Exception as exc:
            logger.warning("Face detection call failed, treating image as faceless: %s", exc)
            return FaceDetectionResult(has_faces=False, reason=_CALL_FAILURE_REASON)

        result = parse_face_detection(raw)
        logger.info(
            "Face gate: has_faces=%s count=%d%s",
            result.has_faces, result.face_count,
            f" reason={result.reason!r}" if result.reason else "",
        )
        return result

"""
gemini_client.py — The one place that talks to Gemini.

Two pipeline stages ask Gemini questions:

    FaceGate              "is there an analysable face in this image?"   (vision, JSON)
    ExplanationGenerator  "describe this already-made decision"          (vision or text, JSON)

Both receive a GeminiClient from app/dependencies.py; neither imports the
SDK. With AI_MOCK_MODE=true (the default) or without GEMINI_API_KEY the
client answers from _MOCK_RESPONSES, keyed by the caller's response_key,
so the whole pipeline runs offline.

SDK errors are logged and re-raised; the calling stage owns the fallback
(face gate → "no face", explanation → template text).
"""

import logging
import os
from typing import Any, Optional, Sequence

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai

from app.core.config import settings

logger = logging.getLogger(__name__)

# Inline parts above this many base64 chars (~11 MB of media) are rejected
# by the API, so the request is sent as text only.
_MAX_VISION_B64 = 15_000_000

_JSON_CONFIG = {"response_mime_type": "application/json"}

_MOCK_RESPONSES: dict[str, str] = {
    "default": "[MOCK] Gemini is disabled (AI_MOCK_MODE=true or no GEMINI_API_KEY).",
    "face_detection": (
        '{"hasFaces": true, "faceCount": 1, '
        '"faceRegions": [{"x": 32.5, "y": 18.0, "width": 35.0, "height": 46.0}], '
        '"reason": null}'
    ),
    "explanation": (
        '{"plain_explanation": "[MOCK] The automated check found no strong signs that this '
        'media was generated or edited by AI.", '
        '"technical_explanation": "[MOCK] Classifier probability is low. Skin texture, '
        'lighting direction and facial boundary blending are consistent with a camera capture.", '
        '"legal_explanation": "[MOCK] Automated forensic screening did not identify indicators '
        'of synthetic manipulation. This finding is probabilistic and should be corroborated.", '
        '"visual_artifacts": []}'
    ),
}


class GeminiClient:
    """
    Usage:
        gemini = GeminiClient(api_key=..., mock_mode=False, model="gemini-2.5-flash")
        raw = await gemini.generate_with_vision(prompt, b64, "image/png",
                                                response_key="face_detection", expect_json=True)

    Arguments left as None are read from settings.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        mock_mode: Optional[bool] = None,
        model: Optional[str] = None,
    ) -> None:
        self.model = model or settings.gemini_model
        self.mock_mode = settings.ai_mock_mode if mock_mode is None else mock_mode
        key = settings.gemini_api_key if api_key is None else api_key

        if not self.mock_mode and not key:
            logger.warning("GEMINI_API_KEY is empty; Gemini calls will return mock responses")
            self.mock_mode = True

        if not self.mock_mode:
            genai.configure(api_key=key)
            self._genai = genai

        logger.info(
            "GeminiClient ready (%s)", "mock" if self.mock_mode else f"model {self.model}"
        )

    @staticmethod
    def _mock(response_key: str) -> str:
        return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])

    async def _send(self, contents: Any, what: str, **kwargs: Any) -> str:
        try:
            response = await self._genai.GenerativeModel(self.model).generate_content_async(
                contents, **kwargs
            )
            return response.text
        except Exception as exc:
            logger.error("Gemini %s call failed (model=%s): %s", what, self.model, exc)
            raise

    async def generate(
        self,
        prompt: str,
        response_key: str = "default",
        expect_json: bool = False,
        **generation_kwargs: Any,
    ) -> str:
        """Text-only request. Raises whatever the SDK raises."""
        if self.mock_mode:
            return self._mock(response_key)
        if expect_json:
            generation_kwargs.setdefault("generation_config", _JSON_CONFIG)
        return await self._send(prompt, "text", **generation_kwargs)

    async def generate_with_vision(
        self,
        prompt: str,
        media_b64: str,
        mime_type: str,
        response_key: str = "default",
        extra_media: Sequence[tuple[str, str]] = (),
        expect_json: bool = False,
    ) -> str:
        """
        Prompt plus inline media parts: the primary item first, then each
        (base64, mime) pair of `extra_media` (e.g. a reference image).
        Oversized payloads degrade to a text-only request.
        """
        if self.mock_mode:
            return self._mock(response_key)

        size = len(media_b64) + sum(len(b64) for b64, _ in extra_media)
        if size > _MAX_VISION_B64:
            logger.warning(
                "Inline media too large (%d > %d base64 chars); sending prompt only",
                size, _MAX_VISION_B64,
            )
            return await self.generate(prompt, response_key=response_key, expect_json=expect_json)

        parts: list[dict] = [{"text": prompt}]
        for b64, mime in ((media_b64, mime_type), *extra_media):
            parts.append({"inline_data": {"mime_type": mime, "data": b64}})

        kwargs = {"generation_config": _JSON_CONFIG} if expect_json else {}
        return await self._send(parts, f"vision ({mime_type})", **kwargs)

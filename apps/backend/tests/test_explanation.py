"""
Tests for explanation parsing, templated fallback and the generator.

The generator must never touch the decision it describes: every test
that goes through ExplanationGenerator checks the decision afterwards.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.ai.explanation import (
    ExplanationGenerator,
    parse_explanation,
    template_explanation,
)
from app.ai.face_gate import FaceDetectionResult
from app.core.errors import ExplanationParseError
from app.services.decision_engine import decide

GOOD_REPLY = json.dumps(
    {
        "plain_explanation": "The face shows blending seams.",
        "technical_explanation": "Boundary artifacts along the jawline.",
        "legal_explanation": "Indicators of manipulation were identified.",
        "visual_artifacts": [
            {"type": "blending", "location": "jawline", "severity": "severe"},
            {"type": "lighting", "location": "forehead", "severity": "odd"},
            {"location": "nowhere"},
        ],
    }
)


def _gemini(reply=None, error=None):
    gemini = MagicMock()
    gemini.generate = AsyncMock(return_value=reply, side_effect=error)
    gemini.generate_with_vision = AsyncMock(return_value=reply, side_effect=error)
    return gemini


# ── parse_explanation ────────────────────────────────────────────────────────

class TestParseExplanation:

    def test_valid_reply(self):
        explanation = parse_explanation(f"```json\n{GOOD_REPLY}\n```")
        assert explanation.source == "model"
        assert explanation.plain_explanation == "The face shows blending seams."
        assert [a.severity for a in explanation.visual_artifacts] == ["high", "medium"]

    @pytest.mark.parametrize(
        "raw",
        [
            "I cannot help with that.",
            '{"plain_explanation": "x", "technical_explanation": "y"}',
            '{"plain_explanation": "x", "technical_explanation": "y", "legal_explanation": "   "}',
            '{"plain_explanation": 1, "technical_explanation": "y", "legal_explanation": "z"}',
        ],
    )
    def test_incomplete_reply_rejected(self, raw):
        with pytest.raises(ExplanationParseError):
            parse_explanation(raw)

    def test_artifact_list_capped(self):
        reply = {
            "plain_explanation": "a",
            "technical_explanation": "b",
            "legal_explanation": "c",
            "visual_artifacts": [{"type": f"t{i}", "location": "x", "severity": "low"} for i in range(50)],
        }
        assert len(parse_explanation(json.dumps(reply)).visual_artifacts) == 20

    @pytest.mark.parametrize("artifacts", [{"type": "blur"}, 5, "blur", None])
    def test_non_list_artifacts_ignored(self, artifacts):
        reply = {
            "plain_explanation": "a",
            "technical_explanation": "b",
            "legal_explanation": "c",
            "visual_artifacts": artifacts,
        }
        explanation = parse_explanation(json.dumps(reply))
        assert explanation.source == "model"
        assert explanation.visual_artifacts == ()


# ── template_explanation ─────────────────────────────────────────────────────

class TestTemplateExplanation:

    def test_uses_decision_numbers(self):
        explanation = template_explanation(decide(0.8))
        assert explanation.source == "template"
        assert explanation.plain_explanation.startswith("Image classified as FAKE with 20% credibility.")
        assert "0.80" in explanation.technical_explanation
        assert "20 out of 100" in explanation.legal_explanation
        assert explanation.visual_artifacts == ()

    def test_note_and_media_kind(self):
        explanation = template_explanation(decide(0.5), media_kind="video", note="No face found.")
        assert explanation.plain_explanation.startswith("Video classified as SUSPICIOUS")
        assert explanation.plain_explanation.endswith("No face found.")


# ── ExplanationGenerator ─────────────────────────────────────────────────────

class TestExplanationGenerator:

    async def test_model_reply_used(self):
        decision = decide(0.82)
        gemini = _gemini(reply=GOOD_REPLY)

        explanation = await ExplanationGenerator(gemini).generate(decision, b"img", "image/jpeg")

        assert explanation.source == "model"
        prompt = gemini.generate_with_vision.call_args.args[0]
        assert "FAKE" in prompt
        assert "18/100" in prompt
        assert decision == decide(0.82)

    async def test_parse_failure_falls_back_to_template(self):
        decision = decide(0.3)
        explanation = await ExplanationGenerator(_gemini(reply="garbled")).generate(decision, b"img")

        assert explanation.source == "template"
        assert "70% credibility" in explanation.plain_explanation
        assert decision.credibility_score == 70

    async def test_object_artifacts_reply_still_explains(self):
        reply = json.loads(GOOD_REPLY)
        reply["visual_artifacts"] = {"type": "blur"}
        decision = decide(0.82)

        explanation = await ExplanationGenerator(_gemini(reply=json.dumps(reply))).generate(
            decision, b"img"
        )

        assert explanation.source == "model"
        assert explanation.plain_explanation == "The face shows blending seams."
        assert explanation.visual_artifacts == ()
        assert decision == decide(0.82)

    async def test_call_failure_falls_back_to_template(self):
        gemini = _gemini(error=RuntimeError("deadline exceeded"))
        explanation = await ExplanationGenerator(gemini).generate(decide(0.6), b"img")
        assert explanation.source == "template"

    async def test_text_only_without_media(self):
        gemini = _gemini(reply=GOOD_REPLY)
        await ExplanationGenerator(gemini).generate(decide(0.1), media_kind="audio")

        gemini.generate.assert_awaited_once()
        gemini.generate_with_vision.assert_not_called()

    async def test_reference_attached_as_extra_media(self):
        gemini = _gemini(reply=GOOD_REPLY)
        await ExplanationGenerator(gemini).generate(
            decide(0.4), b"img", reference=(b"\x89PNG", "image/png")
        )

        kwargs = gemini.generate_with_vision.call_args.kwargs
        assert kwargs["extra_media"] == (("iVBORw==", "image/png"),)
        assert "known-authentic reference" in gemini.generate_with_vision.call_args.args[0]

    async def test_context_mentions_faces(self):
        gemini = _gemini(reply=GOOD_REPLY)
        faces = FaceDetectionResult(has_faces=True, face_count=2)
        await ExplanationGenerator(gemini).generate(decide(0.4), b"img", faces=faces)
        assert "2 face(s) detected" in gemini.generate_with_vision.call_args.args[0]

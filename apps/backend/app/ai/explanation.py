"""
explanation.py — Human-readable explanations of an already-made decision.

The DecisionEngine owns verdict / credibility_score / credibility_level.
This module only describes them, in three registers:

    plain_explanation      — for a non-specialist reader
    technical_explanation  — for an analyst
    legal_explanation      — a formal forensic finding

plus an optional list of cosmetic visual artifacts {type, location, severity}.

The prompt hands Gemini the final decision and forbids revising it. The
reply goes through parse_explanation(), a strict step that either returns
an Explanation or raises ExplanationParseError. Any ExplanationError
(parse failure or failed Gemini call) falls back to templated text built
from the decision's numbers, so result writing never waits on this stage.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from app.ai.face_gate import FaceDetectionResult
from app.ai.gemini_client import GeminiClient
from app.ai.parsing import extract_json
from app.core.errors import ExplanationError, ExplanationParseError
from app.services.decision_engine import Decision

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high"]
_SEVERITY_ALIASES = {
    "low": "low", "minor": "low", "info": "low",
    "medium": "medium", "moderate": "medium", "warning": "medium",
    "high": "high", "severe": "high", "critical": "high",
}
_MAX_ARTIFACTS = 20

_EXPLANATION_PROMPT = """\
You are a forensic media analyst writing the explanation section of a report.

An automated detection pipeline has ALREADY reached a final decision for this {media_kind}.
The decision is authoritative. You must explain it and you must NOT change, dispute or
re-score it:

  Verdict:            {verdict}
  Credibility level:  {credibility_level}
  Credibility score:  {credibility_score}/100  (higher = more likely authentic)
  Fake probability:   {p_fake:.2f}

Context:
{context}

Describe the visual evidence that is consistent with this decision.

Respond with valid JSON only:
{{
  "plain_explanation": "2-3 sentences for a general audience",
  "technical_explanation": "detailed technical description for an analyst",
  "legal_explanation": "formal forensic finding suitable for a legal record",
  "visual_artifacts": [{{"type": "string", "location": "string", "severity": "low|medium|high"}}]
}}"""


@dataclass(frozen=True)
class VisualArtifact:
    type: str
    location: str
    severity: Severity

    def as_dict(self) -> dict:
        return {"type": self.type, "location": self.location, "severity": self.severity}


@dataclass(frozen=True)
class Explanation:
    plain_explanation: str
    technical_explanation: str
    legal_explanation: str
    visual_artifacts: tuple[VisualArtifact, ...] = field(default_factory=tuple)
    source: Literal["model", "template"] = "model"


# ── Parsing ───────────────────────────────────────────────────────────────────

def _parse_artifacts(raw_artifacts) -> tuple[VisualArtifact, ...]:
    if not isinstance(raw_artifacts, list):
        return ()
    artifacts = []
    for item in raw_artifacts[:_MAX_ARTIFACTS]:
        if not isinstance(item, dict) or not item.get("type"):
            continue
        severity = _SEVERITY_ALIASES.get(str(item.get("severity", "")).lower(), "medium")
        artifacts.append(
            VisualArtifact(
                type=str(item["type"])[:120],
                location=str(item.get("location") or "unspecified")[:200],
                severity=severity,
            )
        )
    return tuple(artifacts)


def parse_explanation(raw: str) -> Explanation:
    """
    Strictly parse a model reply.

    Raises:
        ExplanationParseError: no JSON object, any of the three text
            fields missing / empty, or an artifact list that cannot be read.
    """
    data = extract_json(raw)
    if data is None:
        raise ExplanationParseError("Explanation reply contained no JSON object")

    texts = {}
    for key in ("plain_explanation", "technical_explanation", "legal_explanation"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ExplanationParseError(f"Explanation reply missing '{key}'")
        texts[key] = value.strip()

    try:
        artifacts = _parse_artifacts(data.get("visual_artifacts"))
    except (TypeError, ValueError) as exc:
        raise ExplanationParseError(f"Explanation reply has malformed visual_artifacts: {exc}") from exc

    return Explanation(**texts, visual_artifacts=artifacts, source="model")


# ── Templates ─────────────────────────────────────────────────────────────────

_LEVEL_PHRASES = {
    "authentic": "shows no meaningful indicators of manipulation",
    "likely_authentic": "shows only weak indicators of manipulation",
    "uncertain": "could not be reliably classified as authentic or manipulated",
    "likely_manipulated": "shows indicators consistent with manipulation",
    "manipulated": "shows strong indicators of synthetic generation or manipulation",
}


def template_explanation(
    decision: Decision,
    media_kind: str = "image",
    note: Optional[str] = None,
) -> Explanation:
    """Deterministic text built only from the decision's fields."""
    subject = media_kind.capitalize()
    phrase = _LEVEL_PHRASES.get(decision.credibility_level, "was analysed")
    plain = (
        f"{subject} classified as {decision.verdict} with "
        f"{decision.credibility_score}% credibility. The {media_kind} {phrase}."
    )
    if note:
        plain = f"{plain} {note}"
    technical = (
        f"Automated classification produced a fake probability of {decision.p_fake:.2f}, "
        f"mapped to verdict {decision.verdict} (credibility level "
        f"{decision.credibility_level}, score {decision.credibility_score}/100)."
    )
    legal = (
        f"Automated forensic screening of the submitted {media_kind} resulted in a finding of "
        f"{decision.verdict} with a credibility score of {decision.credibility_score} out of 100. "
        "This finding is probabilistic and should be corroborated by a qualified examiner."
    )
    return Explanation(
        plain_explanation=plain,
        technical_explanation=technical,
        legal_explanation=legal,
        source="template",
    )


# ── Generator ─────────────────────────────────────────────────────────────────

def _build_context(
    faces: Optional[FaceDetectionResult],
    frame_summary: Optional[str],
    has_reference: bool,
    note: Optional[str],
) -> str:
    lines = []
    if faces is not None:
        if faces.has_faces:
            lines.append(f"- {faces.face_count} face(s) detected.")
        else:
            lines.append(f"- No analysable face detected: {faces.reason or 'unknown reason'}.")
    if frame_summary:
        lines.append(f"- {frame_summary}")
    if has_reference:
        lines.append("- The second attached image is a known-authentic reference for comparison.")
    if note:
        lines.append(f"- {note}")
    return "\n".join(lines) or "- No additional context."


class ExplanationGenerator:
    """
    Usage:
        explanation = await ExplanationGenerator(gemini).generate(decision, image_bytes)
    """

    def __init__(self, gemini: GeminiClient):
        self._gemini = gemini

    async def _request(
        self,
        decision: Decision,
        data: Optional[bytes],
        mime_type: str,
        media_kind: str,
        context: str,
        reference: Optional[tuple[bytes, str]],
    ) -> Explanation:
        prompt = _EXPLANATION_PROMPT.format(
            media_kind=media_kind,
            verdict=decision.verdict,
            credibility_level=decision.credibility_level,
            credibility_score=decision.credibility_score,
            p_fake=decision.p_fake,
            context=context,
        )
        try:
            if data is None:
                raw = await self._gemini.generate(
                    prompt, response_key="explanation", expect_json=True
                )
            else:
                extra = ()
                if reference is not None:
                    extra = ((base64.b64encode(reference[0]).decode(), reference[1]),)
                raw = await self._gemini.generate_with_vision(
                    prompt,
                    base64.b64encode(data).decode(),
                    mime_type,
                    response_key="explanation",
                    extra_media=extra,
                    expect_json=True,
                )
        except Exception as exc:
            raise ExplanationError(f"Explanation service call failed: {exc}") from exc
        return parse_explanation(raw)

    async def generate(
        self,
        decision: Decision,
        data: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
        *,
        media_kind: str = "image",
        faces: Optional[FaceDetectionResult] = None,
        frame_summary: Optional[str] = None,
        reference: Optional[tuple[bytes, str]] = None,
        note: Optional[str] = None,
    ) -> Explanation:
        context = _build_context(faces, frame_summary, reference is not None, note)
        try:
            explanation = await self._request(
                decision, data, mime_type, media_kind, context, reference
            )
        except ExplanationError as exc:
            logger.warning("Explanation fell back to template [%s]: %s", exc.category, exc.message)
            return template_explanation(decision, media_kind, note)

        logger.info(
            "Explanation generated (%d artifacts) for verdict %s",
            len(explanation.visual_artifacts), decision.verdict,
        )
        return explanation

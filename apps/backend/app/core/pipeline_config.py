"""
pipeline_config.py — Explicit configuration handed to AnalysisPipeline.

The pipeline and its adapters take everything they need through this
struct instead of reading environment variables, so tests can build a
pipeline with any combination of classifiers without touching `settings`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from app.core.config import ClassifierKind, Settings
from app.services.decision_engine import DEFAULT_THRESHOLDS, Thresholds


@dataclass(frozen=True)
class ClassifierConfig:
    name: str                      # "primary" / "fallback", used in logs + metadata
    kind: ClassifierKind
    url: str
    api_key: str = ""
    timeout: float = 30.0
    poll_interval: float = 2.0     # polling classifiers only
    max_poll_attempts: int = 30    # polling classifiers only
    mock_mode: bool = False


@dataclass(frozen=True)
class ExplanationServiceConfig:
    """Gemini settings shared by the face gate and the explanation generator."""

    api_key: str = ""
    model: str = "gemini-2.5-flash"
    mock_mode: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    primary_classifier: Optional[ClassifierConfig] = None
    fallback_classifier: Optional[ClassifierConfig] = None
    explanation_service: ExplanationServiceConfig = field(default_factory=ExplanationServiceConfig)
    thresholds: Thresholds = DEFAULT_THRESHOLDS
    max_video_frames: int = 10
    face_gate_enabled: bool = True
    media_allowed_hosts: tuple[str, ...] = ()
    media_max_bytes: int = 50 * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        """
        Build the pipeline config from environment settings.

        A classifier with an empty URL is "not configured". In mock mode the
        primary is always present (returning canned verdicts) so the whole
        pipeline runs end-to-end without credentials.
        """
        return cls(
            primary_classifier=_classifier_config(
                "primary",
                settings.primary_classifier_kind,
                settings.primary_classifier_url,
                settings.primary_classifier_api_key,
                settings,
                always=settings.ai_mock_mode,
            ),
            fallback_classifier=_classifier_config(
                "fallback",
                settings.fallback_classifier_kind,
                settings.fallback_classifier_url,
                settings.fallback_classifier_api_key,
                settings,
            ),
            explanation_service=ExplanationServiceConfig(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
                mock_mode=settings.ai_mock_mode,
            ),
            max_video_frames=settings.max_video_frames,
            face_gate_enabled=settings.face_gate_enabled,
            media_allowed_hosts=tuple(settings.media_allowed_hosts),
            media_max_bytes=settings.media_max_bytes,
        )


def _classifier_config(
    name: str,
    kind: ClassifierKind,
    url: str,
    api_key: str,
    settings: Settings,
    always: bool = False,
) -> Optional[ClassifierConfig]:
    if not url and not always:
        return None
    return ClassifierConfig(
        name=name,
        kind=kind,
        url=url,
        api_key=api_key,
        timeout=settings.classifier_timeout_seconds,
        poll_interval=settings.classifier_poll_interval_seconds,
        max_poll_attempts=settings.classifier_max_poll_attempts,
        mock_mode=settings.ai_mock_mode,
    )

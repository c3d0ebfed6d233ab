"""
analysis.py — Pydantic models for the media analysis API.

AnalyzeRequest    — what the dashboard sends to start an analysis
AnalysisResultOut — the persisted analysis_results document, as returned
                    by both POST (completed run) and GET (polling)
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MediaType = Literal["image", "video", "audio"]
AnalysisStatus = Literal["pending", "processing", "completed", "failed"]
VerdictType = Literal["AUTHENTIC", "SUSPICIOUS", "LIKELY_FAKE", "FAKE"]
CredibilityLevelType = Literal[
    "authentic", "likely_authentic", "uncertain", "likely_manipulated", "manipulated"
]


# ── Request ───────────────────────────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    """Payload for POST /api/v1/analysis. Immutable for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    media_id: str = Field(..., min_length=1, max_length=128)
    media_type: MediaType
    # Storage path in the media bucket, an http(s) URL or a data: URL
    source_locator: str = Field(default="", max_length=4096)
    # Pre-extracted video frames, in playback order
    frame_locators: Optional[list[str]] = None
    # Known-authentic comparison image
    reference_locator: Optional[str] = None

    @model_validator(mode="after")
    def _check_locators(self) -> "AnalyzeRequest":
        if self.media_type == "video":
            if not self.frame_locators:
                raise ValueError("frame_locators is required for video analysis")
        else:
            if self.frame_locators:
                raise ValueError("frame_locators is only accepted for video analysis")
            if not self.source_locator:
                raise ValueError("source_locator is required for image and audio analysis")
        return self


# ── Result sub-models ─────────────────────────────────────────────────────────

class VisualArtifactOut(BaseModel):
    type: str
    location: str
    severity: Literal["low", "medium", "high"]


class HeatmapCell(BaseModel):
    x: int
    y: int
    value: float = Field(ge=0.0, le=1.0)


class FrameResult(BaseModel):
    index: int      # position in the request's frame_locators
    p_fake: float
    is_fake: bool


class FrameAnalysis(BaseModel):
    frames: list[FrameResult] = Field(default_factory=list)
    aggregation: Literal["mean", "max", "none"] = "none"
    mean_p_fake: Optional[float] = None
    max_p_fake: Optional[float] = None
    fake_frames: int = 0
    total_frames: int = 0


class HeatmapData(BaseModel):
    grid: list[HeatmapCell] = Field(default_factory=list)
    frame_analysis: Optional[FrameAnalysis] = None


class ErrorDetail(BaseModel):
    message: str
    category: str


# ── Result ────────────────────────────────────────────────────────────────────

class AnalysisResultOut(BaseModel):
    """
    A stored analysis result.

    While status is pending/processing (or failed) the decision fields are
    absent; a verdict is never returned without its credibility score.
    """

    media_id: str
    media_type: Optional[MediaType] = None
    status: AnalysisStatus
    verdict: Optional[VerdictType] = None
    credibility_level: Optional[CredibilityLevelType] = None
    credibility_score: Optional[int] = Field(default=None, ge=0, le=100)
    p_fake: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    visual_artifacts: list[VisualArtifactOut] = Field(default_factory=list)
    plain_explanation: Optional[str] = None
    technical_explanation: Optional[str] = None
    legal_explanation: Optional[str] = None
    heatmap_data: Optional[HeatmapData] = None
    explanation_source: Optional[Literal["model", "template"]] = None
    sha256: Optional[str] = None
    analysis_metadata: dict = Field(default_factory=dict)
    error: Optional[ErrorDetail] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _verdict_has_score(self) -> "AnalysisResultOut":
        if self.verdict is not None and self.credibility_score is None:
            raise ValueError("verdict present without credibility_score")
        return self

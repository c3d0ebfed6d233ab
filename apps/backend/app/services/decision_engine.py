"""
decision_engine.py — Maps a fake-probability to a verdict and credibility score.

Pure and deterministic: no I/O, no randomness, no clock. The same p_fake
always yields an identical Decision, which is the single source of truth
the explanation step must describe and never contradict.

SINGLE IMAGE
────────────
    p_fake ≥ 0.70          → FAKE        / manipulated
    0.55 ≤ p_fake < 0.70   → LIKELY_FAKE / likely_manipulated
    0.40 ≤ p_fake < 0.55   → SUSPICIOUS  / uncertain
    0.20 ≤ p_fake < 0.40   → AUTHENTIC   / likely_authentic
    p_fake < 0.20          → AUTHENTIC   / authentic

    credibility_score = round((1 - p_fake) * 100), half-up, in every bucket.
    The label is a discretisation of p_fake; the score stays continuous, so
    two samples in the same bucket still get different scores.

VIDEO
─────
    Frames with p_fake ≥ 0.5 are flagged. If more than 30 % of the analysed
    frames are flagged the worst frame (max) drives the verdict, otherwise
    the mean does. Isolated single-frame false positives are averaged out;
    widespread manipulation is not.

USAGE
─────
    from app.services.decision_engine import decide, decide_video

    decide(0.72).verdict                        # "FAKE"
    decision, _ = decide_video([0.9, 0.8, 0.1, 0.1])
    decision.verdict                            # "FAKE" (max, 50 % flagged)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Sequence

Verdict = Literal["AUTHENTIC", "SUSPICIOUS", "LIKELY_FAKE", "FAKE"]
CredibilityLevel = Literal[
    "authentic", "likely_authentic", "uncertain", "likely_manipulated", "manipulated"
]
AggregationStrategy = Literal["mean", "max"]


@dataclass(frozen=True)
class Thresholds:
    """Empirically tuned policy constants (lower bounds, inclusive)."""

    fake: float = 0.70
    likely_fake: float = 0.55
    suspicious: float = 0.40
    likely_authentic: float = 0.20
    # Per-frame flag and the share of flagged frames that switches video
    # aggregation from mean to max (strictly greater than).
    frame_fake: float = 0.5
    fake_frame_ratio: float = 0.30


DEFAULT_THRESHOLDS = Thresholds()


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    credibility_level: CredibilityLevel
    credibility_score: int  # 0–100, higher = more likely authentic
    p_fake: float           # the value that produced this decision

    def as_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "credibility_level": self.credibility_level,
            "credibility_score": self.credibility_score,
            "p_fake": self.p_fake,
        }


@dataclass(frozen=True)
class FrameAggregate:
    effective_p_fake: float
    mean_p_fake: float
    max_p_fake: float
    fake_frames: int
    total_frames: int
    strategy: AggregationStrategy


# Used when there is no trustworthy signal: no face found, or every
# classifier failed. Never silently "authentic", never silently "fake".
UNCERTAIN_DECISION = Decision(
    verdict="SUSPICIOUS",
    credibility_level="uncertain",
    credibility_score=50,
    p_fake=0.5,
)


def credibility_score(p_fake: float) -> int:
    """round((1 - p_fake) * 100) with half-up rounding."""
    return int(math.floor((1.0 - p_fake) * 100.0 + 0.5))


def _validate(p_fake: float) -> float:
    value = float(p_fake)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"p_fake must be within [0, 1], got {p_fake!r}")
    return value


def decide(p_fake: float, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> Decision:
    """Map a single fake-probability to a Decision."""
    p = _validate(p_fake)

    if p >= thresholds.fake:
        verdict, level = "FAKE", "manipulated"
    elif p >= thresholds.likely_fake:
        verdict, level = "LIKELY_FAKE", "likely_manipulated"
    elif p >= thresholds.suspicious:
        verdict, level = "SUSPICIOUS", "uncertain"
    elif p >= thresholds.likely_authentic:
        verdict, level = "AUTHENTIC", "likely_authentic"
    else:
        verdict, level = "AUTHENTIC", "authentic"

    return Decision(
        verdict=verdict,
        credibility_level=level,
        credibility_score=credibility_score(p),
        p_fake=p,
    )


def is_fake_frame(p_fake: float, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> bool:
    return p_fake >= thresholds.frame_fake


def aggregate_frames(
    p_fakes: Sequence[float], thresholds: Thresholds = DEFAULT_THRESHOLDS
) -> FrameAggregate:
    """
    Reduce per-frame probabilities to one effective p_fake.

    Raises ValueError for an empty sequence; the caller decides what an
    empty video means.
    """
    values = [_validate(p) for p in p_fakes]
    if not values:
        raise ValueError("aggregate_frames() needs at least one frame")

    mean_p = sum(values) / len(values)
    max_p = max(values)
    fake_frames = sum(1 for p in values if is_fake_frame(p, thresholds))

    if fake_frames / len(values) > thresholds.fake_frame_ratio:
        strategy, effective = "max", max_p
    else:
        strategy, effective = "mean", mean_p

    return FrameAggregate(
        effective_p_fake=min(1.0, max(0.0, effective)),
        mean_p_fake=mean_p,
        max_p_fake=max_p,
        fake_frames=fake_frames,
        total_frames=len(values),
        strategy=strategy,
    )


def decide_video(
    p_fakes: Sequence[float], thresholds: Thresholds = DEFAULT_THRESHOLDS
) -> tuple[Decision, FrameAggregate]:
    """Aggregate per-frame probabilities, then decide on the effective value."""
    aggregate = aggregate_frames(p_fakes, thresholds)
    return decide(aggregate.effective_p_fake, thresholds), aggregate

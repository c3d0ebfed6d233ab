"""
analysis_pipeline.py — Orchestrates one forensic analysis run.

  Image:
    fetch → face gate → classifier chain (primary, fallback once) → decide
          → explanation → heatmap → write completed
    No analysable face: the classifiers are never called; the run completes
    with the fixed uncertain decision (SUSPICIOUS / uncertain / 50 / 0.5).

  Video:
    sample ≤ max_video_frames frame locators (evenly spaced) → fetch frames
    concurrently (failed frames dropped) → classify frames concurrently with
    the primary classifier (failed frames dropped, no fallback per frame)
    → decide_video (mean, or max when > 30 % of frames are flagged)
    → explanation on the first frame → write completed

  Audio:
    fetch → classifier chain → decide → explanation (no face gate)

Degradations that never abort a run:
  face gate failure    → treated as "no face"     → uncertain decision
  all classifiers fail → fail-safe p_fake = 0.5    → uncertain decision
  explanation failure  → templated text, decision untouched

Fatal (result written as failed, then re-raised to the route):
  FetchError, InsufficientFramesError
PersistenceError always propagates: the caller must know nothing was stored.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

from app.ai.classifiers import ChainOutcome, ClassifierChain
from app.ai.explanation import Explanation, ExplanationGenerator
from app.ai.face_gate import FaceDetectionResult, FaceGate
from app.core.errors import FetchError, ForensicsError, InsufficientFramesError, PersistenceError
from app.core.pipeline_config import PipelineConfig
from app.models.analysis import AnalyzeRequest
from app.services.decision_engine import (
    UNCERTAIN_DECISION,
    Decision,
    FrameAggregate,
    decide,
    decide_video,
    is_fake_frame,
)
from app.services.heatmap import build_heatmap
from app.services.media_fetcher import FetchedMedia, MediaFetcher, sample_frames
from app.services.result_writer import ResultWriter

logger = logging.getLogger(__name__)

_NO_FACE_NOTE = (
    "No analysable face was detected, so the manipulation detectors were not applied "
    "and no reliable authenticity score could be computed."
)
_NO_SIGNAL_NOTE = (
    "The detection services could not be reached, so the result is reported as uncertain."
)


def _failure_entries(outcome: ChainOutcome) -> list[dict]:
    return [
        {"classifier": a.classifier, "category": a.error_category, "detail": a.error_detail}
        for a in outcome.failures
    ]


class AnalysisPipeline:
    """
    Usage:
        pipeline = AnalysisPipeline(config, fetcher, face_gate, chain, explainer, writer)
        document = await pipeline.run(AnalyzeRequest(media_id="m1", media_type="image",
                                                     source_locator="cases/1/photo.jpg"))
    """

    def __init__(
        self,
        config: PipelineConfig,
        fetcher: MediaFetcher,
        face_gate: FaceGate,
        classifiers: ClassifierChain,
        explainer: ExplanationGenerator,
        writer: ResultWriter,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.face_gate = face_gate
        self.classifiers = classifiers
        self.explainer = explainer
        self.writer = writer

    async def run(self, request: AnalyzeRequest) -> dict:
        logger.info("Starting %s analysis for media %s", request.media_type, request.media_id)
        await self.writer.mark_processing(request.media_id, request.media_type)

        try:
            if request.media_type == "video":
                result = await self._run_video(request)
            else:
                result = await self._run_single(request)
        except (FetchError, InsufficientFramesError) as exc:
            await self.writer.write_failed(request.media_id, exc)
            raise
        except PersistenceError:
            raise
        except Exception as exc:
            logger.exception("Analysis for media %s crashed", request.media_id)
            failure = ForensicsError(f"Analysis failed: {exc}")
            await self.writer.write_failed(request.media_id, failure)
            raise failure from exc

        await self.writer.write_completed(request.media_id, result)
        return {
            **result,
            "media_id": request.media_id,
            "media_type": request.media_type,
            "status": "completed",
        }

    # ── Image / audio ─────────────────────────────────────────────────────────

    async def _run_single(self, request: AnalyzeRequest) -> dict:
        media = await self.fetcher.fetch(request.source_locator)
        reference = await self._fetch_reference(request)
        metadata: dict = {
            "analysis": request.media_type,
            "reference_compared": reference is not None,
        }

        faces: Optional[FaceDetectionResult] = None
        if request.media_type == "image" and self.config.face_gate_enabled:
            faces = await self.face_gate.detect(media.data, media.content_type)
            metadata["face_gate"] = faces.as_dict()
            if not faces.has_faces:
                logger.info("Media %s: no analysable face, skipping classifiers", request.media_id)
                metadata.update(classifier=None, fallback_used=False, classifier_failures=[])
                explanation = await self.explainer.generate(
                    UNCERTAIN_DECISION, media.data, media.content_type,
                    media_kind=request.media_type, faces=faces,
                    reference=reference, note=_NO_FACE_NOTE,
                )
                return self._document(UNCERTAIN_DECISION, explanation, media.sha256, metadata)

        outcome = await self.classifiers.classify(media.data, media.content_type)
        metadata.update(
            classifier=outcome.verdict.classifier,
            fallback_used=outcome.fallback_used,
            classifier_failures=_failure_entries(outcome),
        )

        if outcome.verdict.succeeded:
            decision = decide(outcome.verdict.p_fake, self.config.thresholds)
            note = None
        else:
            decision = UNCERTAIN_DECISION
            note = _NO_SIGNAL_NOTE

        explanation = await self.explainer.generate(
            decision, media.data, media.content_type,
            media_kind=request.media_type, faces=faces, reference=reference, note=note,
        )
        regions = faces.face_regions if faces is not None else ()
        return self._document(decision, explanation, media.sha256, metadata, regions)

    # ── Video ─────────────────────────────────────────────────────────────────

    async def _run_video(self, request: AnalyzeRequest) -> dict:
        sampled = sample_frames(request.frame_locators or [], self.config.max_video_frames)
        frames = await self.fetcher.fetch_frames(sampled)
        reference = await self._fetch_reference(request)

        results = await self.classifiers.classify_frames(
            [(f.index, f.media.data, f.media.content_type) for f in frames]
        )
        classified = [(index, verdict) for index, verdict in results if verdict.succeeded]
        failed = [verdict for _, verdict in results if not verdict.succeeded]

        aggregate: Optional[FrameAggregate] = None
        if classified:
            decision, aggregate = decide_video(
                [v.p_fake for _, v in classified], self.config.thresholds
            )
            note = None
        else:
            logger.warning("Media %s: no frame could be classified", request.media_id)
            decision = UNCERTAIN_DECISION
            note = _NO_SIGNAL_NOTE

        frame_analysis = {
            "frames": [
                {
                    "index": index,
                    "p_fake": v.p_fake,
                    "is_fake": is_fake_frame(v.p_fake, self.config.thresholds),
                }
                for index, v in classified
            ],
            "aggregation": aggregate.strategy if aggregate else "none",
            "mean_p_fake": aggregate.mean_p_fake if aggregate else None,
            "max_p_fake": aggregate.max_p_fake if aggregate else None,
            "fake_frames": aggregate.fake_frames if aggregate else 0,
            "total_frames": aggregate.total_frames if aggregate else 0,
        }
        metadata = {
            "analysis": "video",
            "reference_compared": reference is not None,
            "classifier": self.classifiers.primary.name if self.classifiers.primary else None,
            "fallback_used": False,
            "classifier_failures": [
                {"classifier": v.classifier, "category": v.error_category, "detail": v.error_detail}
                for v in failed
            ],
            "frames_requested": len(request.frame_locators or []),
            "frames_sampled": len(sampled),
            "frames_fetched": len(frames),
            "frames_classified": len(classified),
        }

        summary = None
        if aggregate:
            summary = (
                f"Video: {aggregate.total_frames} of {len(sampled)} sampled frames classified, "
                f"{aggregate.fake_frames} flagged as fake; the verdict uses the "
                f"{aggregate.strategy} frame probability."
            )
        first = frames[0].media
        explanation = await self.explainer.generate(
            decision, first.data, first.content_type,
            media_kind="video", frame_summary=summary, reference=reference, note=note,
        )

        digest = hashlib.sha256()
        for frame in frames:
            digest.update(frame.media.data)
        return self._document(
            decision, explanation, digest.hexdigest(), metadata, frame_analysis=frame_analysis
        )

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _fetch_reference(self, request: AnalyzeRequest) -> Optional[tuple[bytes, str]]:
        if not request.reference_locator:
            return None
        try:
            media: FetchedMedia = await self.fetcher.fetch(request.reference_locator)
        except FetchError as exc:
            logger.warning("Reference image unavailable for media %s: %s", request.media_id, exc.message)
            return None
        return media.data, media.content_type

    @staticmethod
    def _document(
        decision: Decision,
        explanation: Explanation,
        sha256: str,
        metadata: dict,
        face_regions=(),
        frame_analysis: Optional[dict] = None,
    ) -> dict:
        return {
            **decision.as_dict(),
            "visual_artifacts": [a.as_dict() for a in explanation.visual_artifacts],
            "plain_explanation": explanation.plain_explanation,
            "technical_explanation": explanation.technical_explanation,
            "legal_explanation": explanation.legal_explanation,
            "heatmap_data": {
                "grid": build_heatmap(decision, face_regions),
                "frame_analysis": frame_analysis,
            },
            "explanation_source": explanation.source,
            "sha256": sha256,
            "analysis_metadata": metadata,
            "completed_at": datetime.now(tz=timezone.utc),
        }

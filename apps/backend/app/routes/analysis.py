"""
analysis.py — Media analysis endpoints.

Routes:
  POST /api/v1/analysis             — run the forensic pipeline for one media item
  GET  /api/v1/analysis/{media_id}  — read the stored result (for polling)

HOW THE DATA FLOWS
──────────────────
1. The dashboard uploads the file to the GridFS media bucket (or extracts
   video frames and uploads those) and creates the media record.
2. It POSTs {media_id, media_type, source_locator, frame_locators?,
   reference_locator?} here.
3. AnalysisPipeline marks the result `processing`, runs fetch → face gate →
   classifiers → decision → explanation, and writes the result once.
4. The completed result is returned; other clients can poll the GET route
   and see processing / completed / failed.

ERRORS
──────
Every error body is {"detail": {"message": ..., "category": ...}}.
  FetchError               → 404 (object missing) / 502 (store unreachable)
  InsufficientFramesError  → 422
  PersistenceError         → 503
Classifier and explanation failures never surface here: they degrade to an
"uncertain" decision or templated text, and the categories of the failed
classifiers are kept in analysis_metadata.classifier_failures.

No authentication at this layer: media_id is already resolved by the caller.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.ai.analysis_pipeline import AnalysisPipeline
from app.core.errors import (
    FetchError,
    ForensicsError,
    InsufficientFramesError,
    PersistenceError,
)
from app.core.rate_limit import ANALYSIS_RATE_LIMIT, limiter
from app.dependencies import get_analysis_pipeline, get_result_writer
from app.models.analysis import AnalysisResultOut, AnalyzeRequest
from app.services.result_writer import ResultWriter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])


def _http_error(exc: ForensicsError) -> HTTPException:
    if isinstance(exc, FetchError):
        status = 404 if exc.not_found else 502
    elif isinstance(exc, InsufficientFramesError):
        status = 422
    elif isinstance(exc, PersistenceError):
        status = 503
    else:
        status = 500
    return HTTPException(status_code=status, detail=exc.to_detail())


@router.post("", response_model=AnalysisResultOut, status_code=200)
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def analyze_media(
    request: Request,
    payload: AnalyzeRequest,
    pipeline: AnalysisPipeline = Depends(get_analysis_pipeline),
):
    """
    Analyse one image, video or audio item and store the result.

    Returns the completed result: verdict, credibility level + score,
    p_fake, explanations, artifacts and heatmap data.
    """
    try:
        document = await pipeline.run(payload)
    except ForensicsError as exc:
        logger.warning(
            "Analysis request for media %s failed [%s]: %s",
            payload.media_id, exc.category, exc.message,
        )
        raise _http_error(exc)

    return AnalysisResultOut(**document)


@router.get("/{media_id}", response_model=AnalysisResultOut)
async def get_analysis(media_id: str, writer: ResultWriter = Depends(get_result_writer)):
    """Return the stored result for a media item (any status)."""
    try:
        doc = await writer.get(media_id)
    except PersistenceError as exc:
        raise _http_error(exc)

    if not doc:
        raise HTTPException(
            status_code=404,
            detail={"message": "No analysis found for this media", "category": "not_found"},
        )
    return AnalysisResultOut(**doc)

"""
result_writer.py — Persists analysis results in the `analysis_results` collection.

One document per media_id. Lifecycle of a run:

    mark_processing()   status=processing, fields from any previous run cleared
    write_completed()   one update: every result field + status=completed
      or write_failed() one update: status=failed + error, no result fields

Writes are `update_one(..., upsert=True)` keyed by media_id, so repeating
an identical write leaves an identical document, and a new run for the
same media_id replaces the previous result (no history is kept).

A missing database or any driver error raises PersistenceError: the
caller must learn that the analysis did not complete.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pymongo.errors import PyMongoError

from app.core.database import RESULTS_COLLECTION
from app.core.errors import ForensicsError, PersistenceError

logger = logging.getLogger(__name__)

RESULT_FIELDS = (
    "verdict",
    "credibility_level",
    "credibility_score",
    "p_fake",
    "visual_artifacts",
    "plain_explanation",
    "technical_explanation",
    "legal_explanation",
    "heatmap_data",
    "explanation_source",
    "sha256",
    "analysis_metadata",
)


def _unset(*fields: str) -> dict:
    return {f: "" for f in fields}


class ResultWriter:
    def __init__(self, db: Optional[Any]):
        self._db = db

    def _collection(self):
        if self._db is None:
            raise PersistenceError("Database unavailable, analysis result cannot be stored")
        return self._db[RESULTS_COLLECTION]

    async def _update(self, media_id: str, update: dict) -> None:
        collection = self._collection()
        try:
            await collection.update_one({"media_id": media_id}, update, upsert=True)
        except PyMongoError as exc:
            logger.error("Result write failed for media %s: %s", media_id, exc)
            raise PersistenceError(f"Could not store analysis result: {exc}") from exc

    async def mark_processing(self, media_id: str, media_type: str) -> None:
        await self._update(
            media_id,
            {
                "$set": {
                    "media_id": media_id,
                    "media_type": media_type,
                    "status": "processing",
                    "started_at": datetime.now(tz=timezone.utc),
                },
                "$unset": _unset(*RESULT_FIELDS, "error", "completed_at"),
            },
        )
        logger.info("Analysis for media %s marked processing", media_id)

    async def write_completed(self, media_id: str, result: dict) -> None:
        """`result` holds every RESULT_FIELDS key plus completed_at."""
        missing = [f for f in RESULT_FIELDS if f not in result]
        if missing:
            raise ValueError(f"Result for media {media_id} missing fields: {missing}")

        fields = {k: result[k] for k in (*RESULT_FIELDS, "completed_at")}
        await self._update(
            media_id,
            {
                "$set": {**fields, "media_id": media_id, "status": "completed"},
                "$unset": _unset("error"),
            },
        )
        logger.info(
            "Analysis for media %s completed: %s (%s/100)",
            media_id, result["verdict"], result["credibility_score"],
        )

    async def write_failed(
        self,
        media_id: str,
        error: ForensicsError,
        completed_at: Optional[datetime] = None,
    ) -> None:
        await self._update(
            media_id,
            {
                "$set": {
                    "media_id": media_id,
                    "status": "failed",
                    "error": error.to_detail(),
                    "completed_at": completed_at or datetime.now(tz=timezone.utc),
                },
                "$unset": _unset(*RESULT_FIELDS),
            },
        )
        logger.warning("Analysis for media %s failed [%s]: %s", media_id, error.category, error.message)

    async def get(self, media_id: str) -> Optional[dict]:
        collection = self._collection()
        try:
            return await collection.find_one({"media_id": media_id}, {"_id": 0})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not read analysis result: {exc}") from exc

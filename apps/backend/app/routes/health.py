"""
GET /health — liveness plus the state of everything an analysis needs.

Always HTTP 200 while the process is up. The body tells an operator why
analyses might fail even though the API answers:

    database       "connected" | "disconnected"   (results cannot be stored → 503)
    media_store    "available" | "unavailable"    (GridFS locators cannot be fetched)
    classifiers    which remote classifiers are configured
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core import database as db_module
from app.core.config import settings
from app.core.pipeline_config import PipelineConfig
from app.dependencies import get_pipeline_config

logger = logging.getLogger(__name__)
router = APIRouter()

API_VERSION = "0.1.0"


class ClassifierStatus(BaseModel):
    primary: bool
    fallback: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    database: str
    media_store: str
    ai_mock_mode: bool
    classifiers: ClassifierStatus


async def _ping_database() -> str:
    # Read through the module so tests can swap db_client.client
    client = db_module.db_client.client
    if client is None:
        return "disconnected"
    try:
        await client.admin.command("ping")
    except Exception as exc:
        logger.warning("Health check: MongoDB ping failed: %s", exc)
        return "disconnected"
    return "connected"


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check(config: PipelineConfig = Depends(get_pipeline_config)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=API_VERSION,
        environment=settings.environment,
        database=await _ping_database(),
        media_store="available" if db_module.db_client.bucket is not None else "unavailable",
        ai_mock_mode=settings.ai_mock_mode,
        classifiers=ClassifierStatus(
            primary=config.primary_classifier is not None,
            fallback=config.fallback_classifier is not None,
        ),
    )

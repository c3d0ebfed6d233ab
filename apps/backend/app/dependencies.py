"""
dependencies.py — FastAPI dependency wiring for the analysis pipeline.

Settings are converted into a PipelineConfig once; everything below the
routes receives its configuration explicitly. Tests override
get_pipeline_config / get_db / get_media_bucket through
app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends

from app.ai.analysis_pipeline import AnalysisPipeline
from app.ai.classifiers import ClassifierChain
from app.ai.explanation import ExplanationGenerator
from app.ai.face_gate import FaceGate
from app.ai.gemini_client import GeminiClient
from app.core.config import settings
from app.core.database import get_db, get_media_bucket
from app.core.pipeline_config import ExplanationServiceConfig, PipelineConfig
from app.services.media_fetcher import MediaFetcher
from app.services.result_writer import ResultWriter


def get_pipeline_config() -> PipelineConfig:
    return _config_from_settings()


@lru_cache(maxsize=1)
def _config_from_settings() -> PipelineConfig:
    return PipelineConfig.from_settings(settings)


@lru_cache(maxsize=4)
def _gemini_for(service: ExplanationServiceConfig) -> GeminiClient:
    return GeminiClient(api_key=service.api_key, mock_mode=service.mock_mode, model=service.model)


def get_result_writer(db=Depends(get_db)) -> ResultWriter:
    return ResultWriter(db)


def get_analysis_pipeline(
    config: PipelineConfig = Depends(get_pipeline_config),
    writer: ResultWriter = Depends(get_result_writer),
    bucket=Depends(get_media_bucket),
) -> AnalysisPipeline:
    gemini = _gemini_for(config.explanation_service)
    return AnalysisPipeline(
        config=config,
        fetcher=MediaFetcher(
            bucket,
            allowed_hosts=config.media_allowed_hosts,
            max_bytes=config.media_max_bytes,
        ),
        face_gate=FaceGate(gemini),
        classifiers=ClassifierChain.from_config(config),
        explainer=ExplanationGenerator(gemini),
        writer=writer,
    )

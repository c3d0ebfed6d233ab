"""Tests for Settings parsing and the Settings → PipelineConfig conversion."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.core.pipeline_config import PipelineConfig
from app.services.decision_engine import DEFAULT_THRESHOLDS


def _settings(**values):
    return Settings(_env_file=None, **values)


def test_cors_origins_split_and_trimmed():
    s = _settings(cors_origins_str=" http://a.test , ,http://b.test")
    assert s.cors_origins == ["http://a.test", "http://b.test"]


@pytest.mark.parametrize(
    "field, value",
    [("max_video_frames", 0), ("max_video_frames", 11), ("classifier_max_poll_attempts", 0),
     ("classifier_timeout_seconds", 0),
     ("primary_classifier_kind", "grpc")],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        _settings(**{field: value})


def test_mock_mode_always_has_primary():
    config = PipelineConfig.from_settings(_settings(ai_mock_mode=True))

    assert config.primary_classifier is not None
    assert config.primary_classifier.mock_mode is True
    assert config.fallback_classifier is None
    assert config.explanation_service.mock_mode is True
    assert config.thresholds == DEFAULT_THRESHOLDS


def test_real_mode_without_urls_has_no_classifiers():
    config = PipelineConfig.from_settings(_settings(ai_mock_mode=False))
    assert config.primary_classifier is None
    assert config.fallback_classifier is None


def test_real_mode_classifiers_carry_their_settings():
    config = PipelineConfig.from_settings(
        _settings(
            ai_mock_mode=False,
            primary_classifier_url="https://primary.test/detect",
            primary_classifier_api_key="pk",
            fallback_classifier_kind="polling",
            fallback_classifier_url="https://jobs.test/api",
            classifier_poll_interval_seconds=0.5,
            classifier_max_poll_attempts=4,
            max_video_frames=6,
            face_gate_enabled=False,
        )
    )

    primary, fallback = config.primary_classifier, config.fallback_classifier
    assert (primary.name, primary.kind, primary.api_key) == ("primary", "sync", "pk")
    assert (fallback.name, fallback.kind) == ("fallback", "polling")
    assert fallback.poll_interval == 0.5
    assert fallback.max_poll_attempts == 4
    assert not fallback.mock_mode
    assert config.max_video_frames == 6
    assert config.face_gate_enabled is False


def test_media_url_limits_carried_to_pipeline():
    config = PipelineConfig.from_settings(
        _settings(media_allowed_hosts_str=" CDN.test, ,media.test", media_max_bytes=1024)
    )
    assert config.media_allowed_hosts == ("cdn.test", "media.test")
    assert config.media_max_bytes == 1024

"""
classifiers.py — Adapters for remote deepfake classification services.

Every adapter exposes the same coroutine:

    verdict = await classifier.classify(image_bytes, "image/jpeg")
    # ClassifierVerdict(p_fake=0.87, succeeded=True, classifier="primary", latency=1.2)

Two wire protocols are supported:

  SyncHttpClassifier
    One multipart POST to `url`; the service answers {"isFake": bool,
    "confidence": number}. p_fake = confidence if isFake else 1 - confidence.

  PollingHttpClassifier
    1. POST {url}/upload/presign        → {"uploadUrl": ..., "requestId": ...}
    2. PUT  uploadUrl (raw bytes)
    3. GET  {url}/media/{requestId}     → {"status": "PROCESSING" | "COMPLETED" | "FAILED",
                                           "score": number}
       polled every `poll_interval` seconds, at most `max_poll_attempts` times.

classify() never raises for remote failures. HTTP status codes, timeouts
and malformed payloads are normalised into a failed verdict that carries
the error category (auth, rate_limit, quota, timeout, processing,
unavailable) so ClassifierChain can fall back.

Mock mode: returns a canned verdict without any network I/O, mirroring
GeminiClient's mock mode.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from app.ai.polling import poll_until
from app.core.errors import (
    ClassifierAuthError,
    ClassifierError,
    ClassifierProcessingError,
    ClassifierRateLimitError,
    ClassifierTimeoutError,
)
from app.core.pipeline_config import ClassifierConfig, PipelineConfig

logger = logging.getLogger(__name__)

# Canned probability returned in mock mode (clean, genuine-looking media)
_MOCK_P_FAKE = 0.12

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
}

_COMPLETED_STATUSES = {"COMPLETED", "COMPLETE", "DONE", "SUCCEEDED"}
_FAILED_STATUSES = {"FAILED", "ERROR", "CANCELLED"}


@dataclass
class ClassifierVerdict:
    p_fake: float                         # 0.0 = genuine, 1.0 = synthetic
    succeeded: bool
    classifier: str = ""
    error_detail: Optional[str] = None
    error_category: Optional[str] = None
    latency: Optional[float] = None       # seconds


def _clamp(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


def _as_probability(value) -> float:
    """
    Accept 0–1 probabilities and 0–100 percentages.

    Raises ValueError for booleans, NaN / infinity and anything outside 0–100.
    """
    if isinstance(value, bool):
        raise ValueError(f"boolean is not a score: {value!r}")
    number = float(value)
    if not math.isfinite(number) or number < 0.0 or number > 100.0:
        raise ValueError(f"score out of range: {value!r}")
    if number > 1.0:
        number /= 100.0
    return _clamp(number)


def raise_for_remote_status(response: httpx.Response, service: str) -> None:
    """Translate a non-2xx response into the classifier error taxonomy."""
    if response.is_success:
        return

    status = response.status_code
    body = response.text[:200] if response.text else ""
    message = f"{service} returned HTTP {status}: {body}".rstrip(": ")

    if status in (401, 403):
        raise ClassifierAuthError(message, status_code=status)
    if status == 402:
        raise ClassifierRateLimitError(message, status_code=status, quota=True)
    if status == 429:
        raise ClassifierRateLimitError(message, status_code=status)
    if status in (408, 504):
        raise ClassifierTimeoutError(message, status_code=status)
    raise ClassifierError(message, status_code=status)


def _json_body(response: httpx.Response, service: str) -> dict:
    try:
        data = response.json()
    except ValueError as exc:
        raise ClassifierProcessingError(f"{service} returned non-JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise ClassifierProcessingError(f"{service} returned unexpected payload type")
    return data


class Classifier(ABC):
    """Base adapter: mock handling, timing and error normalisation."""

    def __init__(
        self,
        config: ClassifierConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def name(self) -> str:
        return self.config.name

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def classify(self, data: bytes, mime_type: str = "image/jpeg") -> ClassifierVerdict:
        if self.config.mock_mode:
            return ClassifierVerdict(
                p_fake=_MOCK_P_FAKE, succeeded=True, classifier=self.name, latency=0.0
            )

        started = time.perf_counter()
        try:
            p_fake = await self._classify(data, mime_type)
        except ClassifierError as exc:
            error = exc
        except httpx.TimeoutException as exc:
            error = ClassifierTimeoutError(f"{self.name} classifier timed out: {exc}")
        except httpx.HTTPError as exc:
            error = ClassifierError(f"{self.name} classifier request failed: {exc}")
        else:
            latency = time.perf_counter() - started
            logger.info(
                "Classifier %s: p_fake=%.3f (%.2fs)", self.name, p_fake, latency
            )
            return ClassifierVerdict(
                p_fake=p_fake, succeeded=True, classifier=self.name, latency=latency
            )

        latency = time.perf_counter() - started
        logger.error(
            "Classifier %s failed [%s]: %s", self.name, error.category, error.message
        )
        return ClassifierVerdict(
            p_fake=0.5,
            succeeded=False,
            classifier=self.name,
            error_detail=error.message,
            error_category=error.category,
            latency=latency,
        )

    @abstractmethod
    async def _classify(self, data: bytes, mime_type: str) -> float:
        """Return p_fake or raise ClassifierError / httpx.HTTPError."""


class SyncHttpClassifier(Classifier):
    """One bounded HTTP call returning {isFake, confidence}."""

    async def _classify(self, data: bytes, mime_type: str) -> float:
        filename = f"media.{_EXTENSIONS.get(mime_type, 'bin')}"
        async with self._client() as client:
            response = await client.post(
                self.config.url,
                headers=self._headers(),
                files={"image": (filename, data, mime_type)},
            )
        raise_for_remote_status(response, f"{self.name} classifier")
        payload = _json_body(response, f"{self.name} classifier")

        is_fake = payload.get("isFake", payload.get("is_fake"))
        confidence = payload.get("confidence")
        if is_fake is None or confidence is None:
            raise ClassifierProcessingError(
                f"{self.name} classifier payload missing isFake/confidence: {payload!r}"[:300]
            )
        if not isinstance(is_fake, bool):
            raise ClassifierProcessingError(f"isFake must be a boolean, got {is_fake!r}")
        try:
            confidence = _as_probability(confidence)
        except (TypeError, ValueError) as exc:
            raise ClassifierProcessingError(f"Invalid confidence value: {confidence!r}") from exc

        return confidence if is_fake else 1.0 - confidence


class PollingHttpClassifier(Classifier):
    """Presign → upload → poll status until a score is available."""

    async def _classify(self, data: bytes, mime_type: str) -> float:
        base = self.config.url.rstrip("/")
        service = f"{self.name} classifier"
        filename = f"media.{_EXTENSIONS.get(mime_type, 'bin')}"

        async with self._client() as client:
            presign = await client.post(
                f"{base}/upload/presign",
                headers=self._headers(),
                json={"fileName": filename},
            )
            raise_for_remote_status(presign, service)
            target = _json_body(presign, service)
            upload_url = target.get("uploadUrl")
            request_id = target.get("requestId")
            if not upload_url or not request_id:
                raise ClassifierProcessingError(f"{service} presign response incomplete")

            upload = await client.put(
                upload_url, content=data, headers={"Content-Type": mime_type}
            )
            raise_for_remote_status(upload, f"{service} upload")
            logger.info("Classifier %s: uploaded %d bytes (request %s)", self.name, len(data), request_id)

            async def check_status() -> Optional[float]:
                response = await client.get(f"{base}/media/{request_id}", headers=self._headers())
                raise_for_remote_status(response, service)
                payload = _json_body(response, service)
                status = str(payload.get("status", "")).upper()

                if status in _FAILED_STATUSES:
                    raise ClassifierProcessingError(
                        f"{service} reported {status} for request {request_id}"
                    )
                if status in _COMPLETED_STATUSES:
                    score = payload.get("score")
                    if score is None:
                        raise ClassifierProcessingError(
                            f"{service} completed request {request_id} without a score"
                        )
                    try:
                        return _as_probability(score)
                    except (TypeError, ValueError) as exc:
                        raise ClassifierProcessingError(f"Invalid score value: {score!r}") from exc
                return None

            return await poll_until(
                check_status,
                max_attempts=self.config.max_poll_attempts,
                interval=self.config.poll_interval,
                description=f"{service} request {request_id}",
            )


def build_classifier(
    config: ClassifierConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Classifier:
    if config.kind == "polling":
        return PollingHttpClassifier(config, transport=transport)
    return SyncHttpClassifier(config, transport=transport)


# ── Fallback chain ────────────────────────────────────────────────────────────

@dataclass
class ChainOutcome:
    verdict: ClassifierVerdict
    attempts: list[ClassifierVerdict] = field(default_factory=list)

    @property
    def failures(self) -> list[ClassifierVerdict]:
        return [a for a in self.attempts if not a.succeeded]

    @property
    def fallback_used(self) -> bool:
        return self.verdict.succeeded and len(self.attempts) > 1


class ClassifierChain:
    """
    Ordered classifiers: primary first, fallback tried exactly once.

    When nothing succeeds, or nothing is configured, the outcome is the
    fail-safe p_fake = 0.5 (maximally uncertain), never an abort.
    """

    def __init__(self, classifiers: Sequence[Classifier]):
        self.classifiers = list(classifiers)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ClassifierChain":
        configs = [c for c in (config.primary_classifier, config.fallback_classifier) if c]
        return cls([build_classifier(c, transport=transport) for c in configs])

    @property
    def primary(self) -> Optional[Classifier]:
        return self.classifiers[0] if self.classifiers else None

    async def classify(self, data: bytes, mime_type: str = "image/jpeg") -> ChainOutcome:
        attempts: list[ClassifierVerdict] = []
        for classifier in self.classifiers:
            verdict = await classifier.classify(data, mime_type)
            attempts.append(verdict)
            if verdict.succeeded:
                if len(attempts) > 1:
                    logger.warning(
                        "Primary classifier failed; fallback %s succeeded", classifier.name
                    )
                return ChainOutcome(verdict=verdict, attempts=attempts)

        if not self.classifiers:
            logger.warning("No classifier configured; using fail-safe p_fake=0.5")
        else:
            logger.warning(
                "All %d classifier(s) failed; using fail-safe p_fake=0.5", len(attempts)
            )
        failsafe = ClassifierVerdict(
            p_fake=0.5,
            succeeded=False,
            classifier="failsafe",
            error_detail="; ".join(a.error_detail or "" for a in attempts) or "no classifier configured",
            error_category=attempts[-1].error_category if attempts else "unconfigured",
        )
        return ChainOutcome(verdict=failsafe, attempts=attempts)

    async def classify_frames(
        self, frames: Sequence[tuple[int, bytes, str]]
    ) -> list[tuple[int, ClassifierVerdict]]:
        """
        Classify video frames concurrently with the primary classifier only.

        Each frame is isolated: a failed frame is reported with
        succeeded=False and never cancels its siblings.
        """
        primary = self.primary
        if primary is None:
            return []
        results = await asyncio.gather(
            *(primary.classify(data, mime) for _, data, mime in frames),
            return_exceptions=True,
        )

        verdicts: list[tuple[int, ClassifierVerdict]] = []
        for (index, _, _), result in zip(frames, results):
            if isinstance(result, Exception):
                logger.error("Frame %d classification crashed: %s", index, result)
                result = ClassifierVerdict(
                    p_fake=0.5,
                    succeeded=False,
                    classifier=primary.name,
                    error_detail=str(result),
                    error_category="internal",
                )
            verdicts.append((index, result))
        return verdicts

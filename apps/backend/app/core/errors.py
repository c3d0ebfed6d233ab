"""
errors.py — Exception taxonomy for the media-analysis pipeline.

Fatal (propagate to the route, the result is written as `failed`):
  FetchError, InsufficientFramesError, PersistenceError

Recoverable (absorbed by the component that raised them):
  ClassifierError and subclasses  → fallback classifier, then p_fake = 0.5
  ExplanationError / ParseError   → templated explanation text

Every error carries a `category` string. Routes expose it so a caller can
tell "retry later" (rate_limit, quota, unavailable) from a permanent failure.
"""

from typing import Optional


class ForensicsError(Exception):
    """Base class for every error raised by the analysis pipeline."""

    category = "internal"
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"message": self.message, "category": self.category}


# ── Fatal ─────────────────────────────────────────────────────────────────────

class FetchError(ForensicsError):
    """The media object does not exist or the backing store is unreachable."""

    category = "fetch"

    def __init__(self, message: str, locator: str = "", not_found: bool = False):
        super().__init__(message)
        self.locator = locator
        self.not_found = not_found


class InsufficientFramesError(ForensicsError):
    """A video request produced zero usable frames."""

    category = "insufficient_frames"


class PersistenceError(ForensicsError):
    """The analysis result could not be written or read."""

    category = "persistence"
    retryable = True


# ── Recoverable: classifiers ──────────────────────────────────────────────────

class ClassifierError(ForensicsError):
    """Remote classifier unreachable or returned something unusable."""

    category = "unavailable"
    retryable = True


class ClassifierAuthError(ClassifierError):
    category = "auth"
    retryable = False


class ClassifierRateLimitError(ClassifierError):
    """HTTP 429 (rate_limit) or 402 (quota exhausted)."""

    category = "rate_limit"

    def __init__(self, message: str, status_code: Optional[int] = None, quota: bool = False):
        super().__init__(message, status_code)
        if quota:
            self.category = "quota"


class ClassifierTimeoutError(ClassifierError):
    category = "timeout"


class ClassifierProcessingError(ClassifierError):
    """The remote accepted the job but explicitly reported a failure."""

    category = "processing"
    retryable = False


# ── Recoverable: explanation ──────────────────────────────────────────────────

class ExplanationError(ForensicsError):
    category = "explanation"


class ExplanationParseError(ExplanationError):
    """The generative model's reply was not the JSON object we asked for."""

    category = "explanation_parse"

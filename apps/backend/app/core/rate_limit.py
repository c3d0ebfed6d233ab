"""
rate_limit.py — slowapi limiter shared by all routes, keyed by client IP.

Each analysis fans out to paid remote classifiers and Gemini, so
POST /api/v1/analysis is limited to ANALYSIS_RATE_LIMIT (env:
ANALYSIS_RATE_LIMIT, slowapi syntax such as "10/minute"). main.py installs
the RateLimitExceeded handler, which answers 429.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

ANALYSIS_RATE_LIMIT = settings.analysis_rate_limit

limiter = Limiter(key_func=get_remote_address)

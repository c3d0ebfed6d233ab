"""
Forensic Media Analysis API — entry point.

    uvicorn app.main:app --reload          (from apps/backend)

Startup opens the MongoDB client and the GridFS media bucket; when Mongo
is unreachable the API still starts and /health reports "disconnected",
while analysis requests answer 503.

Route groups:
  /health              liveness + database status
  /api/v1/analysis     run / read forensic analyses
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.database import close_mongo_connection, connect_to_mongo
from app.core.errors import ForensicsError
from app.core.rate_limit import limiter
from app.routes.analysis import router as analysis_router
from app.routes.health import API_VERSION
from app.routes.health import router as health_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

_SHOW_DOCS = settings.environment != "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Forensic Media Analysis API starting (env: %s, mock AI: %s)",
                settings.environment, settings.ai_mock_mode)
    await connect_to_mongo()
    yield
    await close_mongo_connection()
    logger.info("Forensic Media Analysis API stopped")


app = FastAPI(
    title="Forensic Media Analysis API",
    description=(
        "Deepfake and manipulation screening for forensic case media. "
        "Verdicts are probabilistic and must be corroborated by an examiner."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _SHOW_DOCS else None,
    redoc_url="/redoc" if _SHOW_DOCS else None,
)

# slowapi: routes opt in with @limiter.limit("N/minute") and a `request: Request` parameter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ForensicsError)
async def forensics_error_handler(request: Request, exc: ForensicsError) -> JSONResponse:
    """Pipeline errors that escape a route still answer with {message, category}."""
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    status = 503 if exc.retryable else 500
    return JSONResponse(status_code=status, content={"detail": exc.to_detail()})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(analysis_router)


@app.get("/", tags=["root"])
async def root():
    return {
        "name": app.title,
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs" if _SHOW_DOCS else None,
    }

"""
pytest configuration and shared fixtures for the forensic analysis API tests.

Key concern: tests must not require a live MongoDB, Gemini API key or
remote classifier. We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client/db/bucket = None (disconnected).
  3. Ensuring AI_MOCK_MODE=true so Gemini and classifiers return canned
     responses.
  4. Providing an in-memory FakeDB (analysis_results) and FakeBucket
     (GridFS media bucket) for tests that need persistence.
"""

import copy
import os
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId
from gridfs.errors import NoFile
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")

# Smallest valid PNG header + padding; content is irrelevant to mocked services
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x01" * 64


# ── In-memory MongoDB stand-ins ──────────────────────────────────────────────

class FakeResultsCollection:
    """Supports the subset of Motor used by ResultWriter, keyed by media_id."""

    def __init__(self):
        self._docs: dict[str, dict] = {}
        self.update_calls = 0

    async def update_one(self, query, update, upsert=False):
        self.update_calls += 1
        key = query["media_id"]
        doc = self._docs.get(key)
        if doc is None:
            if not upsert:
                return
            doc = {"_id": ObjectId(), "media_id": key}
        doc = copy.deepcopy(doc)
        for field, value in update.get("$set", {}).items():
            doc[field] = copy.deepcopy(value)
        for field in update.get("$unset", {}):
            doc.pop(field, None)
        self._docs[key] = doc

    async def find_one(self, query, projection=None):
        doc = self._docs.get(query.get("media_id"))
        if doc is None:
            return None
        doc = copy.deepcopy(doc)
        if projection and projection.get("_id") == 0:
            doc.pop("_id", None)
        return doc

    def raw(self, media_id):
        return self._docs.get(media_id)


class FakeDB:
    def __init__(self):
        self._cols = {}

    def __getitem__(self, name):
        if name not in self._cols:
            self._cols[name] = FakeResultsCollection()
        return self._cols[name]


class FakeGridOut:
    def __init__(self, data: bytes, metadata: dict | None):
        self._data = data
        self.metadata = metadata

    async def read(self):
        return self._data


class FakeBucket:
    """GridFS bucket stand-in: files addressed by name."""

    def __init__(self):
        self.files: dict[str, tuple[bytes, dict | None]] = {}

    def put(self, name: str, data: bytes, content_type: str | None = None):
        self.files[name] = (data, {"contentType": content_type} if content_type else None)

    async def open_download_stream_by_name(self, name):
        if name not in self.files:
            raise NoFile(f"no file in gridfs collection with filename {name!r}")
        data, metadata = self.files[name]
        return FakeGridOut(data, metadata)


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    Tests that need persistence use the fake_db / fake_bucket fixtures
    through app.dependency_overrides instead.
    """
    with (
        patch("app.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("app.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import app.core.database as db_module

        original = (db_module.db_client.client, db_module.db_client.db, db_module.db_client.bucket)
        db_module.db_client.client = None
        db_module.db_client.db = None
        db_module.db_client.bucket = None

        yield

        (
            db_module.db_client.client,
            db_module.db_client.db,
            db_module.db_client.bucket,
        ) = original


@pytest.fixture()
def fake_db():
    return FakeDB()


@pytest.fixture()
def fake_bucket():
    bucket = FakeBucket()
    bucket.put("cases/1/portrait.png", PNG_BYTES, "image/png")
    bucket.put("cases/1/reference.jpg", JPEG_BYTES)
    for i in range(12):
        bucket.put(f"cases/2/frames/{i:03d}.jpg", JPEG_BYTES + bytes([i]), "image/jpeg")
    bucket.put("cases/3/voice.mp3", b"ID3" + b"\x00" * 32)
    return bucket


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 — mock_db must run first
    """HTTPX async test client wired to the FastAPI app (no database)."""
    from app.main import app
    from app.core.rate_limit import limiter

    try:
        limiter._limiter.storage.reset()
    except Exception:
        pass

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def analysis_client(fake_db, fake_bucket):
    """Client whose analysis routes persist into FakeDB and read FakeBucket."""
    from app.main import app
    from app.core.database import get_db, get_media_bucket
    from app.core.pipeline_config import ClassifierConfig, ExplanationServiceConfig, PipelineConfig
    from app.core.rate_limit import limiter
    from app.dependencies import get_pipeline_config

    try:
        limiter._limiter.storage.reset()
    except Exception:
        pass

    # Mock-mode services regardless of the developer's .env
    mock_config = PipelineConfig(
        primary_classifier=ClassifierConfig(name="primary", kind="sync", url="", mock_mode=True),
        explanation_service=ExplanationServiceConfig(mock_mode=True),
    )
    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_media_bucket] = lambda: fake_bucket
    app.dependency_overrides[get_pipeline_config] = lambda: mock_config
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

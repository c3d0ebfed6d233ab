"""
database.py — MongoDB handles shared by the whole process (Motor, async).

    analysis_results   one document per media_id (unique index), written by ResultWriter
    <media bucket>     GridFS bucket with uploaded media and extracted video frames

connect_to_mongo() runs in the FastAPI lifespan. If Mongo cannot be reached
the handles stay None: the API keeps serving /health, get_db() returns
None and ResultWriter turns that into a PersistenceError (HTTP 503).
"""

import logging
import re

import certifi
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorDatabase,
    AsyncIOMotorGridFSBucket,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

RESULTS_COLLECTION = "analysis_results"


class DatabaseClient:
    """Mutable holder so tests can replace .client / .db / .bucket."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None
    bucket: AsyncIOMotorGridFSBucket | None = None

    def reset(self) -> None:
        self.client = None
        self.db = None
        self.bucket = None


db_client = DatabaseClient()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db[RESULTS_COLLECTION].create_index("media_id", unique=True)


async def connect_to_mongo() -> None:
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
    )
    try:
        await client.admin.command("ping")
        db = client[settings.mongo_db_name]
        await ensure_indexes(db)
    except Exception as exc:
        logger.warning("MongoDB unreachable, analysis endpoints will answer 503: %s", exc)
        client.close()
        db_client.reset()
        return

    db_client.client = client
    db_client.db = db
    db_client.bucket = AsyncIOMotorGridFSBucket(db, bucket_name=settings.media_bucket_name)
    logger.info(
        "MongoDB ready (db: %s, media bucket: %s)",
        settings.mongo_db_name, settings.media_bucket_name,
    )


async def close_mongo_connection() -> None:
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")
    db_client.reset()


def get_db() -> AsyncIOMotorDatabase | None:
    """FastAPI dependency: the database, or None while Mongo is unavailable."""
    return db_client.db


def get_media_bucket() -> AsyncIOMotorGridFSBucket | None:
    """FastAPI dependency: the GridFS media bucket, or None."""
    return db_client.bucket


def _redact_uri(uri: str) -> str:
    return re.sub(r"://[^:@/]+:[^@]+@", "://<redacted>@", uri)

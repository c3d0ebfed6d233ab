"""
media_fetcher.py — Resolves media locators into raw bytes.

Accepted locators:
  - "cases/42/photo.jpg"               → file in the GridFS media bucket
  - "https://cdn.example.com/f/1.jpg"  → downloaded with httpx
  - "data:image/png;base64,iVBOR..."   → decoded inline

A missing object or an unreachable store raises FetchError. URL downloads
are limited to an optional host allow-list (checked on every redirect hop)
and a maximum size. There is no retry here; retrying the whole analysis
belongs to the caller.

Video frames are extracted upstream (client-side or a rendering job) and
arrive as an ordered list of locators. sample_frames() picks at most
`max_frames` of them, evenly spaced; fetch_frames() downloads the sample
concurrently and drops frames that fail, raising InsufficientFramesError
only when none could be fetched.
"""

import asyncio
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx
from gridfs.errors import NoFile
from pymongo.errors import PyMongoError

from app.core.errors import FetchError, InsufficientFramesError

logger = logging.getLogger(__name__)

_MIME_MAP = {
    ".jpg":  "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png":  "image/png",
    ".webp": "image/webp",
    ".gif":  "image/gif",
    ".mp3":  "audio/mpeg",
    ".wav":  "audio/wav",
    ".ogg":  "audio/ogg",
    ".m4a":  "audio/mp4",
    ".mp4":  "video/mp4",
    ".webm": "video/webm",
    ".mov":  "video/quicktime",
    ".avi":  "video/x-msvideo",
}


def mime_from_filename(filename: str) -> str:
    """Derive a MIME type from a filename extension."""
    name = filename.split("?", 1)[0]
    ext = "." + name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return _MIME_MAP.get(ext, "application/octet-stream")


@dataclass(frozen=True)
class FetchedMedia:
    data: bytes
    content_type: str
    locator: str

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class FetchedFrame:
    index: int          # position in the request's frame_locators
    media: FetchedMedia


def sample_frames(locators: Sequence[str], max_frames: int = 10) -> list[tuple[int, str]]:
    """
    Pick at most `max_frames` evenly spaced locators, keeping their indices.

    Frame i of the sample is locators[floor(i * n / k)] with k = min(n, max_frames).
    """
    n = len(locators)
    k = min(n, max_frames)
    if k <= 0:
        return []
    return [(i * n // k, locators[i * n // k]) for i in range(k)]


class MediaFetcher:
    """Usage: media = await MediaFetcher(bucket).fetch("cases/42/photo.jpg")"""

    def __init__(
        self,
        bucket: Optional[Any],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        allowed_hosts: Sequence[str] = (),
        max_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self._bucket = bucket
        self._transport = transport
        self._timeout = timeout
        self._allowed_hosts = tuple(h.lower() for h in allowed_hosts)
        self._max_bytes = max_bytes

    async def fetch(self, locator: str) -> FetchedMedia:
        if not locator:
            raise FetchError("Empty media locator", locator=locator, not_found=True)
        if locator.startswith("data:"):
            return self._decode_data_url(locator)
        if locator.startswith(("http://", "https://")):
            return await self._fetch_url(locator)
        return await self._fetch_stored(locator)

    async def fetch_frames(self, frames: Sequence[tuple[int, str]]) -> list[FetchedFrame]:
        results = await asyncio.gather(
            *(self.fetch(locator) for _, locator in frames), return_exceptions=True
        )

        fetched = []
        for (index, locator), result in zip(frames, results):
            if isinstance(result, FetchError):
                logger.warning("Dropping frame %d (%s): %s", index, locator, result.message)
            elif isinstance(result, Exception):
                logger.error("Dropping frame %d (%s) after unexpected error: %s", index, locator, result)
            else:
                fetched.append(FetchedFrame(index=index, media=result))

        if not fetched:
            raise InsufficientFramesError(
                f"None of the {len(frames)} sampled video frames could be fetched"
            )
        logger.info("Fetched %d/%d sampled frames", len(fetched), len(frames))
        return fetched

    # ── Backends ──────────────────────────────────────────────────────────────

    async def _fetch_stored(self, locator: str) -> FetchedMedia:
        if self._bucket is None:
            raise FetchError("Media store unavailable", locator=locator)
        try:
            stream = await self._bucket.open_download_stream_by_name(locator)
            data = await stream.read()
        except NoFile:
            raise FetchError(f"Media object not found: {locator}", locator=locator, not_found=True)
        except PyMongoError as exc:
            raise FetchError(f"Media store error for {locator}: {exc}", locator=locator) from exc

        metadata = getattr(stream, "metadata", None) or {}
        content_type = metadata.get("contentType") or mime_from_filename(locator)
        logger.debug("Downloaded %s from media bucket (%d bytes)", locator, len(data))
        return FetchedMedia(data=data, content_type=content_type, locator=locator)

    def _check_host(self, locator: str, host: str) -> None:
        if not self._allowed_hosts:
            return
        host = host.lower()
        if not any(host == h or host.endswith("." + h) for h in self._allowed_hosts):
            raise FetchError(f"Media host not allowed: {host}", locator=locator)

    async def _fetch_url(self, locator: str) -> FetchedMedia:
        async def check_request(request: httpx.Request) -> None:
            # Runs for every redirect hop too.
            self._check_host(locator, request.url.host)

        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            event_hooks={"request": [check_request]},
        ) as client:
            try:
                async with client.stream("GET", locator, follow_redirects=True) as response:
                    response.raise_for_status()
                    declared = response.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > self._max_bytes:
                        raise FetchError(
                            f"Media exceeds {self._max_bytes} bytes (declared {declared})",
                            locator=locator,
                        )
                    chunks, size = [], 0
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > self._max_bytes:
                            raise FetchError(f"Media exceeds {self._max_bytes} bytes", locator=locator)
                        chunks.append(chunk)
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                raise FetchError(
                    f"Media URL returned HTTP {status}", locator=locator, not_found=status == 404
                ) from exc
            except httpx.HTTPError as exc:
                raise FetchError(f"Media URL unreachable: {exc}", locator=locator) from exc

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return FetchedMedia(
            data=b"".join(chunks),
            content_type=content_type or mime_from_filename(locator),
            locator=locator,
        )

    @staticmethod
    def _decode_data_url(locator: str) -> FetchedMedia:
        header, sep, payload = locator.partition(",")
        if not sep or ";base64" not in header:
            raise FetchError("Unsupported data URL (expected base64)", locator=locator[:64])
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FetchError(f"Invalid base64 in data URL: {exc}", locator=locator[:64]) from exc
        content_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
        return FetchedMedia(data=data, content_type=content_type, locator=locator[:64])

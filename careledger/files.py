"""Upload validation and storage-path helpers shared by the orchestrators."""

from __future__ import annotations

import logging
import mimetypes
import time
from pathlib import Path

from careledger.config import RETRY_INITIAL_DELAY, UPLOAD_RETRIES, UPLOAD_TIMEOUT
from careledger.errors import InvalidInput
from careledger.retry import with_retry, with_timeout
from careledger.store_adapters.base import DocumentStore

LOGGER = logging.getLogger(__name__)

MAX_BYTES = 10 * 1024 * 1024  # 10 MB

ALLOWED_EXT = {".pdf", ".jpg", ".jpeg", ".png"}


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def validate_upload(filename: str, content: bytes) -> str:
    """Return the lowercase extension of an acceptable upload or raise InvalidInput."""

    ext = file_extension(filename)
    if ext not in ALLOWED_EXT:
        allowed = ", ".join(sorted(item.lstrip(".") for item in ALLOWED_EXT))
        raise InvalidInput(f"Invalid file type. Allowed types: {allowed}")
    if not content:
        raise InvalidInput("Uploaded file is empty")
    if len(content) > MAX_BYTES:
        raise InvalidInput(f"File size exceeds {MAX_BYTES // (1024 * 1024)}MB limit")
    return ext


def content_type_for(filename: str, declared: str | None = None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def storage_path(user_id: str, filename: str, now_ms: int | None = None) -> str:
    """Per-user, timestamp-qualified object path: ``{user_id}/{epoch_ms}.{ext}``."""

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    ext = file_extension(filename).lstrip(".") or "bin"
    return f"{user_id}/{stamp}.{ext}"


def path_from_url(url: str | None, bucket: str) -> str | None:
    """Return the object path of ``url`` inside ``bucket``, or None if it points elsewhere."""

    if not url:
        return None
    marker = f"{bucket}/"
    if marker not in url:
        return None
    path = url.split(marker, 1)[1].split("?", 1)[0]
    return path or None


async def resolve_download_url(documents: DocumentStore, url: str, bucket: str, ttl_seconds: int) -> str:
    """Swap a private-bucket URL for a time-boxed signed one; other URLs pass through."""

    path = path_from_url(url, bucket)
    if path is None:
        return url
    signed = await documents.create_signed_url(bucket, path, ttl_seconds)
    if not signed:
        LOGGER.warning("Could not sign %s/%s, using stored URL", bucket, path)
        return url
    return signed


async def fetch_stored_file(documents: DocumentStore, url: str, bucket: str, ttl_seconds: int) -> tuple[bytes, str]:
    """Download a stored upload, resolving a signed URL when needed."""

    download_url = await resolve_download_url(documents, url, bucket, ttl_seconds)
    return await documents.fetch(download_url)


async def remove_stored_file(documents: DocumentStore, url: str | None, bucket: str) -> None:
    """Delete the object behind ``url``; failures are logged, the row deletion proceeds."""

    path = path_from_url(url, bucket)
    if path is None:
        return
    try:
        await documents.remove(bucket, [path])
    except Exception as exc:
        LOGGER.error("Unable to remove %s/%s: %s", bucket, path, exc)


async def store_upload(
    documents: DocumentStore,
    bucket: str,
    user_id: str,
    filename: str,
    content: bytes,
    content_type: str,
) -> str:
    """Upload with per-attempt timeout and exponential-backoff retry; return the file URL."""

    path = storage_path(user_id, filename)
    await with_retry(
        lambda: with_timeout(
            documents.upload(bucket, path, content, content_type),
            UPLOAD_TIMEOUT,
            "Upload timed out",
        ),
        UPLOAD_RETRIES,
        RETRY_INITIAL_DELAY,
    )
    return await documents.get_public_url(bucket, path)

"""Blob store clients for uploaded source files.

Two backends share one interface:
    - LocalBlobStore: files under a root directory (development, single node)
    - HttpBlobStore:  objects behind an HTTP(S) base URL (S3/R2 bucket endpoint)

Keys are structured ``{tenant_id}/documents/{timestamp}-{random}-{filename}``.
All driver errors are re-raised as BlobStoreError.
"""

from __future__ import annotations

import asyncio
import re
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import structlog

from app.core.exceptions import BlobStoreError

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def generate_file_key(tenant_id: str, filename: str, kind: str = "documents") -> str:
    """Build a collision-free key for a tenant upload."""
    safe_name = _UNSAFE_CHARS.sub("_", filename) or "file"
    return f"{tenant_id}/{kind}/{int(time.time() * 1000)}-{secrets.token_hex(4)}-{safe_name}"


class BlobStore(ABC):
    """Abstract blob storage used by ingestion."""

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str | None = None) -> None:
        ...

    @abstractmethod
    async def download(self, key: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise BlobStoreError(f"Blob key escapes store root: {key}")
        return path

    async def upload(self, key: str, data: bytes, content_type: str | None = None) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error("blob_upload_failed", key=key, error=str(e))
            raise BlobStoreError(f"Failed to store blob '{key}': {e}") from e
        logger.debug("blob_uploaded", key=key, size=len(data))

    async def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error("blob_download_failed", key=key, error=str(e))
            raise BlobStoreError(f"Failed to read blob '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            logger.warning("blob_delete_failed", key=key, error=str(e))


class HttpBlobStore(BlobStore):
    """Blob store reachable through plain HTTP verbs (PUT/GET/DELETE)."""

    def __init__(self, base_url: str, client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    def _url(self, key: str) -> str:
        return f"{self._base_url}/{key.lstrip('/')}"

    async def upload(self, key: str, data: bytes, content_type: str | None = None) -> None:
        headers = {"Content-Type": content_type} if content_type else {}
        try:
            response = await self._client.put(self._url(key), content=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("blob_upload_failed", key=key, error=str(e))
            raise BlobStoreError(f"Failed to store blob '{key}': {e}") from e

    async def download(self, key: str) -> bytes:
        try:
            response = await self._client.get(self._url(key))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("blob_download_failed", key=key, error=str(e))
            raise BlobStoreError(f"Failed to fetch blob '{key}': {e}") from e
        return response.content

    async def delete(self, key: str) -> None:
        try:
            response = await self._client.delete(self._url(key))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("blob_delete_failed", key=key, error=str(e))

import asyncio
import logging

import httpx

from yinyang.models.cache_entry import CacheEntry
from yinyang.repositories.base import AbstractInputCacheRepository
from yinyang.services.blob_store import BlobStore
from yinyang.services.errors import FetchFailed, PersistFailed

logger = logging.getLogger(__name__)


class InputDedupCache:
    """
    Maps external image URLs onto stable URLs under our own blob storage.
    Each distinct source URL is fetched and stored at most once.
    """

    def __init__(
        self,
        repository: AbstractInputCacheRepository,
        blob_store: BlobStore,
        timeout: float = 10.0,
    ) -> None:
        self._repository = repository
        self._blobs = blob_store
        self._timeout = timeout

    async def fetch(self, source_url: str) -> tuple[bytes, str]:
        """Download source_url. Returns (body, content_type); raises FetchFailed."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(source_url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchFailed(f"fetch of {source_url} failed: {exc}") from exc

        if not response.is_success:
            raise FetchFailed(f"fetch of {source_url} returned {response.status_code}")
        content_type = response.headers.get("content-type")
        if not content_type:
            raise FetchFailed(f"fetch of {source_url} returned no content-type")
        return response.content, content_type

    def _persist(self, source_url: str, body: bytes, content_type: str) -> CacheEntry:
        entry = CacheEntry(
            source_url=source_url,
            content_type=content_type,
            storage_id=self._blobs.new_storage_id(content_type),
        )
        try:
            self._blobs.put(entry.storage_id, body)
        except Exception as exc:
            raise PersistFailed(f"storing {entry.storage_id} failed: {exc}") from exc

        try:
            inserted = self._repository.insert(entry)
        except Exception as exc:
            self._discard_blob(entry.storage_id)
            raise PersistFailed(f"recording {source_url} failed: {exc}") from exc

        if inserted:
            return entry

        # Another submission recorded this URL first; its mapping is the canonical one.
        self._discard_blob(entry.storage_id)
        try:
            existing = self._repository.find_by_source_url(source_url)
        except Exception as exc:
            raise PersistFailed(f"re-reading mapping for {source_url} failed: {exc}") from exc
        if existing is None:
            raise PersistFailed(f"mapping for {source_url} vanished after conflict")
        return existing

    def _discard_blob(self, storage_id: str) -> None:
        try:
            self._blobs.delete(storage_id)
        except OSError:
            logger.warning("[cache] orphan blob left behind | id=%s", storage_id)

    async def resolve(self, source_url: str) -> str:
        """Return the canonical URL for source_url. Raises FetchFailed or PersistFailed."""
        if self._blobs.owns(source_url):
            return source_url

        try:
            cached = await asyncio.to_thread(self._repository.find_by_source_url, source_url)
        except Exception as exc:
            raise PersistFailed(f"cache lookup for {source_url} failed: {exc}") from exc
        if cached is not None:
            logger.info("[cache] hit | url=%s | id=%s", source_url, cached.storage_id)
            return self._blobs.url_for(cached.storage_id)

        body, content_type = await self.fetch(source_url)
        entry = await asyncio.to_thread(self._persist, source_url, body, content_type)
        logger.info(
            "[cache] stored | url=%s | id=%s | type=%s | bytes=%d",
            source_url,
            entry.storage_id,
            content_type,
            len(body),
        )
        return self._blobs.url_for(entry.storage_id)

"""
ArchiveVault: high-level operations over the encrypted object store and the
metadata catalog.

Collaborators (store, catalog, key deriver) are passed in; nothing here looks
them up globally. See :func:`archivevault.app.build_vault` for the wiring used
by the command line.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable, Optional

from ..database.catalog import MetadataCatalog
from ..security.kdf import KeyDeriver
from ..storage.base import ObjectStore, sidecar_path
from .download import DownloadOrchestrator
from .exceptions import NotFoundError, ValidationError
from .models import DownloadResult, ObjectMetadata, ObjectPage, ObjectRecord
from .pipeline import DEFAULT_CHUNK_SIZE, DEFAULT_PIPE_CAPACITY
from .upload import DEFAULT_ARCHIVE_TYPES, UploadOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100


class ArchiveVault:
    """Entry point for storing and retrieving encrypted archives."""

    def __init__(
        self,
        store: ObjectStore,
        catalog: MetadataCatalog,
        deriver: KeyDeriver,
        namespace: str = "archives",
        allowed_media_types: Iterable[str] = DEFAULT_ARCHIVE_TYPES,
        archive_content_type: str = "application/zip",
        max_upload_bytes: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pipe_capacity: int = DEFAULT_PIPE_CAPACITY,
        verify_container_signature: bool = False,
        default_url_ttl: int = 3600,
    ):
        self.store = store
        self.catalog = catalog
        self.deriver = deriver
        self.default_url_ttl = default_url_ttl
        self.uploader = UploadOrchestrator(
            store,
            catalog,
            deriver,
            namespace=namespace,
            allowed_media_types=allowed_media_types,
            max_upload_bytes=max_upload_bytes,
            pipe_capacity=pipe_capacity,
            verify_container_signature=verify_container_signature,
        )
        self.downloader = DownloadOrchestrator(
            store,
            catalog,
            deriver,
            content_type=archive_content_type,
            chunk_size=chunk_size,
        )

    async def __aenter__(self) -> "ArchiveVault":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the KDF worker pool and catalog connections."""
        self.deriver.close()
        self.catalog.close()

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def upload(
        self,
        source: AsyncIterator[bytes],
        media_type: str,
        filename: str,
        display_name: Optional[str] = None,
    ) -> ObjectRecord:
        """Encrypt ``source`` into the store and register it; returns the committed record."""
        return await self.uploader.upload(source, media_type, filename, display_name)

    async def download(self, object_id: str, decrypt: bool = True) -> DownloadResult:
        """Return the object's plaintext stream, or the raw ciphertext when ``decrypt`` is False."""
        return await self.downloader.download(object_id, decrypt=decrypt)

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    async def _require(self, object_id: str) -> ObjectRecord:
        record = await self.catalog.get_by_id(object_id)
        if record is None:
            raise NotFoundError(f"object {object_id} not found")
        return record

    async def get_metadata(self, object_id: str) -> ObjectMetadata:
        metadata = await self.catalog.get_metadata(object_id)
        if metadata is None:
            raise NotFoundError(f"object {object_id} not found")
        return metadata

    async def list_objects(self, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> ObjectPage:
        if page < 1:
            page = 1
        if limit < 1 or limit > MAX_PAGE_LIMIT:
            limit = DEFAULT_PAGE_LIMIT
        items, total = await self.catalog.list(page, limit)
        return ObjectPage(items=items, total=total, page=page, limit=limit)

    async def rename(self, object_id: str, display_name: str) -> ObjectRecord:
        if not display_name or not display_name.strip():
            raise ValidationError("display name must not be empty")
        await self._require(object_id)
        return await self.catalog.update(object_id, display_name=display_name.strip())

    async def delete(self, object_id: str) -> None:
        """Remove the record first so readers stop resolving it, then the blobs."""
        record = await self._require(object_id)
        await self.catalog.delete(object_id)
        await self.store.delete(record.ciphertext_path)
        await self.store.delete(sidecar_path(record.ciphertext_path))
        logger.info("deleted %s", object_id)

    async def create_download_url(self, object_id: str, expires_in: Optional[int] = None) -> str:
        """Signed URL for the ciphertext; whoever fetches it still needs the sidecar and secret."""
        record = await self._require(object_id)
        ttl = expires_in if expires_in is not None else self.default_url_ttl
        if ttl <= 0:
            raise ValidationError("expires_in must be positive")
        return self.store.sign_url(record.ciphertext_path, ttl)

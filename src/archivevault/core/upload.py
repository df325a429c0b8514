"""
Upload orchestration: validate, encrypt while streaming to the store, then
commit the sidecar and the catalog record.

Commit order
==============================
 1. ciphertext  -> <namespace>/<id>.enc       (streamed, atomic put)
 2. sidecar     -> <namespace>/<id>.metadata  (salt, iv, tag)
 3. catalog record
==============================
The record is written last, so a reader can only ever resolve an id whose
ciphertext and sidecar both exist. Any failure (cancellation included)
deletes whatever store paths were started and re-raises the original error.
"""

from __future__ import annotations

import logging
import uuid
from functools import partial
from typing import AsyncIterator, Iterable, List, Optional

from ..database.catalog import MetadataCatalog
from ..security.crypto import EncryptStage, serialize_metadata
from ..security.kdf import KeyDeriver
from ..storage.base import ObjectStore, ciphertext_path, sidecar_path
from .exceptions import CompensationFailure, StorageError, ValidationError
from .models import NewObjectRecord, ObjectRecord, TransferState
from .pipeline import DEFAULT_PIPE_CAPACITY, ByteCounter, StagedPipeline, iter_chunks
from .session import TransferSession
from .validation import sniff_signature, validate_filename, validate_media_type

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_TYPES = ("application/zip", "application/x-zip-compressed")


class UploadOrchestrator:
    """Runs one encrypted upload per call; holds no per-object state between calls."""

    def __init__(
        self,
        store: ObjectStore,
        catalog: MetadataCatalog,
        deriver: KeyDeriver,
        namespace: str = "archives",
        allowed_media_types: Iterable[str] = DEFAULT_ARCHIVE_TYPES,
        max_upload_bytes: Optional[int] = None,
        pipe_capacity: int = DEFAULT_PIPE_CAPACITY,
        verify_container_signature: bool = False,
    ):
        self.store = store
        self.catalog = catalog
        self.deriver = deriver
        self.namespace = namespace
        self.allowed_media_types = tuple(allowed_media_types)
        self.max_upload_bytes = max_upload_bytes
        self.pipe_capacity = pipe_capacity
        self.verify_container_signature = verify_container_signature

    async def upload(
        self,
        source: AsyncIterator[bytes],
        media_type: str,
        filename: str,
        display_name: Optional[str] = None,
    ) -> ObjectRecord:
        session = TransferSession("upload")
        session.advance(TransferState.VALIDATING)
        try:
            validate_media_type(media_type, self.allowed_media_types)
            original_name = validate_filename(filename)
            name = display_name.strip() if display_name and display_name.strip() else original_name
            if self.verify_container_signature:
                source = await sniff_signature(source)
        except BaseException:
            session.rollback()
            raise

        object_id = str(uuid.uuid4())
        session.object_id = object_id
        enc_path = ciphertext_path(self.namespace, object_id)
        meta_path = sidecar_path(enc_path)
        started: List[str] = []

        try:
            session.advance(TransferState.TRANSFERRING)
            cipher = await EncryptStage.create(self.deriver)
            plaintext_counter = ByteCounter(limit=self.max_upload_bytes)
            ciphertext_counter = ByteCounter()
            pipeline = StagedPipeline(
                [plaintext_counter, cipher, ciphertext_counter], capacity=self.pipe_capacity
            )

            started.append(enc_path)
            written = await pipeline.run(source, partial(self.store.put, enc_path))
            if written != ciphertext_counter.count:
                raise StorageError(
                    f"store acknowledged {written} bytes for {enc_path}, "
                    f"expected {ciphertext_counter.count}"
                )

            session.advance(TransferState.FINALIZING)
            sidecar = serialize_metadata(cipher.metadata())
            started.append(meta_path)
            await self.store.put(meta_path, iter_chunks(sidecar))

            record = await self.catalog.create(
                NewObjectRecord(
                    id=object_id,
                    display_name=name,
                    original_name=original_name,
                    plaintext_size=plaintext_counter.count,
                    ciphertext_size=ciphertext_counter.count,
                    ciphertext_path=enc_path,
                )
            )
            session.advance(TransferState.COMMITTED)
        except BaseException as exc:
            session.rollback()
            if isinstance(exc, ValidationError):
                logger.info("upload %s rejected: %s", object_id, exc)
            else:
                logger.warning("upload %s failed: %r", object_id, exc)
            await self._compensate(object_id, started)
            raise

        session.timer.log(f"upload {object_id}")
        logger.info(
            "uploaded %s (%s, %d bytes)", object_id, original_name, record.plaintext_size
        )
        return record

    async def _compensate(self, object_id: str, paths: List[str]) -> None:
        """Best-effort removal of partially written objects; never raises."""
        for path in reversed(paths):
            try:
                await self.store.delete(path)
            except Exception as e:
                failure = CompensationFailure(
                    f"could not delete {path} while rolling back {object_id}: {e}"
                )
                logger.warning("%s", failure)

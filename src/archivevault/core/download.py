"""
Download orchestration: resolve an id, fetch ciphertext (and sidecar), and
hand back a lazily decrypting stream.

Plaintext is yielded as ciphertext arrives; the GCM tag is checked when the
ciphertext stream ends. If that check fails the stream raises
``AuthenticationFailure`` after earlier chunks were already delivered, and
the caller must discard everything it received.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional

from ..database.catalog import MetadataCatalog
from ..security.crypto import DecryptStage, deserialize_metadata
from ..security.kdf import KeyDeriver
from ..storage.base import ObjectStore, sidecar_path
from .exceptions import IncompleteObjectError, NotFoundError, ObjectNotFoundError
from .models import DownloadResult, TransferState
from .pipeline import Stage, apply_stages, finish_stages
from .session import TransferSession

logger = logging.getLogger(__name__)

RAW_CONTENT_TYPE = "application/octet-stream"
RAW_SUFFIX = ".enc"


class DownloadOrchestrator:
    """Serves decrypted or raw object streams; one session per call."""

    def __init__(
        self,
        store: ObjectStore,
        catalog: MetadataCatalog,
        deriver: KeyDeriver,
        content_type: str = "application/zip",
        chunk_size: Optional[int] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.deriver = deriver
        self.content_type = content_type
        self.chunk_size = chunk_size

    async def download(self, object_id: str, decrypt: bool = True) -> DownloadResult:
        session = TransferSession("download", object_id)
        session.advance(TransferState.VALIDATING)
        try:
            record = await self.catalog.get_by_id(object_id)
            if record is None:
                raise NotFoundError(f"object {object_id} not found")

            stages: List[Stage] = []
            if decrypt:
                meta_path = sidecar_path(record.ciphertext_path)
                try:
                    raw = await self.store.read(meta_path)
                except ObjectNotFoundError:
                    raise IncompleteObjectError(
                        f"object {object_id} has no crypto metadata"
                    ) from None
                stages.append(await DecryptStage.create(self.deriver, deserialize_metadata(raw)))

            try:
                ciphertext = await self.store.get(record.ciphertext_path, self.chunk_size)
            except ObjectNotFoundError:
                raise IncompleteObjectError(f"object {object_id} has no ciphertext") from None
            session.advance(TransferState.TRANSFERRING)
        except BaseException:
            session.rollback()
            raise

        stream = self._stream(session, ciphertext, stages)
        if decrypt:
            return DownloadResult(stream, record.display_name, self.content_type, record)
        return DownloadResult(stream, f"{record.display_name}{RAW_SUFFIX}", RAW_CONTENT_TYPE, record)

    async def _stream(
        self, session: TransferSession, source: AsyncIterator[bytes], stages: List[Stage]
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in source:
                out = apply_stages(stages, chunk)
                if out:
                    yield out
            session.advance(TransferState.FINALIZING)
            tail = finish_stages(stages)
            if tail:
                yield tail
            session.advance(TransferState.COMMITTED)
            session.timer.log(f"download {session.object_id}")
        except BaseException as exc:
            # GeneratorExit lands here too when the caller stops reading early
            session.rollback()
            if isinstance(exc, Exception):
                logger.warning("download %s failed: %r", session.object_id, exc)
            raise
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

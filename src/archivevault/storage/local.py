"""
Filesystem object store

Objects live under a root directory using their store path as a relative
path. Writes stream into a ``.part`` sibling and are renamed into place only
once the last chunk landed, so readers never see a half-written object.
"""

import asyncio
import hashlib
import hmac
import os
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from ..core.exceptions import InvalidPathError, ObjectNotFoundError, StorageError, ValidationError
from ..core.pipeline import DEFAULT_CHUNK_SIZE
from .base import ObjectStore

SIGNED_URL_SCHEME = "archivevault"


class LocalObjectStore(ObjectStore):
    """Object store backed by a local directory tree."""

    def __init__(self, root_path: str, signing_key: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root_path).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        if not signing_key:
            raise ValueError("signing_key must not be empty")
        self._signing_key = signing_key
        self.chunk_size = chunk_size

    def resolve(self, path: str) -> Path:
        """Map a store path to a file under root; reject anything that escapes it."""
        pure = PurePosixPath(path)
        if not path or pure.is_absolute() or any(part in ("", ".", "..") for part in pure.parts):
            raise InvalidPathError(f"invalid store path: {path!r}")
        full = self.root.joinpath(*pure.parts)
        if self.root not in full.parents:
            raise InvalidPathError(f"path escapes storage root: {path!r}")
        return full

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    async def put(self, path: str, chunks: AsyncIterator[bytes]) -> int:
        destination = self.resolve(path)
        tmp_path = destination.with_name(f"{destination.name}.{uuid.uuid4().hex}.part")
        written = 0
        handle = None
        # last file call handed to a worker thread; cancelling the await
        # does not stop the thread, so cleanup waits for it to settle
        pending = None
        try:
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
            pending = asyncio.ensure_future(asyncio.to_thread(open, tmp_path, "wb"))
            handle = await asyncio.shield(pending)
            async for chunk in chunks:
                pending = asyncio.ensure_future(asyncio.to_thread(handle.write, chunk))
                await asyncio.shield(pending)
                written += len(chunk)
            pending = asyncio.ensure_future(asyncio.to_thread(handle.flush))
            await asyncio.shield(pending)
            handle.close()
            await asyncio.to_thread(os.replace, tmp_path, destination)
        except OSError as e:
            raise StorageError(f"failed to write {path}: {e}") from e
        finally:
            if pending is not None:
                if not pending.done():
                    await asyncio.wait([pending])
                if not pending.cancelled() and pending.exception() is None and handle is None:
                    handle = pending.result()
            if handle is not None and not handle.closed:
                handle.close()
            tmp_path.unlink(missing_ok=True)
        return written

    async def get(self, path: str, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        full = self.resolve(path)
        if not await asyncio.to_thread(full.is_file):
            raise ObjectNotFoundError(f"object {path} not found")
        return self._read_chunks(path, full, chunk_size or self.chunk_size)

    async def _read_chunks(self, path: str, full: Path, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            handle = await asyncio.to_thread(open, full, "rb")
        except FileNotFoundError:
            raise ObjectNotFoundError(f"object {path} not found") from None
        except OSError as e:
            raise StorageError(f"failed to open {path}: {e}") from e
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.read, chunk_size)
                except OSError as e:
                    raise StorageError(f"failed to read {path}: {e}") from e
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def read(self, path: str) -> bytes:
        full = self.resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except FileNotFoundError:
            raise ObjectNotFoundError(f"object {path} not found") from None
        except OSError as e:
            raise StorageError(f"failed to read {path}: {e}") from e

    async def delete(self, path: str) -> bool:
        full = self.resolve(path)
        try:
            await asyncio.to_thread(full.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"failed to delete {path}: {e}") from e
        return True

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}\n{expires}".encode("utf-8")
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def sign_url(self, path: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be positive")
        self.resolve(path)
        expires = int(time.time()) + int(ttl_seconds)
        signature = self._signature(path, expires)
        return f"{SIGNED_URL_SCHEME}://local/{quote(path)}?expires={expires}&signature={signature}"

    def verify_signed_url(self, url: str, now: Optional[float] = None) -> str:
        """Check a URL produced by :meth:`sign_url`; returns the store path it grants."""
        parts = urlsplit(url)
        if parts.scheme != SIGNED_URL_SCHEME:
            raise ValidationError("not a signed store URL")
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            raise ValidationError("signed URL is missing expires or signature") from None
        path = unquote(parts.path.lstrip("/"))
        if not hmac.compare_digest(signature, self._signature(path, expires)):
            raise ValidationError("signed URL signature mismatch")
        if (now if now is not None else time.time()) > expires:
            raise ValidationError("signed URL has expired")
        return path

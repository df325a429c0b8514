"""
Object store interface and path conventions

Layout inside a store:
==============================
 - <namespace>/
      - {id}.enc        (ciphertext, exact plaintext length)
      - {id}.metadata   (JSON sidecar: salt, iv, authTag)
==============================
The sidecar path is always derived from the ciphertext path by swapping the
suffix, so a catalog record only needs to remember one path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

CIPHERTEXT_SUFFIX = ".enc"
SIDECAR_SUFFIX = ".metadata"


def ciphertext_path(namespace: str, object_id: str) -> str:
    namespace = namespace.strip("/")
    name = f"{object_id}{CIPHERTEXT_SUFFIX}"
    return f"{namespace}/{name}" if namespace else name


def sidecar_path(ciphertext: str) -> str:
    if not ciphertext.endswith(CIPHERTEXT_SUFFIX):
        raise ValueError(f"not a ciphertext path: {ciphertext!r}")
    return ciphertext[: -len(CIPHERTEXT_SUFFIX)] + SIDECAR_SUFFIX


class ObjectStore(ABC):
    """Remote blob store addressed by slash-separated paths.

    Implementations must make ``put`` all-or-nothing: a failed or cancelled
    write leaves nothing readable at ``path``.
    """

    @abstractmethod
    async def put(self, path: str, chunks: AsyncIterator[bytes]) -> int:
        """Consume ``chunks`` into ``path``; returns the number of bytes written."""

    @abstractmethod
    async def get(self, path: str, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """Return a chunk iterator; raises ``ObjectNotFoundError`` before streaming."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read a small object fully."""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete ``path``; returns False if it did not exist."""

    @abstractmethod
    def sign_url(self, path: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to ``path`` for ``ttl_seconds``."""

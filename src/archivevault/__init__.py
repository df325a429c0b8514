"""ArchiveVault: encrypted streaming storage for binary archives.

Archives are encrypted with AES-256-GCM under a per-object Argon2id key while
they stream into the object store; the salt, IV and tag needed to reverse the
transform live in a small sidecar object next to the ciphertext.
"""

from .core.exceptions import (
    ArchiveVaultError,
    AuthenticationFailure,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .core.models import CryptoMetadata, DownloadResult, ObjectMetadata, ObjectRecord
from .core.vault import ArchiveVault

__all__ = [
    "ArchiveVault",
    "ArchiveVaultError",
    "AuthenticationFailure",
    "CryptoMetadata",
    "DownloadResult",
    "NotFoundError",
    "ObjectMetadata",
    "ObjectRecord",
    "StorageError",
    "ValidationError",
]

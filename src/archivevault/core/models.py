"""
Base data models for stored objects and their crypto metadata
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class TransferState(Enum):
    # Lifecycle of a single upload or download call
    IDLE = "idle"
    VALIDATING = "validating"
    TRANSFERRING = "transferring"
    FINALIZING = "finalizing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class CryptoMetadata:
    """Salt, IV and authentication tag needed to reverse one encryption session."""

    salt: bytes
    iv: bytes
    auth_tag: bytes

    def is_well_formed(self) -> bool:
        return (
            len(self.salt) == SALT_LENGTH
            and len(self.iv) == IV_LENGTH
            and len(self.auth_tag) == TAG_LENGTH
        )


class NewObjectRecord:
    """Values the upload pipeline hands to the catalog once everything is written."""

    __slots__ = (
        "id",
        "display_name",
        "original_name",
        "plaintext_size",
        "ciphertext_size",
        "ciphertext_path",
    )

    def __init__(self, id, display_name, original_name, plaintext_size, ciphertext_size, ciphertext_path):
        self.id = id
        self.display_name = display_name
        self.original_name = original_name
        self.plaintext_size = plaintext_size
        self.ciphertext_size = ciphertext_size
        self.ciphertext_path = ciphertext_path

    def __repr__(self):
        return f"NewObjectRecord(id={self.id!r}, display_name={self.display_name!r})"


class ObjectRecord:
    """A committed object as stored in the metadata catalog."""

    __slots__ = (
        "id",
        "display_name",
        "original_name",
        "plaintext_size",
        "ciphertext_size",
        "ciphertext_path",
        "created_at",
        "updated_at",
    )

    def __init__(
        self,
        id,
        display_name,
        original_name,
        plaintext_size,
        ciphertext_size,
        ciphertext_path,
        created_at=None,
        updated_at=None,
    ):
        self.id = id
        self.display_name = display_name
        self.original_name = original_name
        self.plaintext_size = plaintext_size
        self.ciphertext_size = ciphertext_size
        self.ciphertext_path = ciphertext_path
        self.created_at = created_at if created_at is not None else utcnow()
        self.updated_at = updated_at if updated_at is not None else self.created_at

    @classmethod
    def from_new(cls, new: NewObjectRecord) -> "ObjectRecord":
        return cls(
            id=new.id,
            display_name=new.display_name,
            original_name=new.original_name,
            plaintext_size=new.plaintext_size,
            ciphertext_size=new.ciphertext_size,
            ciphertext_path=new.ciphertext_path,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectRecord":
        """
            Create a record from a dict (catalog row or JSON payload)
        """
        return cls(
            id=data["id"],
            display_name=data["display_name"],
            original_name=data["original_name"],
            plaintext_size=int(data["plaintext_size"]),
            ciphertext_size=int(data["ciphertext_size"]),
            ciphertext_path=data["ciphertext_path"],
            created_at=_parse_timestamp(data["created_at"]),
            updated_at=_parse_timestamp(data["updated_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "original_name": self.original_name,
            "plaintext_size": self.plaintext_size,
            "ciphertext_size": self.ciphertext_size,
            "ciphertext_path": self.ciphertext_path,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def clone(self) -> "ObjectRecord":
        return ObjectRecord(**{name: getattr(self, name) for name in self.__slots__})

    def to_metadata(self) -> "ObjectMetadata":
        return ObjectMetadata(
            id=self.id,
            display_name=self.display_name,
            original_name=self.original_name,
            plaintext_size=self.plaintext_size,
            ciphertext_size=self.ciphertext_size,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self):
        return f"ObjectRecord(id={self.id!r}, display_name={self.display_name!r})"

    def __eq__(self, other):
        if not isinstance(other, ObjectRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash(self.id)


@dataclass(frozen=True)
class ObjectMetadata:
    """Caller-facing view of a record; the store path stays internal."""

    id: str
    display_name: str
    original_name: str
    plaintext_size: int
    ciphertext_size: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "original_name": self.original_name,
            "plaintext_size": self.plaintext_size,
            "ciphertext_size": self.ciphertext_size,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ObjectPage:
    items: List[ObjectRecord]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class DownloadResult:
    """Stream handed back to the caller together with naming hints."""

    stream: AsyncIterator[bytes]
    filename: str
    content_type: str
    record: Optional[ObjectRecord] = None

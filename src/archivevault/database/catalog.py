"""Metadata catalog: interface plus SQLite and in-memory implementations.

The catalog only ever receives records for objects whose ciphertext and
sidecar are both in the store; it never sees key material. Which
implementation backs a process is decided once at startup by
:func:`create_catalog` and injected into the vault.
"""

from __future__ import annotations

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from ..core.exceptions import CatalogError, InitializationError, NotFoundError
from ..core.models import NewObjectRecord, ObjectMetadata, ObjectRecord, utcnow
from .connection import DatabaseConnection

UPDATABLE_FIELDS = ("display_name", "original_name", "plaintext_size", "ciphertext_size", "ciphertext_path")


class MetadataCatalog(ABC):
    """Paginated store of logical object records."""

    @abstractmethod
    async def create(self, record: NewObjectRecord) -> ObjectRecord:
        ...

    @abstractmethod
    async def get_by_id(self, object_id: str) -> Optional[ObjectRecord]:
        ...

    @abstractmethod
    async def list(self, page: int = 1, limit: int = 10) -> Tuple[List[ObjectRecord], int]:
        """Return one page of records (newest first) and the overall total."""

    @abstractmethod
    async def update(self, object_id: str, **changes) -> ObjectRecord:
        ...

    @abstractmethod
    async def delete(self, object_id: str) -> bool:
        """Delete a record; returns False if it did not exist."""

    async def get_metadata(self, object_id: str) -> Optional[ObjectMetadata]:
        record = await self.get_by_id(object_id)
        return record.to_metadata() if record else None

    def close(self) -> None:
        pass


def _check_changes(changes: Dict) -> None:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"cannot update fields: {', '.join(sorted(unknown))}")


class MemoryCatalog(MetadataCatalog):
    """Process-local catalog, used for tests and throwaway setups."""

    def __init__(self):
        self._records: Dict[str, ObjectRecord] = {}

    async def create(self, record: NewObjectRecord) -> ObjectRecord:
        if record.id in self._records:
            raise CatalogError(f"object {record.id} already exists")
        stored = ObjectRecord.from_new(record)
        self._records[stored.id] = stored
        return stored.clone()

    async def get_by_id(self, object_id: str) -> Optional[ObjectRecord]:
        record = self._records.get(object_id)
        return record.clone() if record else None

    async def list(self, page: int = 1, limit: int = 10) -> Tuple[List[ObjectRecord], int]:
        ordered = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        start = (page - 1) * limit
        return [r.clone() for r in ordered[start : start + limit]], len(ordered)

    async def update(self, object_id: str, **changes) -> ObjectRecord:
        _check_changes(changes)
        record = self._records.get(object_id)
        if record is None:
            raise NotFoundError(f"object {object_id} not found")
        for field, value in changes.items():
            setattr(record, field, value)
        record.updated_at = utcnow()
        return record.clone()

    async def delete(self, object_id: str) -> bool:
        return self._records.pop(object_id, None) is not None


class SqliteCatalog(MetadataCatalog):
    """Catalog persisted in SQLite; blocking calls run on worker threads."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self.db.initialize()

    def _create(self, record: NewObjectRecord) -> ObjectRecord:
        now = utcnow().isoformat(timespec="microseconds")
        self.db.execute(
            """
            INSERT INTO objects (id, display_name, original_name, plaintext_size,
                                 ciphertext_size, ciphertext_path, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.display_name,
                record.original_name,
                record.plaintext_size,
                record.ciphertext_size,
                record.ciphertext_path,
                now,
                now,
            ),
        )
        return self._get(record.id)

    def _get(self, object_id: str) -> Optional[ObjectRecord]:
        row = self.db.fetch_one("SELECT * FROM objects WHERE id = ?", (object_id,))
        return ObjectRecord.from_dict(row) if row else None

    def _list(self, page: int, limit: int) -> Tuple[List[ObjectRecord], int]:
        # one snapshot for count and page; fixed-width timestamps sort as text
        try:
            with self.db.get_transaction_context() as cursor:
                cursor.execute("SELECT COUNT(*) FROM objects")
                total = cursor.fetchone()[0]
                cursor.execute(
                    "SELECT * FROM objects ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                    (limit, (page - 1) * limit),
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise CatalogError(f"Query failed: {e}")
        return [ObjectRecord.from_dict(dict(row)) for row in rows], total

    def _update(self, object_id: str, changes: Dict) -> ObjectRecord:
        _check_changes(changes)
        if self._get(object_id) is None:
            raise NotFoundError(f"object {object_id} not found")
        if changes:
            assignments = ", ".join(f"{field} = ?" for field in changes)
            now = utcnow().isoformat(timespec="microseconds")
            params = list(changes.values()) + [now, object_id]
            self.db.execute(
                f"UPDATE objects SET {assignments}, updated_at = ? WHERE id = ?", params
            )
        return self._get(object_id)

    def _delete(self, object_id: str) -> bool:
        return self.db.execute("DELETE FROM objects WHERE id = ?", (object_id,)) > 0

    async def create(self, record: NewObjectRecord) -> ObjectRecord:
        return await asyncio.to_thread(self._create, record)

    async def get_by_id(self, object_id: str) -> Optional[ObjectRecord]:
        return await asyncio.to_thread(self._get, object_id)

    async def list(self, page: int = 1, limit: int = 10) -> Tuple[List[ObjectRecord], int]:
        return await asyncio.to_thread(self._list, page, limit)

    async def update(self, object_id: str, **changes) -> ObjectRecord:
        return await asyncio.to_thread(self._update, object_id, changes)

    async def delete(self, object_id: str) -> bool:
        return await asyncio.to_thread(self._delete, object_id)

    def close(self) -> None:
        self.db.close()


def create_catalog(backend: str, database_path: Optional[str] = None) -> MetadataCatalog:
    """Build the catalog implementation selected at startup."""
    if backend == "memory":
        return MemoryCatalog()
    if backend == "sqlite":
        if not database_path:
            raise InitializationError("the sqlite catalog needs a database path")
        return SqliteCatalog(DatabaseConnection(database_path))
    raise InitializationError(f"unknown catalog backend: {backend!r}")

"""Catalog tests run against both the SQLite and in-memory implementations."""

import asyncio

import pytest

from archivevault.core.exceptions import CatalogError, InitializationError, NotFoundError
from archivevault.core.models import NewObjectRecord
from archivevault.database.catalog import MemoryCatalog, SqliteCatalog, create_catalog
from archivevault.database.connection import DatabaseConnection
from archivevault.database.schema import SCHEMA_VERSION


def new_record(object_id, name="report.zip", size=11):
    return NewObjectRecord(
        id=object_id,
        display_name=name,
        original_name=name,
        plaintext_size=size,
        ciphertext_size=size,
        ciphertext_path=f"archives/{object_id}.enc",
    )


@pytest.fixture(params=["memory", "sqlite"])
def catalog(request, tmp_path):
    if request.param == "memory":
        yield MemoryCatalog()
        return
    cat = SqliteCatalog(DatabaseConnection(tmp_path / "catalog.db"))
    try:
        yield cat
    finally:
        cat.close()


@pytest.mark.asyncio
async def test_create_and_get(catalog):
    created = await catalog.create(new_record("a1"))
    fetched = await catalog.get_by_id("a1")
    assert created.id == "a1"
    assert created.plaintext_size == 11
    assert created.created_at == created.updated_at
    assert fetched == created


@pytest.mark.asyncio
async def test_get_unknown_returns_none(catalog):
    assert await catalog.get_by_id("nope") is None
    assert await catalog.get_metadata("nope") is None


@pytest.mark.asyncio
async def test_duplicate_id_rejected(catalog):
    await catalog.create(new_record("dup"))
    with pytest.raises(CatalogError):
        await catalog.create(new_record("dup"))


@pytest.mark.asyncio
async def test_returned_records_are_copies(catalog):
    record = await catalog.create(new_record("c1"))
    record.display_name = "mutated"
    assert (await catalog.get_by_id("c1")).display_name == "report.zip"


@pytest.mark.asyncio
async def test_list_paginates_newest_first(catalog):
    for i in range(5):
        await catalog.create(new_record(f"id{i}"))
        await asyncio.sleep(0.002)

    first, total = await catalog.list(page=1, limit=2)
    second, _ = await catalog.list(page=2, limit=2)
    last, _ = await catalog.list(page=3, limit=2)
    beyond, _ = await catalog.list(page=4, limit=2)

    assert total == 5
    assert [r.id for r in first] == ["id4", "id3"]
    assert [r.id for r in second] == ["id2", "id1"]
    assert [r.id for r in last] == ["id0"]
    assert beyond == []


@pytest.mark.asyncio
async def test_update_changes_fields_and_timestamp(catalog):
    created = await catalog.create(new_record("u1"))
    await asyncio.sleep(0.002)
    updated = await catalog.update("u1", display_name="renamed")
    assert updated.display_name == "renamed"
    assert updated.original_name == "report.zip"
    assert updated.updated_at > created.updated_at
    assert (await catalog.get_by_id("u1")).display_name == "renamed"


@pytest.mark.asyncio
async def test_update_unknown_object(catalog):
    with pytest.raises(NotFoundError):
        await catalog.update("missing", display_name="x")


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(catalog):
    await catalog.create(new_record("u2"))
    with pytest.raises(ValueError):
        await catalog.update("u2", id="other")


@pytest.mark.asyncio
async def test_delete(catalog):
    await catalog.create(new_record("d1"))
    assert await catalog.delete("d1") is True
    assert await catalog.delete("d1") is False
    assert await catalog.get_by_id("d1") is None


@pytest.mark.asyncio
async def test_get_metadata_hides_store_path(catalog):
    await catalog.create(new_record("m1"))
    metadata = await catalog.get_metadata("m1")
    assert metadata.id == "m1"
    assert "ciphertext_path" not in metadata.to_dict()


# --- SQLite specifics ---

@pytest.mark.asyncio
async def test_sqlite_catalog_persists_across_connections(tmp_path):
    path = tmp_path / "persist.db"
    first = SqliteCatalog(DatabaseConnection(path))
    await first.create(new_record("p1"))
    first.close()

    second = SqliteCatalog(DatabaseConnection(path))
    try:
        assert (await second.get_by_id("p1")).id == "p1"
    finally:
        second.close()


def test_database_connection_initialize_is_idempotent(tmp_path):
    db = DatabaseConnection(tmp_path / "v.db")
    try:
        db.initialize()
        db.initialize()
        assert db.get_version() == SCHEMA_VERSION
    finally:
        db.close()


def test_database_connection_refuses_newer_schema(tmp_path):
    path = tmp_path / "v.db"
    db = DatabaseConnection(path)
    db.initialize()
    db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION + 1,))
    db.close()

    newer = DatabaseConnection(path)
    try:
        with pytest.raises(CatalogError, match="newer than supported"):
            newer.initialize()
        assert newer.get_version() == SCHEMA_VERSION + 1
    finally:
        newer.close()


def test_database_errors_are_wrapped(tmp_path):
    db = DatabaseConnection(tmp_path / "v.db")
    try:
        db.initialize()
        with pytest.raises(CatalogError):
            db.execute("SELECT * FROM no_such_table")
        with pytest.raises(CatalogError):
            db.fetch_one("SELECT nonsense FROM")
    finally:
        db.close()


def test_transaction_context_rolls_back(tmp_path):
    db = DatabaseConnection(tmp_path / "v.db")
    try:
        db.initialize()
        with pytest.raises(RuntimeError):
            with db.get_transaction_context() as cursor:
                cursor.execute(
                    "INSERT INTO objects VALUES ('t1', 'n', 'n', 1, 1, 'archives/t1.enc', 'x', 'x')"
                )
                raise RuntimeError("abort")
        assert db.fetch_one("SELECT * FROM objects WHERE id = 't1'") is None
    finally:
        db.close()


# --- Factory ---

def test_create_catalog_backends(tmp_path):
    assert isinstance(create_catalog("memory"), MemoryCatalog)
    cat = create_catalog("sqlite", str(tmp_path / "f.db"))
    try:
        assert isinstance(cat, SqliteCatalog)
    finally:
        cat.close()


def test_create_catalog_rejects_unknown_backend():
    with pytest.raises(InitializationError):
        create_catalog("postgres")
    with pytest.raises(InitializationError):
        create_catalog("sqlite", None)

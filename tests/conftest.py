"""Shared fixtures: fast Argon2 parameters, a temp store and both catalogs."""

import pytest

from archivevault.core.vault import ArchiveVault
from archivevault.database.catalog import MemoryCatalog, SqliteCatalog
from archivevault.database.connection import DatabaseConnection
from archivevault.security.kdf import KeyDeriver
from archivevault.storage.local import LocalObjectStore

# minimal Argon2id costs; production defaults are far higher
FAST_KDF = {"time_cost": 1, "memory_cost": 1024, "parallelism": 1}


@pytest.fixture
def deriver():
    """KeyDeriver over the fixed test secret with cheap KDF settings."""
    d = KeyDeriver("test-secret", max_workers=2, **FAST_KDF)
    try:
        yield d
    finally:
        d.close()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(str(tmp_path / "objects"), b"url-signing-key", chunk_size=16)


@pytest.fixture
def memory_catalog():
    return MemoryCatalog()


@pytest.fixture
def sqlite_catalog(tmp_path):
    catalog = SqliteCatalog(DatabaseConnection(tmp_path / "catalog.db"))
    try:
        yield catalog
    finally:
        catalog.close()


@pytest.fixture
def vault(store, memory_catalog, deriver):
    return ArchiveVault(store, memory_catalog, deriver, chunk_size=16)

"""Startup wiring: turn Settings into a ready ArchiveVault."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import Settings
from .core.exceptions import InitializationError
from .core.vault import ArchiveVault
from .database.catalog import create_catalog
from .security.crypto import derive_url_signing_key
from .security.kdf import KeyDeriver
from .security.keystore import load_secret
from .storage.local import LocalObjectStore

logger = logging.getLogger(__name__)


def resolve_secret(settings: Settings) -> bytes:
    """Return the process secret from settings, else from the OS keystore."""
    if settings.encryption_key:
        return settings.encryption_key.encode("utf-8")
    secret = load_secret(settings.keyring_service, settings.keyring_account)
    if not secret:
        raise InitializationError(
            "no encryption key configured: set ARCHIVEVAULT_ENCRYPTION_KEY "
            "or store one with `archivevault store-secret`"
        )
    logger.debug("encryption key loaded from keyring %s/%s", settings.keyring_service, settings.keyring_account)
    return secret


def build_vault(settings: Settings) -> ArchiveVault:
    secret = resolve_secret(settings)
    signing_key = (
        settings.url_signing_key.encode("utf-8")
        if settings.url_signing_key
        else derive_url_signing_key(secret)
    )
    store = LocalObjectStore(settings.storage_root, signing_key, chunk_size=settings.chunk_size)
    catalog = create_catalog(
        settings.catalog_backend, str(Path(settings.database_path).expanduser())
    )
    deriver = KeyDeriver(
        secret,
        time_cost=settings.kdf_time_cost,
        memory_cost=settings.kdf_memory_cost,
        parallelism=settings.kdf_parallelism,
        max_workers=settings.kdf_workers,
    )
    logger.debug(
        "vault ready: store=%s catalog=%s", store.root, settings.catalog_backend
    )
    return ArchiveVault(
        store,
        catalog,
        deriver,
        namespace=settings.storage_namespace,
        allowed_media_types=settings.allowed_media_types,
        archive_content_type=settings.archive_content_type,
        max_upload_bytes=settings.max_upload_bytes,
        chunk_size=settings.chunk_size,
        pipe_capacity=settings.pipe_capacity,
        verify_container_signature=settings.verify_container_signature,
        default_url_ttl=settings.default_url_ttl,
    )

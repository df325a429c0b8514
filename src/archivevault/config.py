from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # process-wide secret; falls back to the OS keystore when unset
    encryption_key: Optional[str] = None
    keyring_service: str = "archivevault"
    keyring_account: str = "encryption-key"

    # object store
    storage_root: str = "~/.archivevault/objects"
    storage_namespace: str = "archives"
    url_signing_key: Optional[str] = None
    default_url_ttl: int = Field(default=3600, gt=0)

    # catalog
    catalog_backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: str = "~/.archivevault/catalog.db"

    # uploads
    allowed_media_types: List[str] = ["application/zip", "application/x-zip-compressed"]
    archive_content_type: str = "application/zip"
    max_upload_bytes: int = Field(default=2 * 1024 * 1024 * 1024, gt=0)
    verify_container_signature: bool = False

    # streaming
    chunk_size: int = Field(default=64 * 1024, gt=0)
    pipe_capacity: int = Field(default=4, ge=1)

    # Argon2id
    kdf_time_cost: int = Field(default=3, ge=1)
    kdf_memory_cost: int = Field(default=64 * 1024, ge=8)  # KiB (64 MiB)
    kdf_parallelism: int = Field(default=1, ge=1)
    kdf_workers: Optional[int] = Field(default=None, ge=1)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVEVAULT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("storage_namespace")
    @classmethod
    def _strip_namespace(cls, value: str) -> str:
        return value.strip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

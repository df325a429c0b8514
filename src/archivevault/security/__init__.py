"""Security helpers: key derivation, streaming AEAD stages and keystore access."""

from .kdf import KeyDeriver, derive_key, generate_salt
from .crypto import (
    DecryptStage,
    EncryptStage,
    decrypt_bytes,
    deserialize_metadata,
    encrypt_bytes,
    serialize_metadata,
)

__all__ = [
    "KeyDeriver",
    "derive_key",
    "generate_salt",
    "EncryptStage",
    "DecryptStage",
    "encrypt_bytes",
    "decrypt_bytes",
    "serialize_metadata",
    "deserialize_metadata",
]

"""Streaming AES-256-GCM stages and the detached sidecar format.

Each stored object is encrypted as one GCM message:

- key: Argon2id(process secret, 32-byte random salt)
- iv: 16 random bytes
- tag: 16 bytes, available only once the last plaintext byte went through

GCM is a counter mode, so every ciphertext chunk has exactly the length of
its plaintext chunk and the object needs no framing. Salt, IV and tag travel
in a separate JSON sidecar:

    {"salt": "<base64>", "iv": "<base64>", "authTag": "<base64>"}

Decryption streams plaintext before the tag can be checked. Bytes handed out
before ``DecryptStage.finish()`` returns are provisional: if the final check
raises ``AuthenticationFailure`` the whole output must be discarded. Callers
that need all-or-nothing delivery have to buffer or verify their own checksum.
"""
from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..core.exceptions import AuthenticationFailure, PipelineError
from ..core.models import IV_LENGTH, CryptoMetadata
from ..core.pipeline import Stage, apply_stages, finish_stages
from .kdf import KeyDeriver, generate_salt


class EncryptStage(Stage):
    """Encrypting half of one GCM session."""

    def __init__(self, key: bytes, salt: bytes, iv: bytes):
        self.salt = salt
        self.iv = iv
        self._encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
        self._tag: Optional[bytes] = None

    @classmethod
    async def create(cls, deriver: KeyDeriver) -> "EncryptStage":
        # fresh salt and iv for every object, never reused
        salt = generate_salt()
        iv = os.urandom(IV_LENGTH)
        key = await deriver.derive(salt)
        return cls(key, salt, iv)

    @property
    def finalized(self) -> bool:
        return self._tag is not None

    def process(self, chunk: bytes) -> bytes:
        if self._tag is not None:
            raise PipelineError("cannot encrypt after the stream was finalized")
        return self._encryptor.update(chunk)

    def finish(self) -> bytes:
        if self._tag is not None:
            return b""
        tail = self._encryptor.finalize()
        self._tag = self._encryptor.tag
        # drop the context so the key does not outlive the session
        self._encryptor = None
        return tail

    def auth_tag(self) -> bytes:
        """Return the tag, finalizing on first use; repeated calls return the same value."""
        if self._tag is None:
            self.finish()
        return self._tag

    def metadata(self) -> CryptoMetadata:
        return CryptoMetadata(salt=self.salt, iv=self.iv, auth_tag=self.auth_tag())


class DecryptStage(Stage):
    """Decrypting half of one GCM session, pre-loaded with the expected tag."""

    def __init__(self, key: bytes, metadata: CryptoMetadata):
        if not metadata.is_well_formed():
            raise AuthenticationFailure("malformed crypto metadata")
        self._decryptor = Cipher(
            algorithms.AES(key), modes.GCM(metadata.iv, metadata.auth_tag)
        ).decryptor()
        self.verified = False

    @classmethod
    async def create(cls, deriver: KeyDeriver, metadata: CryptoMetadata) -> "DecryptStage":
        if not metadata.is_well_formed():
            raise AuthenticationFailure("malformed crypto metadata")
        key = await deriver.derive(metadata.salt)
        return cls(key, metadata)

    def process(self, chunk: bytes) -> bytes:
        if self._decryptor is None:
            raise PipelineError("cannot decrypt after the stream was finalized")
        return self._decryptor.update(chunk)

    def finish(self) -> bytes:
        if self._decryptor is None:
            return b""
        try:
            tail = self._decryptor.finalize()
        except InvalidTag:
            raise AuthenticationFailure(
                "authentication tag mismatch: ciphertext, key or metadata is wrong"
            ) from None
        finally:
            self._decryptor = None
        self.verified = True
        return tail


def derive_url_signing_key(secret: bytes, info: bytes = b"archivevault-url-signing") -> bytes:
    # separate subkey so signed URLs never expose material usable for object keys
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info)
    return hkdf.derive(secret)


def serialize_metadata(metadata: CryptoMetadata) -> bytes:
    payload = {
        "salt": base64.b64encode(metadata.salt).decode("ascii"),
        "iv": base64.b64encode(metadata.iv).decode("ascii"),
        "authTag": base64.b64encode(metadata.auth_tag).decode("ascii"),
    }
    return json.dumps(payload).encode("utf-8")


def deserialize_metadata(raw: bytes) -> CryptoMetadata:
    """Parse a sidecar; anything malformed is an authentication failure."""
    try:
        parsed = json.loads(raw.decode("utf-8"))
        if not isinstance(parsed, dict):
            raise ValueError("sidecar is not a JSON object")
        metadata = CryptoMetadata(
            salt=base64.b64decode(parsed["salt"], validate=True),
            iv=base64.b64decode(parsed["iv"], validate=True),
            auth_tag=base64.b64decode(parsed["authTag"], validate=True),
        )
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise AuthenticationFailure(f"malformed crypto metadata: {e}") from None
    if not metadata.is_well_formed():
        raise AuthenticationFailure("malformed crypto metadata: wrong field lengths")
    return metadata


async def encrypt_bytes(deriver: KeyDeriver, data: bytes) -> Tuple[bytes, CryptoMetadata]:
    """Encrypt an in-memory payload with the same construction the pipeline uses."""
    stage = await EncryptStage.create(deriver)
    ciphertext = apply_stages([stage], data) + finish_stages([stage])
    return ciphertext, stage.metadata()


async def decrypt_bytes(deriver: KeyDeriver, metadata: CryptoMetadata, ciphertext: bytes) -> bytes:
    stage = await DecryptStage.create(deriver, metadata)
    return apply_stages([stage], ciphertext) + finish_stages([stage])

from __future__ import annotations

import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Optional

from argon2.low_level import Type, hash_secret_raw

from ..core.exceptions import InitializationError
from ..core.models import SALT_LENGTH

KEY_LENGTH = 32


def generate_salt(length: int = SALT_LENGTH) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_key(
    secret: bytes,
    salt: bytes,
    time_cost: int = 3,
    memory_cost: int = 65536,
    parallelism: int = 1,
    key_len: int = KEY_LENGTH,
) -> bytes:
    """
    Derive a per-object key from the process secret and an object salt using Argon2id.
    Returns raw derived key bytes; the same (secret, salt, params) always yield the same key.
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")

    return hash_secret_raw(
        secret=secret,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=key_len,
        type=Type.ID,
    )


class KeyDeriver:
    """
    Derives object keys off the event loop.

    Argon2id is deliberately slow and memory hungry, so derivations run on a
    thread pool bounded to the CPU count; sessions awaiting a key never stall
    the loop or each other beyond the pool size.
    """

    def __init__(
        self,
        secret: bytes | str,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 1,
        max_workers: Optional[int] = None,
    ):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise InitializationError("encryption secret must not be empty")
        self._secret = secret
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor: Optional[ThreadPoolExecutor] = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="archivevault-kdf"
            )
        return self._executor

    def derive_sync(self, salt: bytes) -> bytes:
        if len(salt) != SALT_LENGTH:
            raise ValueError(f"salt must be {SALT_LENGTH} bytes, got {len(salt)}")
        return derive_key(
            self._secret,
            salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
        )

    async def derive(self, salt: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), partial(self.derive_sync, salt)
        )

    def close(self) -> None:
        """
        Shut the worker pool down without blocking; a later derive() starts a fresh one.
        Queued derivations are cancelled, a running one finishes on its own thread.
        """
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

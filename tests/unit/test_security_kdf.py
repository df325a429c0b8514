import asyncio
import threading
import time
from unittest.mock import patch

import pytest

from archivevault.core.exceptions import InitializationError
from archivevault.security.kdf import KEY_LENGTH, KeyDeriver, derive_key, generate_salt

FAST = {"time_cost": 1, "memory_cost": 1024, "parallelism": 1}


def test_generate_salt_length_and_randomness():
    a = generate_salt()
    b = generate_salt()
    assert len(a) == 32
    assert a != b
    assert len(generate_salt(16)) == 16


def test_derive_key_is_deterministic():
    salt = generate_salt()
    k1 = derive_key(b"test-secret", salt, **FAST)
    k2 = derive_key(b"test-secret", salt, **FAST)
    assert k1 == k2
    assert len(k1) == KEY_LENGTH


def test_derive_key_accepts_str_secret():
    salt = generate_salt()
    assert derive_key("test-secret", salt, **FAST) == derive_key(b"test-secret", salt, **FAST)


def test_derive_key_depends_on_salt_and_secret():
    salt = generate_salt()
    base = derive_key(b"test-secret", salt, **FAST)
    assert derive_key(b"test-secret", generate_salt(), **FAST) != base
    assert derive_key(b"other-secret", salt, **FAST) != base


def test_derive_key_custom_length():
    assert len(derive_key(b"s", generate_salt(), key_len=16, **FAST)) == 16


def test_key_deriver_rejects_empty_secret():
    with pytest.raises(InitializationError):
        KeyDeriver(b"")
    with pytest.raises(InitializationError):
        KeyDeriver("")


def test_key_deriver_rejects_wrong_salt_length(deriver):
    with pytest.raises(ValueError):
        deriver.derive_sync(b"short")


@pytest.mark.asyncio
async def test_key_deriver_async_matches_sync(deriver):
    salt = generate_salt()
    key = await deriver.derive(salt)
    assert key == deriver.derive_sync(salt)
    assert key == derive_key(b"test-secret", salt, **FAST)


@pytest.mark.asyncio
async def test_derivation_does_not_block_event_loop(deriver):
    ticks = 0
    done = asyncio.Event()

    async def ticker():
        nonlocal ticks
        while not done.is_set():
            ticks += 1
            await asyncio.sleep(0)

    task = asyncio.ensure_future(ticker())
    await deriver.derive(generate_salt())
    done.set()
    await task
    assert ticks >= 1


@pytest.mark.asyncio
async def test_concurrent_derivations_are_independent(deriver):
    salts = [generate_salt() for _ in range(4)]
    keys = await asyncio.gather(*(deriver.derive(s) for s in salts))
    assert len(set(keys)) == 4
    assert keys == [deriver.derive_sync(s) for s in salts]


@pytest.mark.asyncio
async def test_close_then_derive_recreates_pool(deriver):
    salt = generate_salt()
    first = await deriver.derive(salt)
    deriver.close()
    assert await deriver.derive(salt) == first


@pytest.mark.asyncio
async def test_close_does_not_wait_for_running_derivation(deriver):
    started = threading.Event()
    release = threading.Event()

    def blocking(salt):
        started.set()
        release.wait(5)
        return b"k" * KEY_LENGTH

    with patch.object(deriver, "derive_sync", side_effect=blocking):
        pending = asyncio.ensure_future(deriver.derive(generate_salt()))
        assert await asyncio.to_thread(started.wait, 5)

        begin = time.monotonic()
        deriver.close()
        elapsed = time.monotonic() - begin

        release.set()
        # the running derivation still completes on its own thread
        assert await pending == b"k" * KEY_LENGTH
    assert elapsed < 1

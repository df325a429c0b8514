"""Unit tests for the filesystem object store."""

import asyncio
import builtins
import threading
import time
from unittest.mock import patch

import pytest

from archivevault.core.exceptions import (
    InvalidPathError,
    ObjectNotFoundError,
    StorageError,
    ValidationError,
)
from archivevault.core.pipeline import iter_chunks
from archivevault.storage.base import ciphertext_path, sidecar_path
from archivevault.storage.local import LocalObjectStore


async def collect(stream):
    return b"".join([chunk async for chunk in stream])


# --- Path conventions ---

def test_ciphertext_and_sidecar_paths():
    enc = ciphertext_path("archives", "abc")
    assert enc == "archives/abc.enc"
    assert sidecar_path(enc) == "archives/abc.metadata"
    assert ciphertext_path("/nested/ns/", "x") == "nested/ns/x.enc"
    assert ciphertext_path("", "x") == "x.enc"


def test_sidecar_path_requires_ciphertext_suffix():
    with pytest.raises(ValueError):
        sidecar_path("archives/abc.zip")


# --- Blob operations ---

@pytest.mark.asyncio
async def test_put_get_read_roundtrip(store):
    data = b"0123456789" * 10
    written = await store.put("archives/obj.enc", iter_chunks(data, 7))
    assert written == len(data)
    assert await collect(await store.get("archives/obj.enc")) == data
    assert await store.read("archives/obj.enc") == data


@pytest.mark.asyncio
async def test_get_uses_requested_chunk_size(store):
    await store.put("a/b.enc", iter_chunks(b"x" * 10, 10))
    sizes = [len(c) async for c in await store.get("a/b.enc", chunk_size=4)]
    assert sizes == [4, 4, 2]


@pytest.mark.asyncio
async def test_put_is_atomic_when_source_fails(store):
    async def failing():
        yield b"partial data"
        raise StorageError("upstream broke")

    with pytest.raises(StorageError, match="upstream broke"):
        await store.put("archives/obj.enc", failing())

    assert not (store.root / "archives" / "obj.enc").exists()
    # no temp file left behind either
    assert list((store.root / "archives").glob("*.part")) == []


@pytest.mark.asyncio
async def test_put_replaces_existing_object(store):
    await store.put("a/x.enc", iter_chunks(b"old"))
    await store.put("a/x.enc", iter_chunks(b"new!"))
    assert await store.read("a/x.enc") == b"new!"


@pytest.mark.asyncio
async def test_put_wraps_os_errors(store):
    with patch("archivevault.storage.local.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(StorageError):
            await store.put("a/x.enc", iter_chunks(b"data"))
    assert not (store.root / "a" / "x.enc").exists()


class BlockingFile:
    """File wrapper whose write() waits for the test to release it."""

    def __init__(self, path, mode):
        self._file = builtins.open(path, mode)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.writing = False
        self.closed_during_write = False

    def write(self, data):
        self.writing = True
        self.entered.set()
        self.release.wait(5)
        try:
            return self._file.write(data)
        finally:
            self.writing = False

    def flush(self):
        self._file.flush()

    def close(self):
        if self.writing:
            self.closed_during_write = True
        self._file.close()

    @property
    def closed(self):
        return self._file.closed


@pytest.mark.asyncio
async def test_cancelled_put_waits_for_inflight_write(store):
    opened = []

    def opener(path, mode):
        handle = BlockingFile(path, mode)
        opened.append(handle)
        return handle

    with patch("archivevault.storage.local.open", side_effect=opener, create=True):
        task = asyncio.ensure_future(store.put("a/x.enc", iter_chunks(b"data")))
        for _ in range(500):
            if opened and opened[0].entered.is_set():
                break
            await asyncio.sleep(0.01)
        handle = opened[0]

        task.cancel()
        await asyncio.sleep(0.05)
        # cleanup is held back until the worker thread returns
        assert not task.done()
        assert not handle.closed

        handle.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert handle.closed_during_write is False
    assert handle.closed
    assert [p for p in store.root.rglob("*") if p.is_file()] == []


@pytest.mark.asyncio
async def test_get_missing_raises_before_streaming(store):
    with pytest.raises(ObjectNotFoundError):
        await store.get("archives/missing.enc")


@pytest.mark.asyncio
async def test_read_missing(store):
    with pytest.raises(ObjectNotFoundError):
        await store.read("archives/missing.metadata")


@pytest.mark.asyncio
async def test_delete(store):
    await store.put("a/x.enc", iter_chunks(b"data"))
    assert await store.delete("a/x.enc") is True
    assert not (store.root / "a" / "x.enc").exists()
    assert await store.delete("a/x.enc") is False


@pytest.mark.parametrize(
    "path", ["", "/etc/passwd", "../outside.enc", "a/../../b.enc"]
)
def test_resolve_rejects_escaping_paths(store, path):
    with pytest.raises(InvalidPathError):
        store.resolve(path)


def test_empty_signing_key_rejected(tmp_path):
    with pytest.raises(ValueError):
        LocalObjectStore(str(tmp_path), b"")


# --- Signed URLs ---

def test_signed_url_roundtrip(store):
    url = store.sign_url("archives/abc.enc", 60)
    assert url.startswith("archivevault://local/archives/abc.enc?")
    assert store.verify_signed_url(url) == "archives/abc.enc"


def test_signed_url_expires(store):
    url = store.sign_url("archives/abc.enc", 60)
    with pytest.raises(ValidationError, match="expired"):
        store.verify_signed_url(url, now=time.time() + 120)


def test_signed_url_tampering_detected(store, tmp_path):
    url = store.sign_url("archives/abc.enc", 60)
    with pytest.raises(ValidationError):
        store.verify_signed_url(url.replace("abc", "abd"))

    other = LocalObjectStore(str(tmp_path / "other"), b"different-key")
    with pytest.raises(ValidationError):
        other.verify_signed_url(url)


@pytest.mark.parametrize("url", ["https://local/a.enc", "archivevault://local/a.enc?expires=1"])
def test_verify_rejects_malformed_urls(store, url):
    with pytest.raises(ValidationError):
        store.verify_signed_url(url)


def test_sign_url_requires_positive_ttl(store):
    with pytest.raises(ValidationError):
        store.sign_url("archives/abc.enc", 0)

"""Input checks run before an upload touches the KDF or the store."""

from __future__ import annotations

from pathlib import PurePath
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from .exceptions import UnsupportedMediaTypeError, ValidationError

# local file header, empty archive, spanned archive
ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
MAX_NAME_LENGTH = 255


def normalize_media_type(media_type: Optional[str]) -> str:
    # drop parameters such as "; charset=binary"
    return (media_type or "").split(";", 1)[0].strip().lower()


def validate_media_type(media_type: Optional[str], allowed: Iterable[str]) -> str:
    normalized = normalize_media_type(media_type)
    if not normalized:
        raise ValidationError("no media type declared for upload")
    accepted = {normalize_media_type(a) for a in allowed}
    if normalized not in accepted:
        raise UnsupportedMediaTypeError(
            f"unsupported media type {normalized!r}; expected one of {sorted(accepted)}"
        )
    return normalized


def validate_filename(filename: Optional[str]) -> str:
    """Return the bare file name, rejecting empty or oversized names."""
    if not filename or not filename.strip():
        raise ValidationError("no file name provided")
    name = PurePath(filename.replace("\\", "/")).name.strip()
    if not name or name in (".", ".."):
        raise ValidationError(f"invalid file name: {filename!r}")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("file name is too long")
    return name


async def _prepend(head: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    try:
        if head:
            yield head
        async for chunk in rest:
            yield chunk
    finally:
        aclose = getattr(rest, "aclose", None)
        if aclose is not None:
            await aclose()


async def sniff_signature(
    source: AsyncIterator[bytes], signatures: Tuple[bytes, ...] = ZIP_SIGNATURES
) -> AsyncIterator[bytes]:
    """Check the leading bytes of ``source`` and return an equivalent stream.

    Only as many chunks as needed to cover the longest signature are read
    ahead; they are replayed in front of the remaining stream.
    """
    need = max(len(s) for s in signatures)
    buffered: List[bytes] = []
    size = 0
    iterator = source.__aiter__()
    while size < need:
        try:
            chunk = await iterator.__anext__()
        except StopAsyncIteration:
            break
        buffered.append(chunk)
        size += len(chunk)
    head = b"".join(buffered)
    if not any(head.startswith(sig) for sig in signatures):
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
        raise ValidationError("payload is not a recognized archive container")
    return _prepend(head, iterator)

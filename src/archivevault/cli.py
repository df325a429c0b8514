"""
Command line front end for ArchiveVault.

Commands:
    upload FILE [--name NAME] [--type MEDIA_TYPE]
    -> encrypts FILE into the store and prints the new record as JSON

    download ID OUT [--raw]
    -> writes the decrypted archive (or the raw ciphertext) to OUT

    list [--page N] [--limit N]
    meta ID
    delete ID
    url ID [--expires-in SECONDS]
    store-secret
    -> reads a secret from the terminal and saves it in the OS keystore
    forget-secret
    -> removes that secret from the OS keystore

Configuration comes from ARCHIVEVAULT_* environment variables (see config.py).

Usage:
    python -m archivevault upload ./profile.zip --name "work profile"
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import AsyncIterator, List, Optional

from .app import build_vault
from .config import Settings
from .core.exceptions import ArchiveVaultError, AuthenticationFailure, NotFoundError
from .core.vault import ArchiveVault
from .logging_config import configure_logging
from .security.keystore import delete_secret, save_secret

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_AUTH = 3


async def read_file_chunks(path: Path, chunk_size: int) -> AsyncIterator[bytes]:
    handle = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(handle.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


async def write_stream(stream: AsyncIterator[bytes], destination: Path) -> int:
    """Write to a temporary sibling and rename on success.

    Decrypted bytes are only trustworthy once the whole stream authenticated,
    so a failed download never leaves a file at ``destination``.
    """
    tmp_path = destination.with_name(destination.name + ".part")
    written = 0
    try:
        with open(tmp_path, "wb") as out:
            async for chunk in stream:
                await asyncio.to_thread(out.write, chunk)
                written += len(chunk)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)
    return written


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2))


async def _upload(vault: ArchiveVault, settings: Settings, args) -> int:
    path = Path(args.file).expanduser()
    if not path.is_file():
        print(f"error: {path} is not a file", file=sys.stderr)
        return EXIT_ERROR
    media_type = args.type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    record = await vault.upload(
        read_file_chunks(path, settings.chunk_size), media_type, path.name, display_name=args.name
    )
    _print_json(record.to_dict())
    return EXIT_OK


async def _download(vault: ArchiveVault, settings: Settings, args) -> int:
    result = await vault.download(args.id, decrypt=not args.raw)
    destination = Path(args.out).expanduser()
    if destination.is_dir():
        destination = destination / result.filename
    size = await write_stream(result.stream, destination)
    print(f"wrote {size} bytes to {destination} ({result.content_type})")
    return EXIT_OK


async def _list(vault: ArchiveVault, settings: Settings, args) -> int:
    page = await vault.list_objects(args.page, args.limit)
    _print_json(
        {
            "items": [record.to_metadata().to_dict() for record in page.items],
            "total": page.total,
            "page": page.page,
            "total_pages": page.total_pages,
        }
    )
    return EXIT_OK


async def _meta(vault: ArchiveVault, settings: Settings, args) -> int:
    _print_json((await vault.get_metadata(args.id)).to_dict())
    return EXIT_OK


async def _delete(vault: ArchiveVault, settings: Settings, args) -> int:
    await vault.delete(args.id)
    print(f"deleted {args.id}")
    return EXIT_OK


async def _url(vault: ArchiveVault, settings: Settings, args) -> int:
    url = await vault.create_download_url(args.id, args.expires_in)
    _print_json({"url": url, "expires_in": args.expires_in or settings.default_url_ttl})
    return EXIT_OK


COMMANDS = {
    "upload": _upload,
    "download": _download,
    "list": _list,
    "meta": _meta,
    "delete": _delete,
    "url": _url,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="archivevault", description="Encrypted archive storage")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="encrypt and store an archive")
    up.add_argument("file")
    up.add_argument("--name", help="display name (defaults to the file name)")
    up.add_argument("--type", help="media type (guessed from the extension by default)")

    down = sub.add_parser("download", help="fetch an archive")
    down.add_argument("id")
    down.add_argument("out")
    down.add_argument("--raw", action="store_true", help="write the ciphertext without decrypting")

    ls = sub.add_parser("list", help="list stored archives")
    ls.add_argument("--page", type=int, default=1)
    ls.add_argument("--limit", type=int, default=10)

    meta = sub.add_parser("meta", help="show archive metadata")
    meta.add_argument("id")

    rm = sub.add_parser("delete", help="delete an archive")
    rm.add_argument("id")

    url = sub.add_parser("url", help="create a signed URL for the ciphertext")
    url.add_argument("id")
    url.add_argument("--expires-in", type=int, default=None)

    sub.add_parser("store-secret", help="save the encryption secret in the OS keystore")
    sub.add_parser("forget-secret", help="remove the encryption secret from the OS keystore")
    return parser


async def _run(settings: Settings, args) -> int:
    async with build_vault(settings) as vault:
        return await COMMANDS[args.command](vault, settings, args)


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or Settings()
    configure_logging(logging.DEBUG if args.verbose else settings.log_level)

    try:
        if args.command == "store-secret":
            secret = getpass.getpass("encryption secret: ")
            if not secret:
                print("error: empty secret", file=sys.stderr)
                return EXIT_ERROR
            save_secret(secret.encode("utf-8"), settings.keyring_service, settings.keyring_account)
            print(f"secret stored in keyring {settings.keyring_service}/{settings.keyring_account}")
            return EXIT_OK
        if args.command == "forget-secret":
            if not delete_secret(settings.keyring_service, settings.keyring_account):
                print(f"no secret stored in keyring {settings.keyring_service}/{settings.keyring_account}")
                return EXIT_NOT_FOUND
            print(f"secret removed from keyring {settings.keyring_service}/{settings.keyring_account}")
            return EXIT_OK
        return asyncio.run(_run(settings, args))
    except NotFoundError as e:
        print(f"not found: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except AuthenticationFailure as e:
        print(f"authentication failed: {e}", file=sys.stderr)
        return EXIT_AUTH
    except ArchiveVaultError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

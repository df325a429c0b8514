"""OS keystore integration for the process-wide encryption secret.

The secret normally comes from configuration; this module lets an operator
park it in the OS keystore instead (``archivevault store-secret``) so it never
sits in an environment file. The secret is base64-encoded before storage to
keep it string-friendly. Do not assume keyring provides hardware-backed
security on all platforms.
"""
import base64
import binascii
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..core.exceptions import InitializationError

DEFAULT_SERVICE = "archivevault"
DEFAULT_ACCOUNT = "encryption-key"


def save_secret(secret: bytes, service: str = DEFAULT_SERVICE, account: str = DEFAULT_ACCOUNT) -> None:
    """Persist the secret in the OS keystore under (service, account)."""
    secure, msg = assess_keyring_backend()
    if not secure:
        raise InitializationError(f"refusing to store the encryption secret: {msg}")
    value = base64.b64encode(secret).decode("ascii")
    try:
        keyring.set_password(service, account, value)
    except KeyringError as e:
        raise InitializationError(f"failed to store secret in keyring: {e}") from e


def load_secret(service: str = DEFAULT_SERVICE, account: str = DEFAULT_ACCOUNT) -> Optional[bytes]:
    """Load the secret from the OS keystore; returns raw bytes or None when absent."""
    try:
        value = keyring.get_password(service, account)
    except KeyringError as e:
        raise InitializationError(f"failed to read secret from keyring: {e}") from e
    if value is None:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise InitializationError(f"keyring entry {service}/{account} is not valid base64") from e


def delete_secret(service: str = DEFAULT_SERVICE, account: str = DEFAULT_ACCOUNT) -> bool:
    """Remove the secret; returns False when there was nothing to delete."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        return False
    return True


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms.
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    return True, f"backend looks acceptable: {name} (priority={priority})"

"""
Exceptions for ArchiveVault
Every error raised by the package derives from ArchiveVaultError so callers
have a single catch-all, and the subclasses map onto transport status codes
(validation -> 4xx, not found -> 404, storage -> 5xx).
"""


class ArchiveVaultError(Exception):
    # general container for errors
    pass


class ValidationError(ArchiveVaultError):
    # raised on bad or missing input, before any side effect
    pass


class UnsupportedMediaTypeError(ValidationError):
    # raised when the declared media type is not an accepted archive type
    pass


class PayloadTooLargeError(ValidationError):
    # raised when the stream grows past the configured upload limit
    pass


class NotFoundError(ArchiveVaultError):
    # raised when an id is unknown to the catalog
    pass


class ObjectNotFoundError(NotFoundError):
    # raised when a path does not exist in the object store
    pass


class IncompleteObjectError(NotFoundError):
    # raised when a record exists but its ciphertext or sidecar is missing
    pass


class AuthenticationFailure(ArchiveVaultError):
    # raised on tag mismatch, wrong key or malformed crypto metadata
    pass


class StorageError(ArchiveVaultError):
    # raised if the object store fails in some way
    pass


class CatalogError(StorageError):
    # raised if the metadata catalog fails in some way
    pass


class InvalidPathError(StorageError):
    # raised when a store path escapes the storage root or is malformed
    pass


class CompensationFailure(ArchiveVaultError):
    # cleanup delete failed; logged only, never raised to callers
    pass


class InitializationError(ArchiveVaultError):
    # raised when configuration or the process secret is unusable
    pass


class InvalidStateTransition(ArchiveVaultError):
    # raised when a transfer session moves backwards or leaves a terminal state
    pass


class PipelineError(ArchiveVaultError):
    # raised when a stage is misused (data after finalize, early sink exit)
    pass

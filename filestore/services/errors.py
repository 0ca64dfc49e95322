"""Errors raised by the file storage services.

Store level failures (``StorageError`` and its subclasses) never leave the
services unwrapped; they are translated into ``FileStorageError`` carrying
the offending object key.
"""

from __future__ import annotations

from filestore.infra.storage.client import StorageError, StoreServiceError


class ServiceError(Exception):
    """Base class for application service level exceptions."""


class FileStorageError(ServiceError):
    """A file storage operation failed."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class FileStorageIOError(FileStorageError):
    """Local I/O failed while spooling or reading a stream."""


class StoredFileNotFoundError(FileStorageError):
    """The file does not exist in the store."""


class InvalidRangeError(FileStorageError):
    """The requested byte range lies outside of the file."""

    def __init__(self, offset: int, length: int, name: str, size: int) -> None:
        super().__init__(
            f"Invalid range: offset {offset}, length {length} for file '{name}' "
            f"with size {size}"
        )
        self.offset = offset
        self.length = length
        self.name = name
        self.size = size


class InvalidOffsetError(FileStorageError):
    """Appending is only allowed at the current end of the file."""

    def __init__(self, offset: int, name: str, size: int) -> None:
        super().__init__(
            f"Invalid offset {offset} for file '{name}' with size {size}"
        )
        self.offset = offset
        self.name = name
        self.size = size


class InvalidLengthError(FileStorageError):
    """A file can only be shortened, never grown, by setting its length."""

    def __init__(self, length: int, name: str, size: int) -> None:
        super().__init__(
            f"Invalid length {length} for file '{name}' with size {size}"
        )
        self.length = length
        self.name = name
        self.size = size


class NotANumberError(FileStorageError):
    """Numeric object metadata could not be parsed."""


class NotEliminatedError(FileStorageError):
    """Not all files could be removed from the storage."""


class BucketCreationFailedError(FileStorageError):
    """The store refused to create the bucket in the configured region."""

    def __init__(self, bucket: str, region: str) -> None:
        super().__init__(
            f"Failed to create bucket '{bucket}' in region '{region}'"
        )
        self.bucket = bucket
        self.region = region


class UploadAbortedError(FileStorageError):
    """The upload was cancelled by the caller."""


def wrap_storage_error(exc: StorageError, key: str | None = None) -> FileStorageError:
    """Translate a store level failure into a ``FileStorageError``."""
    if isinstance(exc, StoreServiceError) and exc.is_not_found:
        error: FileStorageError = StoredFileNotFoundError(
            f"File not found: {key}" if key else str(exc), key=key
        )
    elif key:
        error = FileStorageError(f"Storage operation on '{key}' failed: {exc}", key=key)
    else:
        error = FileStorageError(f"Storage operation failed: {exc}")
    error.__cause__ = exc
    return error

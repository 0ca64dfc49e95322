"""Storage client protocol and data types.

This module defines the abstract interface for the object store operations
the file storage engine consumes: whole and ranged object reads, single PUT,
multipart upload with server-side part copy, bulk delete, listing and
bucket management.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Iterator, Protocol, Sequence

from urllib3.exceptions import EmptyPoolError


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""


class StoreClientError(StorageError):
    """Transport level failure talking to the object store."""

    def is_connection_pool_timeout(self) -> bool:
        """Whether the failure was caused by an exhausted connection pool.

        Only blocking urllib3 pools raise ``EmptyPoolError``; botocore's default
        pools grow instead.
        """
        return any(isinstance(cause, EmptyPoolError) for cause in _iter_causes(self))


class StoreServiceError(StorageError):
    """The object store received the request and rejected it."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 or self.error_code in {
            "NoSuchKey",
            "NoSuchBucket",
            "NotFound",
            "404",
        }

    @property
    def is_range_not_satisfiable(self) -> bool:
        return self.status_code == 416 or self.error_code == "InvalidRange"


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk the exception chain, including errors wrapped by botocore."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        # botocore's HTTPClientError keeps the urllib3 error in kwargs["error"]
        wrapped = getattr(current, "kwargs", None)
        if isinstance(wrapped, dict) and isinstance(
            wrapped.get("error"), BaseException
        ):
            yield from _iter_causes(wrapped["error"])
        current = current.__cause__ or current.__context__


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    etag: str | None
    content_type: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ObjectContent:
    """Body and headers of a GET object response.

    ``body`` must be closed by the receiver. ``abort()`` drops the underlying
    connection instead of returning it to the pool and is used when the body
    was not read to the end.
    """

    body: "ObjectBody"
    content_length: int
    etag: str | None = None
    content_type: str | None = None


class ObjectBody(Protocol):
    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...

    def abort(self) -> None: ...


@dataclass(frozen=True, slots=True)
class ObjectListing:
    """One page of a ListObjects response."""

    keys: list[str]
    is_truncated: bool
    next_marker: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteError:
    """A key the store refused to delete within a bulk delete."""

    key: str
    code: str | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteObjectsResult:
    """Outcome of a bulk delete; ``errors`` lists per-key failures."""

    deleted: list[str] = field(default_factory=list)
    errors: list[DeleteError] = field(default_factory=list)


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations translate transport failures into ``StoreClientError``
    and rejected requests into ``StoreServiceError``.
    """

    @property
    def region_name(self) -> str:
        """Region the client is bound to."""
        ...

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: BinaryIO,
        content_length: int,
        content_md5: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> str | None:
        """Store a whole object and return its ETag."""
        ...

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        byte_range: tuple[int, int] | None = None,
    ) -> ObjectContent:
        """Read an object, optionally only the inclusive ``byte_range``.

        Raises:
            StoreServiceError: With status 404 if the object is missing and
                416 if the range cannot be satisfied.
        """
        ...

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content."""
        ...

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object; deleting a missing object succeeds."""
        ...

    def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> DeleteObjectsResult:
        """Delete up to 1000 objects in one request.

        Per-key failures are reported in the result; only a failure of the
        request as a whole raises.
        """
        ...

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        marker: str | None = None,
    ) -> ObjectListing:
        """List one page of object keys under ``prefix``."""
        ...

    def bucket_exists(self, *, bucket: str) -> bool:
        """Whether the bucket exists (it may be owned by someone else)."""
        ...

    def create_bucket(self, *, bucket: str, region: str) -> None:
        """Create a bucket in ``region``."""
        ...

    def put_bucket_policy(self, *, bucket: str, policy: str) -> None:
        """Install a JSON bucket policy."""
        ...

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        ...

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: BinaryIO,
        content_length: int,
        content_md5: str | None = None,
        is_last_part: bool = False,
    ) -> CompletedPart:
        """Upload one part (1-based ``part_number``) of a multipart upload.

        ``is_last_part`` marks the final part, which clients encrypting on
        the client side need to finish the cipher.
        """
        ...

    def upload_part_copy(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        source_key: str,
        first_byte: int | None = None,
        last_byte: int | None = None,
    ) -> CompletedPart | None:
        """Copy an existing object, or an inclusive byte range of it, as a part.

        Returns ``None`` if the store declined the copy because its
        constraints were not met.
        """
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        ...

    def copy_object(
        self,
        *,
        bucket: str,
        source_key: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> str | None:
        """Server-side copy replacing the destination's metadata."""
        ...

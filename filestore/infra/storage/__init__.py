"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for S3, MinIO, and other S3-compatible services, plus the
building blocks the file storage engine assembles on top of it.
"""

from .chunked_upload import ChunkedUpload, UploadChunk
from .client import (
    CompletedPart,
    DeleteError,
    DeleteObjectsResult,
    MultipartUpload,
    ObjectContent,
    ObjectHead,
    ObjectListing,
    StorageClient,
    StorageError,
    StoreClientError,
    StoreServiceError,
)
from .keys import DELIMITER, KeyNamespace, validate_bucket_name
from .retry import RetryingOperationExecutor, StoreOperation
from .streams import ConcatenatedStream, ObjectContentStream

__all__ = [
    "ChunkedUpload",
    "CompletedPart",
    "ConcatenatedStream",
    "DELIMITER",
    "DeleteError",
    "DeleteObjectsResult",
    "KeyNamespace",
    "MultipartUpload",
    "ObjectContent",
    "ObjectContentStream",
    "ObjectHead",
    "ObjectListing",
    "RetryingOperationExecutor",
    "StorageClient",
    "StorageError",
    "StoreClientError",
    "StoreOperation",
    "StoreServiceError",
    "UploadChunk",
    "validate_bucket_name",
]

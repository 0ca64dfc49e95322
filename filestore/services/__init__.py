from .bucket_service import BucketService, sse_only_bucket_policy
from .errors import (
    BucketCreationFailedError,
    FileStorageError,
    FileStorageIOError,
    InvalidLengthError,
    InvalidOffsetError,
    InvalidRangeError,
    NotANumberError,
    NotEliminatedError,
    ServiceError,
    StoredFileNotFoundError,
    UploadAbortedError,
    wrap_storage_error,
)
from .file_storage_service import (
    MAX_NUMBER_OF_KEYS_TO_DELETE,
    MINIMUM_MULTIPART_SIZE,
    FileStorageService,
    UpdateStrategy,
    get_content_length,
    select_update_strategy,
)

__all__ = [
    "FileStorageService",
    "UpdateStrategy",
    "select_update_strategy",
    "get_content_length",
    "MINIMUM_MULTIPART_SIZE",
    "MAX_NUMBER_OF_KEYS_TO_DELETE",
    "BucketService",
    "sse_only_bucket_policy",
    "ServiceError",
    "FileStorageError",
    "FileStorageIOError",
    "StoredFileNotFoundError",
    "InvalidRangeError",
    "InvalidOffsetError",
    "InvalidLengthError",
    "NotANumberError",
    "NotEliminatedError",
    "BucketCreationFailedError",
    "UploadAbortedError",
    "wrap_storage_error",
]

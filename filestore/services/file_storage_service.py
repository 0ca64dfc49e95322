"""File storage on top of an S3-compatible object store.

This module provides file semantics (create, ranged read, append, truncate,
bulk delete, listing) over whole-object PUT/GET and multipart uploads. Every
store call goes through ``RetryingOperationExecutor``; every object key goes
through ``KeyNamespace``.

A file is never modified in place: appending or truncating writes a new
temporary object and copies it over the original key once it is complete.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import stat
import tempfile
import threading
import time
from contextlib import ExitStack, contextmanager
from enum import Enum
from typing import BinaryIO, Callable, Iterable, Iterator, Sequence, TypeVar

from filestore.common.config import FileStorageConfig
from filestore.infra.storage.chunked_upload import ChunkedUpload, UploadChunk
from filestore.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    ObjectContent,
    ObjectHead,
    StorageClient,
    StorageError,
    StoreServiceError,
)
from filestore.infra.storage.keys import DELIMITER, KeyNamespace
from filestore.infra.storage.retry import RetryingOperationExecutor, StoreOperation
from filestore.infra.storage.streams import ConcatenatedStream, ObjectContentStream
from filestore.services.errors import (
    FileStorageError,
    FileStorageIOError,
    InvalidLengthError,
    InvalidOffsetError,
    InvalidRangeError,
    NotANumberError,
    NotEliminatedError,
    UploadAbortedError,
    wrap_storage_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 rejects multipart parts below 5 MiB (except the last one)
MINIMUM_MULTIPART_SIZE = 5 * 1024 * 1024
# Upper bound of keys per DeleteObjects request
MAX_NUMBER_OF_KEYS_TO_DELETE = 1000
REMOVE_RETRY_COUNT = 10
SSE_ALGORITHM = "AES256"
UNENCRYPTED_CONTENT_LENGTH = "x-amz-unencrypted-content-length"

_COPY_BUFFER_SIZE = 64 * 1024


class UpdateStrategy(str, Enum):
    """How an existing object is rewritten by append and truncate."""

    COPY_PART = "copy_part"
    SPOOLING = "spooling"


def select_update_strategy(
    copy_part_enabled: bool,
    current_size: int,
    threshold: int = MINIMUM_MULTIPART_SIZE,
) -> UpdateStrategy:
    """Copy-part needs the feature switched on and a source of at least one part."""
    if copy_part_enabled and current_size >= threshold:
        return UpdateStrategy.COPY_PART
    return UpdateStrategy.SPOOLING


def get_content_length(head: ObjectHead) -> int:
    """The unencrypted content length if recorded, the stored length otherwise."""
    value = head.metadata.get(UNENCRYPTED_CONTENT_LENGTH)
    if value:
        try:
            return int(value)
        except ValueError as exc:
            raise NotANumberError(
                f"Invalid {UNENCRYPTED_CONTENT_LENGTH} metadata: {value!r}"
            ) from exc
    return head.size_bytes


def _is_file_backed(stream: BinaryIO) -> bool:
    try:
        return stat.S_ISREG(os.fstat(stream.fileno()).st_mode)
    except (AttributeError, OSError, ValueError):
        return False


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise UploadAbortedError("Upload to S3 aborted")


class FileStorageService:
    """File storage backed by one prefix of an S3 bucket.

    Calls block the calling thread. There is no locking per file name:
    concurrent writers of the same file must be serialized by the caller.
    """

    def __init__(
        self,
        client: StorageClient,
        config: FileStorageConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._config = config
        self._sleep = sleep
        self._keys = KeyNamespace(config.bucket, config.prefix)
        self._bucket = config.bucket
        self._max_attempts = max(config.connection_pool_timeout_retries, 0) + 1
        logger.debug(
            'S3 file storage initialized for "%s/%s"', self._bucket, self._keys.key_prefix
        )

    @property
    def uri(self) -> str:
        return f"s3://{self._bucket}/{self._keys.prefix}"

    @property
    def is_spooling(self) -> bool:
        return True

    @property
    def config(self) -> FileStorageConfig:
        return self._config

    @property
    def _sse(self) -> str | None:
        return SSE_ALGORITHM if self._config.server_side_encryption else None

    def _with_retry(self, operation: StoreOperation[T]) -> T:
        return RetryingOperationExecutor(
            operation, self._max_attempts, sleep=self._sleep
        ).execute(self._client)

    def _with_void_retry(self, operation: StoreOperation[object]) -> None:
        RetryingOperationExecutor(
            operation, self._max_attempts, sleep=self._sleep
        ).execute_void(self._client)

    # ------------------------------------------------------------------
    # Create

    def save_new_file(
        self, stream: BinaryIO, *, cancel: threading.Event | None = None
    ) -> str:
        """Store the stream as a new file and return its generated name.

        The stream is consumed and closed. Uploads of more than one chunk
        check ``cancel`` between parts.
        """
        key = self._keys.generate_key()
        self._upload(key, stream, cancel=cancel)
        return self._keys.from_key(key)

    def _upload(
        self,
        key: str,
        stream: BinaryIO,
        *,
        cancel: threading.Event | None = None,
        content_type: str | None = None,
    ) -> None:
        try:
            with ExitStack() as stack:
                stack.callback(stream.close)
                source = stack.enter_context(self._spooled(stream))
                chunks = stack.enter_context(self._chunked(source))
                first = stack.enter_context(next(chunks))
                if not chunks.has_next():
                    # fits into one chunk, including the empty file
                    self._upload_single(key, first, content_type)
                else:
                    self._upload_multipart(key, chunks, first, cancel, content_type)
        except OSError as exc:
            raise FileStorageIOError(str(exc), key=key) from exc
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc

    @contextmanager
    def _spooled(self, stream: BinaryIO) -> Iterator[BinaryIO]:
        """Yield a file-backed stream with the content of ``stream``."""
        if _is_file_backed(stream):
            yield stream
            return
        with tempfile.TemporaryFile(dir=self._config.temp_dir) as spool:
            shutil.copyfileobj(stream, spool, _COPY_BUFFER_SIZE)
            spool.seek(0)
            yield spool

    def _chunked(self, stream: BinaryIO) -> ChunkedUpload:
        return ChunkedUpload(
            stream,
            self._config.chunk_size,
            client_encryption=self._config.client_side_encryption,
            temp_dir=self._config.temp_dir,
        )

    def _upload_single(
        self, key: str, chunk: UploadChunk, content_type: str | None = None
    ) -> None:
        self._with_void_retry(
            lambda c: c.put_object(
                bucket=self._bucket,
                object_key=key,
                body=chunk.rewind(),
                content_length=chunk.size,
                content_md5=chunk.md5_digest,
                content_type=content_type,
                server_side_encryption=self._sse,
            )
        )

    def _upload_multipart(
        self,
        key: str,
        chunks: ChunkedUpload,
        chunk: UploadChunk,
        cancel: threading.Event | None,
        content_type: str | None,
    ) -> None:
        upload = self._initiate(key, content_type)
        completed = False
        try:
            parts: list[CompletedPart] = []
            part_number = 1
            while True:
                last = not chunks.has_next()
                with chunk:
                    parts.append(self._upload_part(upload, part_number, chunk, last))
                if last:
                    break
                _check_cancelled(cancel)
                part_number += 1
                chunk = next(chunks)
            self._complete(upload, parts)
            completed = True
        finally:
            if not completed:
                self._abort_quietly(upload)

    def _initiate(self, key: str, content_type: str | None = None) -> MultipartUpload:
        return self._with_retry(
            lambda c: c.init_multipart_upload(
                bucket=self._bucket,
                object_key=key,
                content_type=content_type,
                server_side_encryption=self._sse,
            )
        )

    def _upload_part(
        self,
        upload: MultipartUpload,
        part_number: int,
        chunk: UploadChunk,
        last: bool,
    ) -> CompletedPart:
        return self._with_retry(
            lambda c: c.upload_part(
                bucket=self._bucket,
                object_key=upload.object_key,
                upload_id=upload.upload_id,
                part_number=part_number,
                body=chunk.rewind(),
                content_length=chunk.size,
                content_md5=chunk.md5_digest,
                is_last_part=last,
            )
        )

    def _complete(self, upload: MultipartUpload, parts: Sequence[CompletedPart]) -> None:
        self._with_void_retry(
            lambda c: c.complete_multipart_upload(
                bucket=self._bucket,
                object_key=upload.object_key,
                upload_id=upload.upload_id,
                parts=parts,
            )
        )

    def _abort_quietly(self, upload: MultipartUpload) -> None:
        try:
            self._with_void_retry(
                lambda c: c.abort_multipart_upload(
                    bucket=self._bucket,
                    object_key=upload.object_key,
                    upload_id=upload.upload_id,
                )
            )
        except StorageError:
            logger.warning(
                "Error aborting multipart upload %s of %s",
                upload.upload_id,
                upload.object_key,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Read

    def get_file(
        self, name: str, offset: int | None = None, length: int = -1
    ) -> BinaryIO:
        """Open a file, or ``length`` bytes of it starting at ``offset``.

        A negative ``length`` reads up to the end of the file. The caller
        must close the returned stream; closing it early aborts the read.
        """
        if offset is None:
            key = self._keys.to_key(name)
            return self._open(key, self._get_object(key))
        return self._get_range(name, offset, length)

    def _get_range(self, name: str, offset: int, length: int) -> BinaryIO:
        size = self.get_file_size(name)
        if offset < 0 or offset >= size or (length >= 0 and length > size - offset):
            raise InvalidRangeError(offset, length, name, size)
        if length == 0:
            return io.BytesIO(b"")

        key = self._keys.to_key(name)
        last_byte = (offset + length if length > 0 else size) - 1
        try:
            content = self._with_retry(
                lambda c: c.get_object(
                    bucket=self._bucket,
                    object_key=key,
                    byte_range=(offset, last_byte),
                )
            )
        except StoreServiceError as exc:
            if exc.is_range_not_satisfiable:
                raise InvalidRangeError(offset, length, name, size) from exc
            raise wrap_storage_error(exc, key) from exc
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        return self._open(key, content, offset)

    def _open(
        self, key: str, content: ObjectContent, first_byte: int = 0
    ) -> ObjectContentStream:
        return ObjectContentStream(
            content,
            object_key=key,
            first_byte=first_byte,
            reopen=lambda first, last: self._get_object(key, (first, last)),
        )

    def _get_object(
        self, key: str, byte_range: tuple[int, int] | None = None
    ) -> ObjectContent:
        try:
            return self._with_retry(
                lambda c: c.get_object(
                    bucket=self._bucket, object_key=key, byte_range=byte_range
                )
            )
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc

    def _get_metadata(self, key: str) -> ObjectHead:
        try:
            return self._with_retry(
                lambda c: c.head_object(bucket=self._bucket, object_key=key)
            )
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc

    def get_file_list(self) -> list[str]:
        """Names of all stored files in lexicographic order."""
        names: set[str] = set()
        marker: str | None = None
        try:
            while True:
                listing = self._with_retry(
                    lambda c: c.list_objects(
                        bucket=self._bucket,
                        prefix=self._keys.key_prefix,
                        delimiter=DELIMITER,
                        marker=marker,
                    )
                )
                names.update(self._keys.from_keys(listing.keys))
                if not listing.is_truncated:
                    break
                marker = listing.next_marker
        except StorageError as exc:
            raise wrap_storage_error(exc) from exc
        return sorted(names)

    def get_file_size(self, name: str) -> int:
        return get_content_length(self._get_metadata(self._keys.to_key(name)))

    def get_mime_type(self, name: str) -> str | None:
        return self._get_metadata(self._keys.to_key(name)).content_type

    # ------------------------------------------------------------------
    # Delete

    def delete_file(self, name: str) -> bool:
        key = self._keys.to_key(name)
        try:
            self._with_void_retry(
                lambda c: c.delete_object(bucket=self._bucket, object_key=key)
            )
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        return True

    def delete_files(self, names: Iterable[str]) -> set[str]:
        """Delete files in bulk and return the names that were not deleted."""
        names = list(names)
        not_deleted: set[str] = set()
        for start in range(0, len(names), MAX_NUMBER_OF_KEYS_TO_DELETE):
            keys = self._keys.to_keys(names[start : start + MAX_NUMBER_OF_KEYS_TO_DELETE])
            try:
                result = self._with_retry(
                    lambda c: c.delete_objects(bucket=self._bucket, object_keys=keys)
                )
            except StorageError as exc:
                raise wrap_storage_error(exc) from exc
            for error in result.errors:
                logger.debug(
                    "Failed to delete %s: %s %s", error.key, error.code, error.message
                )
                not_deleted.add(self._keys.from_key(error.key))
        return not_deleted

    def remove(self) -> None:
        """Delete every file of this storage."""
        try:
            for attempt in range(1, REMOVE_RETRY_COUNT + 1):
                names = self.get_file_list()
                if not names:
                    return
                not_deleted = self.delete_files(names)
                if not_deleted:
                    logger.warning(
                        "Not all files in bucket deleted yet (%s left after attempt %s), "
                        "trying again.",
                        len(not_deleted),
                        attempt,
                    )
            remaining = self.get_file_list()
        except FileStorageError as exc:
            raise NotEliminatedError(
                f"Failed to remove files of {self.uri}: {exc}", key=exc.key
            ) from exc
        if remaining:
            raise NotEliminatedError(
                f"Not all files in bucket deleted after {REMOVE_RETRY_COUNT} tries, "
                f"giving up ({len(remaining)} left)."
            )

    def recreate_state_file(self) -> None:
        """Nothing to recreate; the object store keeps no separate state."""

    def state_file_is_correct(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Modify

    def append_to_file(
        self,
        stream: BinaryIO,
        name: str,
        offset: int,
        *,
        cancel: threading.Event | None = None,
    ) -> int:
        """Append the stream to a file and return the new file size.

        ``offset`` must equal the current size of the file. The stream is
        consumed and closed.
        """
        key = self._keys.to_key(name)
        try:
            with ExitStack() as stack:
                stack.callback(stream.close)
                size = get_content_length(self._get_metadata(key))
                if size != offset:
                    raise InvalidOffsetError(offset, name, size)
                data = stack.enter_context(self._spooled(stream))
                strategy = select_update_strategy(self._config.upload_part_copy, size)
                logger.debug("Appending to %s using %s", key, strategy.value)
                if strategy is UpdateStrategy.COPY_PART:
                    return self._append_with_copy_part(data, key, cancel)
                return self._append_with_spooling(data, key, cancel)
        except OSError as exc:
            raise FileStorageIOError(str(exc), key=key) from exc

    def _append_with_copy_part(
        self, data: BinaryIO, key: str, cancel: threading.Event | None
    ) -> int:
        temp_key = self._keys.generate_key()
        try:
            upload = self._initiate(temp_key)
        except StorageError as exc:
            raise wrap_storage_error(exc, temp_key) from exc

        completed = False
        try:
            first = self._with_retry(
                lambda c: c.upload_part_copy(
                    bucket=self._bucket,
                    object_key=temp_key,
                    upload_id=upload.upload_id,
                    part_number=1,
                    source_key=key,
                )
            )
            if first is None:
                logger.info("Copy part declined for %s, falling back to spooling", key)
                return self._append_with_spooling(data, key, cancel)

            parts = [first]
            part_number = 2
            with self._chunked(data) as chunks:
                for chunk in chunks:
                    with chunk:
                        last = not chunks.has_next()
                        if chunk.size == 0:
                            break
                        parts.append(self._upload_part(upload, part_number, chunk, last))
                    if not last:
                        _check_cancelled(cancel)
                    part_number += 1
            self._complete(upload, parts)
            completed = True
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        finally:
            if not completed:
                self._abort_quietly(upload)

        return self._replace_with(temp_key, key)

    def _append_with_spooling(
        self, data: BinaryIO, key: str, cancel: threading.Event | None
    ) -> int:
        head = self._get_metadata(key)
        existing = self._open(key, self._get_object(key))
        temp_key = self._keys.generate_key()
        self._upload(
            temp_key,
            ConcatenatedStream([existing, data]),
            cancel=cancel,
            content_type=head.content_type,
        )
        return self._replace_with(temp_key, key)

    def _replace_with(self, temp_key: str, key: str) -> int:
        """Copy a completed temporary object over ``key`` and drop it."""
        try:
            head = self._with_retry(
                lambda c: c.head_object(bucket=self._bucket, object_key=temp_key)
            )
            self._with_void_retry(
                lambda c: c.copy_object(
                    bucket=self._bucket,
                    source_key=temp_key,
                    object_key=key,
                    content_type=head.content_type,
                    metadata=head.metadata,
                    server_side_encryption=self._sse,
                )
            )
            return get_content_length(self._get_metadata(key))
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        finally:
            self._delete_quietly(temp_key)

    def _delete_quietly(self, key: str) -> None:
        try:
            self._with_void_retry(
                lambda c: c.delete_object(bucket=self._bucket, object_key=key)
            )
        except StorageError:
            logger.warning("Error cleaning up temporary file %s", key, exc_info=True)

    def set_file_length(self, length: int, name: str) -> None:
        """Shorten a file to ``length`` bytes."""
        key = self._keys.to_key(name)
        size = get_content_length(self._get_metadata(key))
        if length == size:
            return
        if length < 0 or length > size:
            raise InvalidLengthError(length, name, size)
        if length == 0:
            head = self._get_metadata(key)
            self._upload(key, io.BytesIO(b""), content_type=head.content_type)
            return

        strategy = select_update_strategy(self._config.upload_part_copy, size)
        logger.debug("Truncating %s to %s bytes using %s", key, length, strategy.value)
        if strategy is UpdateStrategy.COPY_PART and self._set_length_with_copy_part(
            length, key
        ):
            return
        self._set_length_with_spooling(length, key)

    def _set_length_with_copy_part(self, length: int, key: str) -> bool:
        """Returns ``False`` if the store declined to copy a part."""
        temp_key = self._keys.generate_key()
        try:
            upload = self._initiate(temp_key)
        except StorageError as exc:
            raise wrap_storage_error(exc, temp_key) from exc

        completed = False
        try:
            parts: list[CompletedPart] = []
            position = 0
            part_number = 1
            while position < length:
                last_byte = min(position + MINIMUM_MULTIPART_SIZE - 1, length - 1)
                part = self._with_retry(
                    lambda c: c.upload_part_copy(
                        bucket=self._bucket,
                        object_key=temp_key,
                        upload_id=upload.upload_id,
                        part_number=part_number,
                        source_key=key,
                        first_byte=position,
                        last_byte=last_byte,
                    )
                )
                if part is None:
                    logger.info(
                        "Copy part declined for %s, falling back to spooling", key
                    )
                    return False
                parts.append(part)
                position += MINIMUM_MULTIPART_SIZE
                part_number += 1
            self._complete(upload, parts)
            completed = True
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        finally:
            if not completed:
                self._abort_quietly(upload)

        self._replace_with(temp_key, key)
        return True

    def _set_length_with_spooling(self, length: int, key: str) -> None:
        temp_key = self._keys.generate_key()
        try:
            head = self._get_metadata(key)
            self._with_void_retry(
                lambda c: c.copy_object(
                    bucket=self._bucket,
                    source_key=key,
                    object_key=temp_key,
                    content_type=head.content_type,
                    metadata=head.metadata,
                    server_side_encryption=self._sse,
                )
            )
            content = self._get_object(temp_key, (0, length - 1))
            self._upload(
                key, self._open(temp_key, content), content_type=head.content_type
            )
        except StorageError as exc:
            raise wrap_storage_error(exc, key) from exc
        finally:
            self._delete_quietly(temp_key)

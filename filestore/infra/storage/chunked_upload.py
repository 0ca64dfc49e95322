"""Splits an input stream into bounded, digest-carrying upload chunks."""

from __future__ import annotations

import base64
import hashlib
import tempfile
from typing import BinaryIO

# AES block size; encrypted parts other than the last must be a multiple of it
CIPHER_BLOCK_SIZE = 16
# Chunks stay in memory up to this size and roll over to a temp file beyond it
MEMORY_THRESHOLD = 1024 * 1024
_READ_SIZE = 64 * 1024


class UploadChunk:
    """A slice of the input, ready to be sent as one PUT or one part.

    The chunk owns its buffer; close it once the upload call returned,
    whatever the outcome.
    """

    def __init__(self, data: BinaryIO, size: int, md5_digest: str) -> None:
        self._data = data
        self._size = size
        self._md5_digest = md5_digest

    @property
    def size(self) -> int:
        return self._size

    @property
    def md5_digest(self) -> str:
        """Base64 encoded MD5 of the chunk, as expected by ``Content-MD5``."""
        return self._md5_digest

    def rewind(self) -> BinaryIO:
        """The chunk data positioned at its first byte."""
        self._data.seek(0)
        return self._data

    def close(self) -> None:
        self._data.close()

    def __enter__(self) -> "UploadChunk":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChunkedUpload:
    """Lazy, forward-only sequence of ``UploadChunk`` read from a stream.

    The first chunk always exists, so an empty stream yields a single empty
    chunk. Every chunk but the last holds exactly ``chunk_size`` bytes.
    ``has_next()`` never reads from the stream; a one byte look-ahead taken
    after each full chunk tells whether another one follows.
    """

    def __init__(
        self,
        stream: BinaryIO,
        chunk_size: int,
        *,
        client_encryption: bool = False,
        temp_dir: str | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if client_encryption:
            chunk_size = max(
                CIPHER_BLOCK_SIZE, chunk_size - chunk_size % CIPHER_BLOCK_SIZE
            )
        self._stream = stream
        self._chunk_size = chunk_size
        self._temp_dir = temp_dir
        self._lookahead = b""
        self._started = False

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def has_next(self) -> bool:
        return not self._started or bool(self._lookahead)

    def __iter__(self) -> "ChunkedUpload":
        return self

    def __next__(self) -> UploadChunk:
        if not self.has_next():
            raise StopIteration
        self._started = True

        buffer = tempfile.SpooledTemporaryFile(
            max_size=MEMORY_THRESHOLD, dir=self._temp_dir
        )
        try:
            digest = hashlib.md5(usedforsecurity=False)
            size = 0
            pending, self._lookahead = self._lookahead, b""
            if pending:
                buffer.write(pending)
                digest.update(pending)
                size += len(pending)
            while size < self._chunk_size:
                data = self._stream.read(min(_READ_SIZE, self._chunk_size - size))
                if not data:
                    break
                buffer.write(data)
                digest.update(data)
                size += len(data)
            if size == self._chunk_size:
                self._lookahead = self._stream.read(1) or b""
            buffer.seek(0)
        except BaseException:
            buffer.close()
            raise

        return UploadChunk(
            buffer, size, base64.b64encode(digest.digest()).decode("ascii")
        )

    next = __next__

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> "ChunkedUpload":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

"""Readable streams over object content."""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, Callable, Sequence

from filestore.infra.storage.client import ObjectContent, StoreClientError

logger = logging.getLogger(__name__)

MAX_RESUMES = 3


class ObjectContentStream(io.RawIOBase):
    """Reads an object body and releases the connection properly on close.

    Closing before the end of the content aborts the HTTP read instead of
    draining it. When a read fails with a transport error the stream asks
    ``reopen`` for the remaining ``[position, last_byte]`` range and carries
    on, up to ``max_resumes`` times.
    """

    def __init__(
        self,
        content: ObjectContent,
        *,
        object_key: str,
        first_byte: int = 0,
        reopen: Callable[[int, int], ObjectContent] | None = None,
        max_resumes: int = MAX_RESUMES,
    ) -> None:
        super().__init__()
        self._body = content.body
        self._object_key = object_key
        self._position = first_byte
        self._remaining = content.content_length
        self._last_byte = first_byte + content.content_length - 1
        self._reopen = reopen
        self._max_resumes = max_resumes
        self._resumes = 0

    @property
    def object_key(self) -> str:
        return self._object_key

    @property
    def consumed(self) -> bool:
        return self._remaining <= 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._remaining <= 0:
            return 0
        wanted = min(len(buffer), self._remaining)
        while True:
            try:
                data = self._body.read(wanted)
            except StoreClientError as exc:
                if not self._resume(exc):
                    raise
                continue
            if data:
                break
            premature = StoreClientError(
                f"Premature end of content for {self._object_key}: "
                f"{self._remaining} bytes missing"
            )
            if not self._resume(premature):
                raise premature

        count = len(data)
        buffer[:count] = data
        self._position += count
        self._remaining -= count
        return count

    def _resume(self, exc: StoreClientError) -> bool:
        if self._reopen is None or self._resumes >= self._max_resumes:
            return False
        self._resumes += 1
        logger.info(
            "Resuming read of %s at byte %s (attempt %s): %s",
            self._object_key,
            self._position,
            self._resumes,
            exc,
        )
        self._body.abort()
        self._body = self._reopen(self._position, self._last_byte).body
        return True

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._remaining > 0:
                self._body.abort()
            else:
                self._body.close()
        finally:
            super().close()


class ConcatenatedStream(io.RawIOBase):
    """Reads the given streams one after the other, closing all on close."""

    def __init__(self, streams: Sequence[BinaryIO]) -> None:
        super().__init__()
        self._streams = list(streams)
        self._index = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while self._index < len(self._streams):
            data = self._streams[self._index].read(len(buffer))
            if data:
                count = len(data)
                buffer[:count] = data
                return count
            self._index += 1
        return 0

    def close(self) -> None:
        if self.closed:
            return
        try:
            for stream in self._streams:
                stream.close()
        finally:
            super().close()

"""Mapping between file names and namespaced object keys."""

from __future__ import annotations

import ipaddress
import re
import uuid
from typing import Iterable

DELIMITER = "/"

_BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")


def validate_bucket_name(bucket: str) -> None:
    """Raise ``ValueError`` unless ``bucket`` is a valid S3 bucket name."""
    if not bucket or not _BUCKET_NAME_PATTERN.match(bucket):
        raise ValueError(
            f"Invalid bucket name '{bucket}': use 3-63 lowercase letters, digits, "
            "dots or hyphens, starting and ending with a letter or digit"
        )
    if ".." in bucket or ".-" in bucket or "-." in bucket:
        raise ValueError(
            f"Invalid bucket name '{bucket}': adjacent dots and hyphens are not allowed"
        )
    try:
        ipaddress.IPv4Address(bucket)
    except ValueError:
        return
    raise ValueError(f"Invalid bucket name '{bucket}': must not be an IP address")


class KeyNamespace:
    """Prepends ``prefix/`` to names and strips it from listed keys.

    Every file of a storage lives under exactly one prefix, so listing the
    prefix with the delimiter yields exactly the stored files.
    """

    def __init__(self, bucket: str, prefix: str) -> None:
        validate_bucket_name(bucket)
        if not prefix or DELIMITER in prefix:
            raise ValueError(
                f"Invalid key prefix '{prefix}': must be non-empty and must not "
                f"contain '{DELIMITER}'"
            )
        self._bucket = bucket
        self._prefix = prefix
        self._key_prefix = prefix + DELIMITER

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def key_prefix(self) -> str:
        """The listing prefix, ``prefix/``."""
        return self._key_prefix

    def to_key(self, name: str) -> str:
        return self._key_prefix + name

    def from_key(self, key: str) -> str:
        if not key.startswith(self._key_prefix):
            raise ValueError(f"Key '{key}' is outside of prefix '{self._key_prefix}'")
        return key[len(self._key_prefix) :]

    def to_keys(self, names: Iterable[str]) -> list[str]:
        key_prefix = self._key_prefix
        return [key_prefix + name for name in names]

    def from_keys(self, keys: Iterable[str]) -> list[str]:
        return [self.from_key(key) for key in keys]

    def generate_key(self) -> str:
        """A fresh key for a new object, e.g. ``prefix/067e61623b6f4ae2a1712470b63dff00``."""
        return self.to_key(uuid.uuid4().hex)

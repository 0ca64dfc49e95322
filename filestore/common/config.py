from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_FILE = Path(".env")

CREDENTIALS_SOURCES: tuple[str, ...] = ("static", "iam")

_BYTE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
}
_BYTES_PATTERN = re.compile(r"^\s*(\d+)\s*([A-Za-z]*)\s*$")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_optional_int(name: str, value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Invalid integer value specified for %s: %r", name, value)
        return None


def parse_bytes(value: str | int) -> int:
    """Parse a byte size such as ``5242880``, ``512KB`` or ``5MB``."""
    if isinstance(value, int):
        return value
    match = _BYTES_PATTERN.match(value)
    if not match or match.group(2).upper() not in _BYTE_UNITS:
        raise ValueError(f"Invalid byte size: {value!r}")
    return int(match.group(1)) * _BYTE_UNITS[match.group(2).upper()]


@dataclass(frozen=True)
class EncryptionConfig:
    """Which encryption applies to stored objects.

    Parsed from values like ``none``, ``sse-s3``, ``rsa`` or ``rsa+sse-s3``.
    """

    server_side: bool = False
    client_side: bool = False

    @classmethod
    def parse(cls, value: str | None) -> "EncryptionConfig":
        server_side = False
        client_side = False
        for token in (value or "none").lower().split("+"):
            token = token.strip()
            if token in ("", "none"):
                continue
            if token == "sse-s3":
                server_side = True
            elif token == "rsa":
                client_side = True
            else:
                raise ValueError(f"Unsupported encryption type: {token}")
        return cls(server_side=server_side, client_side=client_side)


@dataclass(frozen=True)
class FileStorageConfig:
    """Everything the file storage engine needs besides the store client."""

    bucket: str
    prefix: str
    chunk_size: int = 5 * 1024 * 1024
    connection_pool_timeout_retries: int = 0
    server_side_encryption: bool = False
    client_side_encryption: bool = False
    upload_part_copy: bool = False
    temp_dir: str | None = None


@dataclass
class Settings:
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_CREDENTIALS_SOURCE: str = "static"
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    S3_BUCKET: str | None = None
    S3_PREFIX: str = "filestore"
    S3_CHUNK_SIZE: int = 5 * 1024 * 1024
    S3_ENCRYPTION: str = "none"
    S3_UPLOAD_PART_COPY: bool = False
    S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT: int = 0
    S3_MAX_CONNECTION_POOL_SIZE: int | None = None
    S3_CONNECT_TIMEOUT: int | None = None
    S3_READ_TIMEOUT: int | None = None
    S3_MAX_RETRIES: int | None = None
    S3_AUTO_CREATE_BUCKET: bool = True
    FILESTORE_TEMP_DIR: str | None = None
    ENABLE_METRICS: bool = True
    API_KEY_ENABLED: bool = False
    API_KEY: str | None = None
    DESTRUCTIVE_API_KEY: str | None = None
    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        source = (self.S3_CREDENTIALS_SOURCE or "static").strip().lower()
        if source not in CREDENTIALS_SOURCES:
            logger.warning(
                "Invalid value specified for S3_CREDENTIALS_SOURCE: %s. "
                "Assuming 'static' instead. Known values are: %s",
                self.S3_CREDENTIALS_SOURCE,
                ", ".join(CREDENTIALS_SOURCES),
            )
            source = "static"
        self.S3_CREDENTIALS_SOURCE = source
        if self.S3_CHUNK_SIZE <= 0:
            raise ValueError("S3_CHUNK_SIZE must be a positive byte size.")
        # fail fast on unknown encryption types
        EncryptionConfig.parse(self.S3_ENCRYPTION)

    @property
    def encryption(self) -> EncryptionConfig:
        return EncryptionConfig.parse(self.S3_ENCRYPTION)

    def file_storage_config(self) -> FileStorageConfig:
        if not self.S3_BUCKET:
            raise ValueError("S3_BUCKET is required")
        encryption = self.encryption
        return FileStorageConfig(
            bucket=self.S3_BUCKET,
            prefix=self.S3_PREFIX,
            chunk_size=self.S3_CHUNK_SIZE,
            connection_pool_timeout_retries=self.S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT,
            server_side_encryption=encryption.server_side,
            client_side_encryption=encryption.client_side,
            upload_part_copy=self.S3_UPLOAD_PART_COPY,
            temp_dir=self.FILESTORE_TEMP_DIR,
        )

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        env = os.environ
        retries = _as_optional_int(
            "S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT",
            env.get("S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT"),
        )
        return cls(
            S3_ENDPOINT_URL=env.get("S3_ENDPOINT_URL") or None,
            S3_REGION=env.get("S3_REGION", cls.S3_REGION),
            S3_ACCESS_KEY_ID=env.get("S3_ACCESS_KEY_ID"),
            S3_SECRET_ACCESS_KEY=env.get("S3_SECRET_ACCESS_KEY"),
            S3_CREDENTIALS_SOURCE=env.get(
                "S3_CREDENTIALS_SOURCE", cls.S3_CREDENTIALS_SOURCE
            ),
            S3_USE_SSL=_as_bool(env.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=env.get("S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE),
            S3_BUCKET=env.get("S3_BUCKET"),
            S3_PREFIX=env.get("S3_PREFIX", cls.S3_PREFIX),
            S3_CHUNK_SIZE=parse_bytes(env.get("S3_CHUNK_SIZE", "5MB")),
            S3_ENCRYPTION=env.get("S3_ENCRYPTION", cls.S3_ENCRYPTION),
            S3_UPLOAD_PART_COPY=_as_bool(
                env.get("S3_UPLOAD_PART_COPY"), cls.S3_UPLOAD_PART_COPY
            ),
            S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT=retries or 0,
            S3_MAX_CONNECTION_POOL_SIZE=_as_optional_int(
                "S3_MAX_CONNECTION_POOL_SIZE", env.get("S3_MAX_CONNECTION_POOL_SIZE")
            ),
            S3_CONNECT_TIMEOUT=_as_optional_int(
                "S3_CONNECT_TIMEOUT", env.get("S3_CONNECT_TIMEOUT")
            ),
            S3_READ_TIMEOUT=_as_optional_int(
                "S3_READ_TIMEOUT", env.get("S3_READ_TIMEOUT")
            ),
            S3_MAX_RETRIES=_as_optional_int("S3_MAX_RETRIES", env.get("S3_MAX_RETRIES")),
            S3_AUTO_CREATE_BUCKET=_as_bool(
                env.get("S3_AUTO_CREATE_BUCKET"), cls.S3_AUTO_CREATE_BUCKET
            ),
            FILESTORE_TEMP_DIR=env.get("FILESTORE_TEMP_DIR") or None,
            ENABLE_METRICS=_as_bool(env.get("ENABLE_METRICS"), cls.ENABLE_METRICS),
            API_KEY_ENABLED=_as_bool(env.get("API_KEY_ENABLED"), cls.API_KEY_ENABLED),
            API_KEY=env.get("API_KEY"),
            DESTRUCTIVE_API_KEY=env.get("DESTRUCTIVE_API_KEY"),
            CORS_ENABLED=_as_bool(env.get("CORS_ENABLED"), cls.CORS_ENABLED),
            CORS_ORIGINS=_as_list(env.get("CORS_ORIGINS")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()

"""Tests for environment driven settings."""

from __future__ import annotations

import pytest

from filestore.common import config
from filestore.common.config import EncryptionConfig, Settings, parse_bytes

_ENV_NAMES = (
    "S3_BUCKET",
    "S3_PREFIX",
    "S3_CHUNK_SIZE",
    "S3_ENCRYPTION",
    "S3_CREDENTIALS_SOURCE",
    "S3_UPLOAD_PART_COPY",
    "S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT",
    "S3_MAX_CONNECTION_POOL_SIZE",
    "FILESTORE_TEMP_DIR",
)


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "ENV_FILE", tmp_path / ".env")
    return monkeypatch


@pytest.mark.parametrize(
    "value, expected",
    [
        ("5242880", 5 * 1024 * 1024),
        ("512KB", 512 * 1024),
        ("5MB", 5 * 1024 * 1024),
        ("1g", 1024**3),
        (" 64 K ", 64 * 1024),
        (4096, 4096),
    ],
)
def test_parse_bytes(value, expected):
    assert parse_bytes(value) == expected


@pytest.mark.parametrize("value", ["", "MB", "5TB", "-1", "1.5MB"])
def test_parse_bytes_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_bytes(value)


class TestEncryptionConfig:
    def test_none(self):
        assert EncryptionConfig.parse(None) == EncryptionConfig()
        assert EncryptionConfig.parse("none") == EncryptionConfig()

    def test_combined(self):
        parsed = EncryptionConfig.parse("rsa+sse-s3")
        assert parsed.server_side and parsed.client_side

    def test_server_side_only(self):
        parsed = EncryptionConfig.parse("SSE-S3")
        assert parsed.server_side and not parsed.client_side

    def test_unknown(self):
        with pytest.raises(ValueError):
            EncryptionConfig.parse("kms")


class TestFromEnvironment:
    def test_defaults(self, clean_env):
        settings = Settings.from_environment()

        assert settings.S3_BUCKET is None
        assert settings.S3_PREFIX == "filestore"
        assert settings.S3_CHUNK_SIZE == 5 * 1024 * 1024
        assert settings.S3_CREDENTIALS_SOURCE == "static"
        assert settings.S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT == 0

    def test_reads_environment(self, clean_env):
        clean_env.setenv("S3_BUCKET", "files")
        clean_env.setenv("S3_PREFIX", "tenant-a")
        clean_env.setenv("S3_CHUNK_SIZE", "8MB")
        clean_env.setenv("S3_ENCRYPTION", "sse-s3")
        clean_env.setenv("S3_UPLOAD_PART_COPY", "true")
        clean_env.setenv("S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT", "3")

        storage = Settings.from_environment().file_storage_config()

        assert storage.bucket == "files"
        assert storage.prefix == "tenant-a"
        assert storage.chunk_size == 8 * 1024 * 1024
        assert storage.server_side_encryption
        assert not storage.client_side_encryption
        assert storage.upload_part_copy
        assert storage.connection_pool_timeout_retries == 3

    def test_env_file_does_not_override_environment(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text(
            "# local overrides\nS3_BUCKET='from-file'\nS3_PREFIX=file-prefix\n",
            encoding="utf-8",
        )
        clean_env.setenv("S3_PREFIX", "from-env")

        settings = Settings.from_environment()

        assert settings.S3_BUCKET == "from-file"
        assert settings.S3_PREFIX == "from-env"

    def test_unknown_credentials_source_falls_back_to_static(self, clean_env):
        clean_env.setenv("S3_CREDENTIALS_SOURCE", "vault")

        assert Settings.from_environment().S3_CREDENTIALS_SOURCE == "static"

    def test_iam_credentials_source(self, clean_env):
        clean_env.setenv("S3_CREDENTIALS_SOURCE", "IAM")

        assert Settings.from_environment().S3_CREDENTIALS_SOURCE == "iam"

    def test_invalid_integers_are_ignored(self, clean_env):
        clean_env.setenv("S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT", "many")
        clean_env.setenv("S3_MAX_CONNECTION_POOL_SIZE", "lots")

        settings = Settings.from_environment()

        assert settings.S3_NUM_RETRIES_ON_CONNECTION_POOL_TIMEOUT == 0
        assert settings.S3_MAX_CONNECTION_POOL_SIZE is None

    def test_bucket_is_required_for_storage(self, clean_env):
        with pytest.raises(ValueError, match="S3_BUCKET"):
            Settings.from_environment().file_storage_config()

    def test_rejects_invalid_chunk_size(self, clean_env):
        clean_env.setenv("S3_CHUNK_SIZE", "0")

        with pytest.raises(ValueError):
            Settings.from_environment()

    def test_rejects_unknown_encryption(self, clean_env):
        clean_env.setenv("S3_ENCRYPTION", "kms")

        with pytest.raises(ValueError):
            Settings.from_environment()

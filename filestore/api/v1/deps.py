from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Header, HTTPException

from filestore.common.config import get_settings
from filestore.infra.storage.client import StorageClient
from filestore.infra.storage.s3_client import S3StorageClient
from filestore.services.bucket_service import BucketService
from filestore.services.file_storage_service import FileStorageService

logger = logging.getLogger("http")


@lru_cache(maxsize=1)
def get_storage_client() -> StorageClient:
    return S3StorageClient(settings=get_settings())


@lru_cache(maxsize=1)
def get_file_storage() -> FileStorageService:
    settings = get_settings()
    return FileStorageService(get_storage_client(), settings.file_storage_config())


def get_bucket_service() -> BucketService:
    config = get_file_storage().config
    return BucketService(
        get_storage_client(),
        config.bucket,
        server_side_encryption=config.server_side_encryption,
        connection_pool_timeout_retries=config.connection_pool_timeout_retries,
    )


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if settings.API_KEY_ENABLED:
        api_key_expected = getattr(settings, "API_KEY", None)
        if not x_api_key or (api_key_expected and x_api_key != api_key_expected):
            raise HTTPException(status_code=401, detail="Invalid API key")


def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    settings = get_settings()
    admin_key = getattr(settings, "DESTRUCTIVE_API_KEY", None)
    if not admin_key:
        raise HTTPException(status_code=503, detail="Removing all files is disabled")
    if x_admin_key != admin_key:
        preview = "<missing>"
        if x_admin_key:
            preview = f"{x_admin_key[:4]}***"
        logger.warning(
            "admin_key_mismatch admin_key_preview=%s",
            preview,
        )
        raise HTTPException(status_code=403, detail="Forbidden")

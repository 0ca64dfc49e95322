"""Bucket provisioning for the file storage."""

from __future__ import annotations

import json
import logging

from filestore.infra.storage.client import StorageClient, StorageError, StoreServiceError
from filestore.infra.storage.keys import validate_bucket_name
from filestore.infra.storage.retry import RetryingOperationExecutor
from filestore.services.errors import BucketCreationFailedError, wrap_storage_error

logger = logging.getLogger(__name__)


def sse_only_bucket_policy(bucket: str) -> str:
    """Policy rejecting uploads that do not request AES256 server-side encryption."""
    resource = f"arn:aws:s3:::{bucket}/*"
    policy = {
        "Version": "2012-10-17",
        "Id": "PutObjPolicy",
        "Statement": [
            {
                "Sid": "DenyIncorrectEncryptionHeader",
                "Effect": "Deny",
                "Principal": "*",
                "Action": "s3:PutObject",
                "Resource": resource,
                "Condition": {
                    "StringNotEquals": {"s3:x-amz-server-side-encryption": "AES256"}
                },
            },
            {
                "Sid": "DenyUnEncryptedObjectUploads",
                "Effect": "Deny",
                "Principal": "*",
                "Action": "s3:PutObject",
                "Resource": resource,
                "Condition": {"Null": {"s3:x-amz-server-side-encryption": "true"}},
            },
        ],
    }
    return json.dumps(policy)


class BucketService:
    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        *,
        server_side_encryption: bool = False,
        connection_pool_timeout_retries: int = 0,
    ) -> None:
        validate_bucket_name(bucket)
        self._client = client
        self._bucket = bucket
        self._server_side_encryption = server_side_encryption
        self._max_attempts = max(connection_pool_timeout_retries, 0) + 1

    @property
    def bucket(self) -> str:
        return self._bucket

    def exists(self) -> bool:
        try:
            return RetryingOperationExecutor(
                lambda c: c.bucket_exists(bucket=self._bucket), self._max_attempts
            ).execute(self._client)
        except StorageError as exc:
            raise wrap_storage_error(exc) from exc

    def ensure_bucket(self) -> bool:
        """Create the bucket unless it exists. Returns whether it was created."""
        if self.exists():
            logger.debug("Bucket %s exists", self._bucket)
            return False

        region = self._client.region_name
        try:
            RetryingOperationExecutor(
                lambda c: c.create_bucket(bucket=self._bucket, region=region),
                self._max_attempts,
            ).execute_void(self._client)
        except StoreServiceError as exc:
            if exc.error_code == "InvalidLocationConstraint":
                raise BucketCreationFailedError(self._bucket, region) from exc
            if exc.error_code != "BucketAlreadyOwnedByYou":
                raise wrap_storage_error(exc) from exc
            logger.info("Bucket %s was created concurrently", self._bucket)
            return False
        except StorageError as exc:
            raise wrap_storage_error(exc) from exc
        logger.info("Created bucket %s in region %s", self._bucket, region)

        if self._server_side_encryption:
            policy = sse_only_bucket_policy(self._bucket)
            try:
                RetryingOperationExecutor(
                    lambda c: c.put_bucket_policy(bucket=self._bucket, policy=policy),
                    self._max_attempts,
                ).execute_void(self._client)
            except StorageError as exc:
                raise wrap_storage_error(exc) from exc
            logger.info("Installed SSE-only policy on bucket %s", self._bucket)
        return True

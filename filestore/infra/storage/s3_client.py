"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
AWS S3, MinIO, and other S3-compatible object storage services.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, BinaryIO, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from filestore.infra.observability.metrics import STORE_LATENCY, STORE_REQUESTS
from filestore.infra.storage.client import (
    CompletedPart,
    DeleteError,
    DeleteObjectsResult,
    MultipartUpload,
    ObjectContent,
    ObjectHead,
    ObjectListing,
    StorageError,
    StoreClientError,
    StoreServiceError,
)

if TYPE_CHECKING:
    from filestore.common.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


class S3ObjectBody:
    """Adapts a botocore ``StreamingBody`` to the ``ObjectBody`` protocol."""

    def __init__(self, body: Any, object_key: str) -> None:
        self._body = body
        self._object_key = object_key

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read(None if size is None or size < 0 else size)
        except BotoCoreError as exc:
            raise StoreClientError(
                f"Failed to read object content of {self._object_key}: {exc}"
            ) from exc

    def close(self) -> None:
        self._body.close()

    def abort(self) -> None:
        # Closing the urllib3 response before EOF discards the connection
        # instead of handing a half-read socket back to the pool.
        logger.debug("Aborting unconsumed object stream for %s", self._object_key)
        self._body.close()


class S3StorageClient:
    """S3-compatible object storage client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Application settings containing S3 configuration.
        """
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config_kwargs: dict[str, Any] = {"s3": {"addressing_style": addressing_style}}
        if settings.S3_MAX_CONNECTION_POOL_SIZE:
            config_kwargs["max_pool_connections"] = settings.S3_MAX_CONNECTION_POOL_SIZE
        if settings.S3_CONNECT_TIMEOUT:
            config_kwargs["connect_timeout"] = settings.S3_CONNECT_TIMEOUT
        if settings.S3_READ_TIMEOUT:
            config_kwargs["read_timeout"] = settings.S3_READ_TIMEOUT
        if settings.S3_MAX_RETRIES is not None:
            config_kwargs["retries"] = {"max_attempts": settings.S3_MAX_RETRIES}

        client_kwargs: dict[str, Any] = {
            "endpoint_url": settings.S3_ENDPOINT_URL,
            "region_name": settings.S3_REGION or DEFAULT_REGION,
            "use_ssl": bool(settings.S3_USE_SSL),
            "config": Config(**config_kwargs),
        }
        # "iam" leaves credential resolution to boto3's default provider chain
        if settings.S3_CREDENTIALS_SOURCE != "iam":
            client_kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID
            client_kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY

        return boto3.client("s3", **client_kwargs)

    @property
    def region_name(self) -> str:
        return self._client.meta.region_name or DEFAULT_REGION

    def _invoke(self, operation: str, action: str, **params: Any) -> Any:
        """Call a boto3 operation, translating botocore failures."""
        start = time.perf_counter()
        outcome = "success"
        try:
            return getattr(self._client, operation)(**params)
        except ClientError as exc:
            outcome = "service_error"
            error = exc.response.get("Error", {})
            metadata = exc.response.get("ResponseMetadata", {})
            status = metadata.get("HTTPStatusCode")
            raise StoreServiceError(
                f"Failed to {action}: {exc}",
                status_code=int(status) if status is not None else None,
                error_code=error.get("Code"),
            ) from exc
        except BotoCoreError as exc:
            outcome = "client_error"
            raise StoreClientError(f"Failed to {action}: {exc}") from exc
        finally:
            STORE_REQUESTS.labels(operation, outcome).inc()
            STORE_LATENCY.labels(operation).observe(time.perf_counter() - start)

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: BinaryIO,
        content_length: int,
        content_md5: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> str | None:
        """Store a whole object and return its ETag."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "Body": body,
            "ContentLength": int(content_length),
        }
        if content_md5:
            params["ContentMD5"] = content_md5
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata
        if server_side_encryption:
            params["ServerSideEncryption"] = server_side_encryption

        response = self._invoke("put_object", "put object", **params)
        return response.get("ETag")

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        byte_range: tuple[int, int] | None = None,
    ) -> ObjectContent:
        """Read an object, optionally only the inclusive byte range."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if byte_range is not None:
            first, last = byte_range
            params["Range"] = f"bytes={int(first)}-{int(last)}"

        response = self._invoke("get_object", "get object", **params)
        size = response.get("ContentLength")
        return ObjectContent(
            body=S3ObjectBody(response["Body"], object_key),
            content_length=int(size) if size is not None else 0,
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
        )

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content."""
        response = self._invoke(
            "head_object",
            "get object metadata",
            Bucket=bucket,
            Key=object_key,
        )

        size = response.get("ContentLength")
        return ObjectHead(
            size_bytes=int(size) if size is not None else 0,
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
            last_modified=response.get("LastModified"),
        )

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage."""
        self._invoke("delete_object", "delete object", Bucket=bucket, Key=object_key)

    def delete_objects(
        self, *, bucket: str, object_keys: Sequence[str]
    ) -> DeleteObjectsResult:
        """Delete up to 1000 objects, reporting per-key failures."""
        response = self._invoke(
            "delete_objects",
            "delete objects",
            Bucket=bucket,
            Delete={
                "Objects": [{"Key": key} for key in object_keys],
                "Quiet": True,
            },
        )
        return DeleteObjectsResult(
            deleted=[item["Key"] for item in response.get("Deleted") or []],
            errors=[
                DeleteError(
                    key=item["Key"],
                    code=item.get("Code"),
                    message=item.get("Message"),
                )
                for item in response.get("Errors") or []
            ],
        )

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        marker: str | None = None,
    ) -> ObjectListing:
        """List one page of object keys under ``prefix``."""
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if delimiter:
            params["Delimiter"] = delimiter
        if marker:
            params["Marker"] = marker

        response = self._invoke("list_objects", "list objects", **params)
        keys = [item["Key"] for item in response.get("Contents") or []]
        is_truncated = bool(response.get("IsTruncated"))
        next_marker = response.get("NextMarker")
        if is_truncated and not next_marker and keys:
            # NextMarker is only returned alongside a delimiter
            next_marker = keys[-1]
        return ObjectListing(
            keys=keys, is_truncated=is_truncated, next_marker=next_marker
        )

    def bucket_exists(self, *, bucket: str) -> bool:
        """Whether the bucket exists, regardless of who owns it."""
        try:
            self._invoke("head_bucket", "check bucket", Bucket=bucket)
        except StoreServiceError as exc:
            if exc.status_code == 404 or exc.error_code in {"NoSuchBucket", "404"}:
                return False
            if exc.status_code == 403:
                return True
            raise
        return True

    def create_bucket(self, *, bucket: str, region: str) -> None:
        """Create a bucket in ``region``."""
        params: dict[str, Any] = {"Bucket": bucket}
        if region and region != DEFAULT_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        self._invoke("create_bucket", "create bucket", **params)

    def put_bucket_policy(self, *, bucket: str, policy: str) -> None:
        """Install a JSON bucket policy."""
        self._invoke(
            "put_bucket_policy", "set bucket policy", Bucket=bucket, Policy=policy
        )

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata
        if server_side_encryption:
            params["ServerSideEncryption"] = server_side_encryption

        response = self._invoke(
            "create_multipart_upload", "create multipart upload", **params
        )

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: BinaryIO,
        content_length: int,
        content_md5: str | None = None,
        is_last_part: bool = False,
    ) -> CompletedPart:
        """Upload one part of a multipart upload."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "UploadId": upload_id,
            "PartNumber": int(part_number),
            "Body": body,
            "ContentLength": int(content_length),
        }
        if content_md5:
            params["ContentMD5"] = content_md5
        if is_last_part:
            logger.debug("Uploading last part %s of %s", part_number, object_key)

        response = self._invoke("upload_part", "upload part", **params)
        etag = response.get("ETag")
        if not etag:
            raise StorageError("S3 response missing part ETag")
        return CompletedPart(part_number=int(part_number), etag=str(etag))

    def upload_part_copy(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        source_key: str,
        first_byte: int | None = None,
        last_byte: int | None = None,
    ) -> CompletedPart | None:
        """Copy an existing object (or a byte range of it) as a part."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "UploadId": upload_id,
            "PartNumber": int(part_number),
            "CopySource": {"Bucket": bucket, "Key": source_key},
        }
        if first_byte is not None and last_byte is not None:
            params["CopySourceRange"] = f"bytes={int(first_byte)}-{int(last_byte)}"

        try:
            response = self._invoke("upload_part_copy", "copy part", **params)
        except StoreServiceError as exc:
            if exc.status_code == 412 or exc.error_code == "PreconditionFailed":
                return None
            raise

        etag = (response.get("CopyPartResult") or {}).get("ETag")
        if not etag:
            return None
        return CompletedPart(part_number=int(part_number), etag=str(etag))

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in sorted(parts, key=lambda p: p.part_number)
            ]
        }

        self._invoke(
            "complete_multipart_upload",
            "complete multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            MultipartUpload=multipart_payload,
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        self._invoke(
            "abort_multipart_upload",
            "abort multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
        )

    def copy_object(
        self,
        *,
        bucket: str,
        source_key: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        server_side_encryption: str | None = None,
    ) -> str | None:
        """Server-side copy that replaces the destination metadata."""
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": object_key,
            "CopySource": {"Bucket": bucket, "Key": source_key},
            "MetadataDirective": "REPLACE",
            "Metadata": dict(metadata or {}),
        }
        if content_type:
            params["ContentType"] = content_type
        if server_side_encryption:
            params["ServerSideEncryption"] = server_side_encryption

        response = self._invoke("copy_object", "copy object", **params)
        return (response.get("CopyObjectResult") or {}).get("ETag")

"""Tests for S3 storage client."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    HTTPClientError,
    ReadTimeoutError,
)
from urllib3.exceptions import EmptyPoolError

from filestore.common.config import Settings
from filestore.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    StorageError,
    StoreClientError,
    StoreServiceError,
)
from filestore.infra.storage.s3_client import S3ObjectBody, S3StorageClient


def _client_error(code: str, status: int, operation: str = "GetObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class TestS3StorageClient:
    """Test S3StorageClient implementation."""

    @pytest.fixture
    def mock_s3(self):
        """Mock boto3 S3 client."""
        mock_client = MagicMock()
        mock_client.meta.region_name = "us-east-1"
        with patch.object(S3StorageClient, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def mock_settings(self):
        """Create mock settings for S3."""
        settings = MagicMock()
        settings.S3_ENDPOINT_URL = "http://localhost:9000"
        settings.S3_REGION = "us-east-1"
        settings.S3_ACCESS_KEY_ID = "test-key"
        settings.S3_SECRET_ACCESS_KEY = "test-secret"
        settings.S3_USE_SSL = False
        settings.S3_ADDRESSING_STYLE = "path"
        return settings

    @pytest.fixture
    def client(self, mock_s3, mock_settings):
        """Create S3StorageClient with mocked boto3."""
        return S3StorageClient(settings=mock_settings)

    def test_put_object(self, client, mock_s3):
        mock_s3.put_object.return_value = {"ETag": '"etag"'}
        body = MagicMock()

        etag = client.put_object(
            bucket="test-bucket",
            object_key="files/abc",
            body=body,
            content_length=3,
            content_md5="md5==",
            server_side_encryption="AES256",
        )

        assert etag == '"etag"'
        mock_s3.put_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="files/abc",
            Body=body,
            ContentLength=3,
            ContentMD5="md5==",
            ServerSideEncryption="AES256",
        )

    def test_get_object_with_range(self, client, mock_s3):
        streaming_body = MagicMock()
        streaming_body.read.return_value = b"0123"
        mock_s3.get_object.return_value = {
            "Body": streaming_body,
            "ContentLength": 4,
            "ETag": '"etag"',
            "ContentType": "text/plain",
        }

        content = client.get_object(
            bucket="test-bucket", object_key="files/abc", byte_range=(10, 13)
        )

        assert content.content_length == 4
        assert content.content_type == "text/plain"
        assert content.body.read(4) == b"0123"
        mock_s3.get_object.assert_called_once_with(
            Bucket="test-bucket", Key="files/abc", Range="bytes=10-13"
        )

    def test_get_object_not_found(self, client, mock_s3):
        mock_s3.get_object.side_effect = _client_error("NoSuchKey", 404)

        with pytest.raises(StoreServiceError) as excinfo:
            client.get_object(bucket="test-bucket", object_key="files/missing")

        assert excinfo.value.is_not_found
        assert excinfo.value.status_code == 404
        assert excinfo.value.error_code == "NoSuchKey"
        assert isinstance(excinfo.value.__cause__, ClientError)

    def test_get_object_invalid_range(self, client, mock_s3):
        mock_s3.get_object.side_effect = _client_error("InvalidRange", 416)

        with pytest.raises(StoreServiceError) as excinfo:
            client.get_object(
                bucket="test-bucket", object_key="files/abc", byte_range=(5, 9)
            )

        assert excinfo.value.is_range_not_satisfiable

    def test_transport_failure(self, client, mock_s3):
        mock_s3.head_object.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:9000"
        )

        with pytest.raises(StoreClientError) as excinfo:
            client.head_object(bucket="test-bucket", object_key="files/abc")

        assert not excinfo.value.is_connection_pool_timeout()

    def test_connection_pool_timeout_is_detected(self, client, mock_s3):
        mock_s3.put_object.side_effect = HTTPClientError(
            error=EmptyPoolError(None, "Pool reached maximum size")
        )

        with pytest.raises(StoreClientError) as excinfo:
            client.put_object(
                bucket="test-bucket",
                object_key="files/abc",
                body=MagicMock(),
                content_length=0,
            )

        assert excinfo.value.is_connection_pool_timeout()

    def test_init_multipart_upload(self, client, mock_s3):
        """Test initiating multipart upload."""
        mock_s3.create_multipart_upload.return_value = {
            "UploadId": "test-upload-id",
            "Bucket": "test-bucket",
            "Key": "test/key",
        }

        result = client.init_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            content_type="application/pdf",
            server_side_encryption="AES256",
        )

        assert isinstance(result, MultipartUpload)
        assert result.upload_id == "test-upload-id"
        assert result.bucket == "test-bucket"
        assert result.object_key == "test/key"

        mock_s3.create_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            ContentType="application/pdf",
            ServerSideEncryption="AES256",
        )

    def test_init_multipart_upload_missing_upload_id(self, client, mock_s3):
        """Test error when S3 response missing UploadId."""
        mock_s3.create_multipart_upload.return_value = {}

        with pytest.raises(StorageError, match="S3 response missing UploadId"):
            client.init_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
            )

    def test_upload_part(self, client, mock_s3):
        mock_s3.upload_part.return_value = {"ETag": '"part-etag"'}
        body = MagicMock()

        part = client.upload_part(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=3,
            body=body,
            content_length=1024,
            content_md5="md5==",
            is_last_part=True,
        )

        assert part == CompletedPart(part_number=3, etag='"part-etag"')
        mock_s3.upload_part.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumber=3,
            Body=body,
            ContentLength=1024,
            ContentMD5="md5==",
        )

    def test_upload_part_missing_etag(self, client, mock_s3):
        mock_s3.upload_part.return_value = {}

        with pytest.raises(StorageError, match="missing part ETag"):
            client.upload_part(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
                part_number=1,
                body=MagicMock(),
                content_length=1,
            )

    def test_upload_part_copy_with_range(self, client, mock_s3):
        mock_s3.upload_part_copy.return_value = {"CopyPartResult": {"ETag": '"copy"'}}

        part = client.upload_part_copy(
            bucket="test-bucket",
            object_key="files/tmp",
            upload_id="test-upload-id",
            part_number=2,
            source_key="files/abc",
            first_byte=0,
            last_byte=99,
        )

        assert part == CompletedPart(part_number=2, etag='"copy"')
        mock_s3.upload_part_copy.assert_called_once_with(
            Bucket="test-bucket",
            Key="files/tmp",
            UploadId="test-upload-id",
            PartNumber=2,
            CopySource={"Bucket": "test-bucket", "Key": "files/abc"},
            CopySourceRange="bytes=0-99",
        )

    def test_upload_part_copy_declined(self, client, mock_s3):
        mock_s3.upload_part_copy.side_effect = _client_error(
            "PreconditionFailed", 412, "UploadPartCopy"
        )

        assert (
            client.upload_part_copy(
                bucket="test-bucket",
                object_key="files/tmp",
                upload_id="test-upload-id",
                part_number=1,
                source_key="files/abc",
            )
            is None
        )

    def test_complete_multipart_upload(self, client, mock_s3):
        """Test completing multipart upload."""
        parts = [
            CompletedPart(part_number=2, etag="etag2"),
            CompletedPart(part_number=1, etag="etag1"),
        ]

        client.complete_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            parts=parts,
        )

        # Verify the parts are sorted by part_number
        call_args = mock_s3.complete_multipart_upload.call_args
        assert call_args[1]["UploadId"] == "test-upload-id"
        assert call_args[1]["MultipartUpload"]["Parts"] == [
            {"ETag": "etag1", "PartNumber": 1},
            {"ETag": "etag2", "PartNumber": 2},
        ]

    def test_abort_multipart_upload(self, client, mock_s3):
        """Test aborting multipart upload."""
        client.abort_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
        )

        mock_s3.abort_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
        )

    def test_head_object(self, client, mock_s3):
        """Test getting object metadata."""
        mock_s3.head_object.return_value = {
            "ContentLength": 1024,
            "ETag": '"test-etag"',
            "ContentType": "application/pdf",
            "Metadata": {"x-amz-unencrypted-content-length": "1000"},
        }

        result = client.head_object(bucket="test-bucket", object_key="test/key")

        assert result.size_bytes == 1024
        assert result.etag == '"test-etag"'
        assert result.content_type == "application/pdf"
        assert result.metadata == {"x-amz-unencrypted-content-length": "1000"}

    def test_delete_objects_reports_errors(self, client, mock_s3):
        mock_s3.delete_objects.return_value = {
            "Errors": [{"Key": "files/b", "Code": "AccessDenied", "Message": "no"}]
        }

        result = client.delete_objects(
            bucket="test-bucket", object_keys=["files/a", "files/b"]
        )

        assert [e.key for e in result.errors] == ["files/b"]
        assert result.errors[0].code == "AccessDenied"
        mock_s3.delete_objects.assert_called_once_with(
            Bucket="test-bucket",
            Delete={
                "Objects": [{"Key": "files/a"}, {"Key": "files/b"}],
                "Quiet": True,
            },
        )

    def test_list_objects_falls_back_to_last_key(self, client, mock_s3):
        mock_s3.list_objects.return_value = {
            "Contents": [{"Key": "files/a"}, {"Key": "files/b"}],
            "IsTruncated": True,
        }

        listing = client.list_objects(
            bucket="test-bucket", prefix="files/", marker="files/0"
        )

        assert listing.keys == ["files/a", "files/b"]
        assert listing.is_truncated
        assert listing.next_marker == "files/b"
        mock_s3.list_objects.assert_called_once_with(
            Bucket="test-bucket", Prefix="files/", Marker="files/0"
        )

    @pytest.mark.parametrize(("status", "exists"), [(404, False), (403, True)])
    def test_bucket_exists(self, client, mock_s3, status, exists):
        mock_s3.head_bucket.side_effect = _client_error(str(status), status, "HeadBucket")

        assert client.bucket_exists(bucket="test-bucket") is exists

    def test_create_bucket_in_default_region(self, client, mock_s3):
        client.create_bucket(bucket="test-bucket", region="us-east-1")

        mock_s3.create_bucket.assert_called_once_with(Bucket="test-bucket")

    def test_create_bucket_in_other_region(self, client, mock_s3):
        client.create_bucket(bucket="test-bucket", region="eu-west-1")

        mock_s3.create_bucket.assert_called_once_with(
            Bucket="test-bucket",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    def test_copy_object_replaces_metadata(self, client, mock_s3):
        mock_s3.copy_object.return_value = {"CopyObjectResult": {"ETag": '"copy"'}}

        etag = client.copy_object(
            bucket="test-bucket",
            source_key="files/tmp",
            object_key="files/abc",
            content_type="text/plain",
            metadata={"k": "v"},
            server_side_encryption="AES256",
        )

        assert etag == '"copy"'
        mock_s3.copy_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="files/abc",
            CopySource={"Bucket": "test-bucket", "Key": "files/tmp"},
            MetadataDirective="REPLACE",
            Metadata={"k": "v"},
            ContentType="text/plain",
            ServerSideEncryption="AES256",
        )

    def test_region_name(self, client):
        assert client.region_name == "us-east-1"


class TestBuildClient:
    def test_static_credentials_and_transport_options(self):
        settings = Settings(
            S3_ACCESS_KEY_ID="key",
            S3_SECRET_ACCESS_KEY="secret",
            S3_MAX_CONNECTION_POOL_SIZE=20,
            S3_CONNECT_TIMEOUT=3,
        )
        with patch("filestore.infra.storage.s3_client.boto3.client") as factory:
            S3StorageClient(settings=settings)

        kwargs = factory.call_args.kwargs
        assert kwargs["aws_access_key_id"] == "key"
        assert kwargs["aws_secret_access_key"] == "secret"
        assert kwargs["config"].max_pool_connections == 20
        assert kwargs["config"].connect_timeout == 3

    def test_iam_credentials_use_default_chain(self):
        settings = Settings(S3_CREDENTIALS_SOURCE="iam", S3_ACCESS_KEY_ID="ignored")
        with patch("filestore.infra.storage.s3_client.boto3.client") as factory:
            S3StorageClient(settings=settings)

        kwargs = factory.call_args.kwargs
        assert "aws_access_key_id" not in kwargs
        assert "aws_secret_access_key" not in kwargs


class TestS3ObjectBody:
    def test_read_translates_transport_errors(self):
        body = MagicMock()
        body.read.side_effect = ReadTimeoutError(endpoint_url="http://localhost:9000")

        with pytest.raises(StoreClientError):
            S3ObjectBody(body, "files/abc").read(10)

    def test_abort_closes_body(self):
        body = MagicMock()

        S3ObjectBody(body, "files/abc").abort()

        body.close.assert_called_once()

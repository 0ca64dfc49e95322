"""Tests for key namespacing and bucket name validation."""

import pytest

from filestore.infra.storage.keys import KeyNamespace, validate_bucket_name


@pytest.fixture()
def keys():
    return KeyNamespace("test-bucket", "files")


def test_to_and_from_key(keys):
    assert keys.key_prefix == "files/"
    assert keys.to_key("abc") == "files/abc"
    assert keys.from_key("files/abc") == "abc"
    assert keys.to_keys(["a", "b"]) == ["files/a", "files/b"]
    assert keys.from_keys(["files/a", "files/b"]) == ["a", "b"]


def test_from_key_outside_prefix(keys):
    with pytest.raises(ValueError):
        keys.from_key("other/abc")
    with pytest.raises(ValueError):
        keys.from_key("filesabc")


def test_generated_keys_are_unique_and_namespaced(keys):
    generated = {keys.generate_key() for _ in range(100)}

    assert len(generated) == 100
    for key in generated:
        name = keys.from_key(key)
        assert len(name) == 32
        assert "/" not in name


@pytest.mark.parametrize("prefix", ["", "a/b", "/"])
def test_rejects_invalid_prefix(prefix):
    with pytest.raises(ValueError):
        KeyNamespace("test-bucket", prefix)


@pytest.mark.parametrize(
    "bucket", ["abc", "my.bucket-1", "a" * 63, "1bucket", "bucket.example.com"]
)
def test_valid_bucket_names(bucket):
    validate_bucket_name(bucket)


@pytest.mark.parametrize(
    "bucket",
    [
        "",
        "ab",
        "a" * 64,
        "MyBucket",
        "under_score",
        "-bucket",
        "bucket-",
        "my..bucket",
        "my.-bucket",
        "my-.bucket",
        "192.168.1.1",
    ],
)
def test_invalid_bucket_names(bucket):
    with pytest.raises(ValueError):
        validate_bucket_name(bucket)

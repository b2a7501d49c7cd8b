"""
Tests for the storage broker's pre-signed URLs, using a real boto3 client
(signing is offline, no AWS account needed).
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import boto3
import pytest
from botocore.config import Config

from filevault.utils import storage as storage_module
from filevault.utils.storage import StorageBroker, get_storage, reset_storage


@pytest.fixture
def broker():
    client = boto3.client(
        "s3",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
        config=Config(signature_version="s3v4"),
    )
    return StorageBroker(client, "test-bucket", upload_expiry=3600, download_expiry=900, max_expiry=7200)


def _query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.mark.unit
class TestPresignedUrls:
    def test_upload_url_is_scoped_to_one_key(self, broker):
        presigned = broker.create_upload_url("org1/file1/report.pdf", "application/pdf")

        parsed = urlparse(presigned.url)
        assert parsed.path.endswith("/org1/file1/report.pdf")
        query = _query(presigned.url)
        assert query["X-Amz-Expires"] == "3600"
        assert "content-type" in query["X-Amz-SignedHeaders"]

    def test_download_url_uses_default_expiry_and_disposition(self, broker):
        presigned = broker.create_download_url("org1/file1/report.pdf", filename="report.pdf")

        query = _query(presigned.url)
        assert query["X-Amz-Expires"] == "900"
        assert query["response-content-disposition"] == 'attachment; filename="report.pdf"'

    def test_expiry_capped_at_maximum(self, broker):
        presigned = broker.create_download_url("org1/file1/report.pdf", expires_in=10**6)

        assert _query(presigned.url)["X-Amz-Expires"] == "7200"
        remaining = (presigned.expires_at - datetime.now(timezone.utc)).total_seconds()
        assert 7100 < remaining <= 7200

    def test_non_positive_expiry_rejected(self, broker):
        broker.max_expiry = 0
        with pytest.raises(ValueError):
            broker.create_upload_url("org1/file1/report.pdf", "application/pdf")

    @pytest.mark.parametrize("key", ["", "   ", "org1/*", "org1/file1/"])
    def test_refuses_non_object_keys(self, broker, key):
        with pytest.raises(ValueError):
            broker.create_download_url(key)

    def test_filename_quotes_stripped(self, broker):
        presigned = broker.create_download_url("org1/f/x.pdf", filename='evil".pdf')
        assert _query(presigned.url)["response-content-disposition"] == 'attachment; filename="evil.pdf"'


@pytest.mark.unit
class TestObjectAccess:
    def test_iter_object_chunks_streams_and_closes(self):
        body = MagicMock()
        body.read.side_effect = [b"abc", b"de", b""]
        client = MagicMock()
        client.get_object.return_value = {"Body": body}
        broker = StorageBroker(client, "b")

        assert list(broker.iter_object_chunks("k", chunk_size=3)) == [b"abc", b"de"]
        client.get_object.assert_called_once_with(Bucket="b", Key="k")
        body.close.assert_called_once()

    def test_head_and_put_use_given_bucket(self):
        client = MagicMock()
        broker = StorageBroker(client, "default-bucket")

        broker.head_object("k", bucket="other")
        broker.put_object("t.png", b"png", "image/png")

        client.head_object.assert_called_once_with(Bucket="other", Key="k")
        client.put_object.assert_called_once_with(
            Bucket="default-bucket", Key="t.png", Body=b"png", ContentType="image/png"
        )


@pytest.mark.unit
def test_get_storage_is_cached_until_reset(monkeypatch):
    monkeypatch.setattr(storage_module, "_storage", None)

    first = get_storage()
    assert get_storage() is first
    assert first.bucket == "test-bucket"

    reset_storage()
    assert get_storage() is not first
    reset_storage()

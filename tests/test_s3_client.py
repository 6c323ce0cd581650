"""
Tests for the S3 object store client.
"""
import io
import logging
import re
from unittest.mock import Mock

import pytest
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
)

from takeout_s3_migration.config import S3Config
from takeout_s3_migration.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ConfigurationError,
    ObjectNotFoundError,
    OperationCancelledError,
    TerminalError,
    TransientError,
    ValidationError,
)
from takeout_s3_migration.storage.s3_client import (
    MAX_METADATA_BYTES,
    S3ObjectStore,
    create_object_store,
    sanitize_metadata,
    translate_error,
)
from takeout_s3_migration.utils.cancellation import CancellationContext


def client_error(code: str, status: int, operation: str = 'PutObject') -> ClientError:
    return ClientError(
        {'Error': {'Code': code, 'Message': code}, 'ResponseMetadata': {'HTTPStatusCode': status}},
        operation,
    )


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(bucket='photos', endpoint='s3.example.com', access_key='key', secret_key='secret')


@pytest.fixture
def mock_client():
    return Mock()


class TestTranslateError:
    """Tests for botocore error translation."""

    @pytest.mark.parametrize("code,status,expected", [
        ('NoSuchKey', 404, ObjectNotFoundError),
        ('404', 404, ObjectNotFoundError),
        ('AccessDenied', 403, AccessDeniedError),
        ('SignatureDoesNotMatch', 403, AccessDeniedError),
        ('SlowDown', 503, TransientError),
        ('InternalError', 500, TransientError),
        ('TooManyRequests', 429, TransientError),
        ('RequestTimeout', 400, TransientError),
        ('InvalidArgument', 400, ValidationError),
        ('PreconditionFailed', 412, TerminalError),
    ])
    def test_client_errors(self, code, status, expected):
        """Test the classification of service errors."""
        translated = translate_error(client_error(code, status), 'Upload a.jpg')
        assert type(translated) is expected
        assert 'Upload a.jpg' in str(translated)

    def test_transport_errors(self):
        """Test connection and credential errors."""
        assert isinstance(
            translate_error(EndpointConnectionError(endpoint_url='https://s3.example.com'), 'op'),
            TransientError,
        )
        assert isinstance(translate_error(NoCredentialsError(), 'op'), AccessDeniedError)
        assert isinstance(
            translate_error(ParamValidationError(report='bad key'), 'op'),
            TerminalError,
        )

    def test_other_errors_unchanged(self):
        """Test that unrelated exceptions pass through."""
        error = ValueError('boom')
        assert translate_error(error, 'op') is error


def test_sanitize_metadata():
    """Test that non-ASCII metadata is percent-encoded."""
    cleaned = sanitize_metadata({'title': 'Café', 'place': 'Paris', 'count': 3})
    assert cleaned['title'] == 'Caf%C3%A9'
    assert cleaned['place'] == 'Paris'
    assert cleaned['count'] == '3'


class TestMetadataBudget:
    """Tests for the 2 KB user metadata limit."""

    def test_small_metadata_untouched(self):
        """Test that metadata within the limit is unchanged."""
        metadata = {'title': 'a.jpg', 'description': 'x' * 1000}
        assert sanitize_metadata(metadata) == metadata

    def test_long_description_is_truncated(self, caplog):
        """Test that the longest value is shortened to fit."""
        metadata = {'title': 'a.jpg', 'Source': 'Google Takeout', 'description': 'd' * 3000}

        with caplog.at_level(logging.WARNING):
            cleaned = sanitize_metadata(metadata, 'takeout/a.jpg')

        assert sum(len(k) + len(v) for k, v in cleaned.items()) <= MAX_METADATA_BYTES
        assert cleaned['title'] == 'a.jpg'
        assert cleaned['Source'] == 'Google Takeout'
        assert cleaned['description'].startswith('ddd')
        assert "takeout/a.jpg" in caplog.text
        assert "truncated: description" in caplog.text

    def test_truncation_keeps_escapes_whole(self):
        """Test that a percent-encoded value is not cut inside an escape."""
        cleaned = sanitize_metadata({'description': 'é' * 1000})
        value = cleaned['description']
        assert len(value) <= MAX_METADATA_BYTES
        assert re.fullmatch(r'(%C3%A9)+', value)

    def test_many_values_are_dropped(self):
        """Test that values too short to truncate usefully are dropped."""
        metadata = {f'field{i:02d}': 'v' * 100 for i in range(30)}

        cleaned = sanitize_metadata(metadata)

        assert sum(len(k) + len(v) for k, v in cleaned.items()) <= MAX_METADATA_BYTES
        assert 0 < len(cleaned) < 30
        assert all(v == 'v' * 100 or len(v) >= 64 for v in cleaned.values())


class TestS3ObjectStore:
    """Tests for S3ObjectStore."""

    def test_validates_bucket(self, s3_config, mock_client):
        """Test that the bucket is checked on construction."""
        store = S3ObjectStore(s3_config, client=mock_client)
        mock_client.head_bucket.assert_called_once_with(Bucket='photos')
        assert store.bucket == 'photos'
        assert store.endpoint == 'https://s3.example.com'

    def test_missing_bucket_name(self, mock_client):
        """Test that a bucket name is required."""
        with pytest.raises(ConfigurationError, match="bucket"):
            S3ObjectStore(S3Config(), client=mock_client)

    def test_bucket_not_found(self, s3_config, mock_client):
        """Test that a missing bucket is a configuration error."""
        mock_client.head_bucket.side_effect = client_error('NoSuchBucket', 404, 'HeadBucket')
        with pytest.raises(ConfigurationError, match="does not exist"):
            S3ObjectStore(s3_config, client=mock_client)

    def test_bucket_access_denied(self, s3_config, mock_client):
        """Test that rejected credentials are an authentication error."""
        mock_client.head_bucket.side_effect = client_error('403', 403, 'HeadBucket')
        with pytest.raises(AuthenticationError):
            S3ObjectStore(s3_config, client=mock_client)

    def test_object_key_prefix(self, mock_client):
        """Test prefixing object keys."""
        config = S3Config(bucket='photos', prefix='/backup/')
        store = S3ObjectStore(config, client=mock_client)
        assert store.object_key('Takeout/a.jpg') == 'backup/Takeout/a.jpg'
        assert store.prefix == '/backup/'

        store = S3ObjectStore(S3Config(bucket='photos'), client=mock_client)
        assert store.object_key('/Takeout/a.jpg') == 'Takeout/a.jpg'

    def test_upload_object(self, s3_config, mock_client):
        """Test the upload request."""
        store = S3ObjectStore(s3_config, client=mock_client)
        stream = io.BytesIO(b'data')
        ctx = CancellationContext()

        store.upload_object(ctx, stream, 'Takeout/a.jpg', 4, {'title': 'a'}, 'image/jpeg')

        args, kwargs = mock_client.upload_fileobj.call_args
        assert args == (stream, 'photos', 'Takeout/a.jpg')
        assert kwargs['ExtraArgs'] == {'ContentType': 'image/jpeg', 'Metadata': {'title': 'a'}}

    def test_upload_without_metadata(self, s3_config, mock_client):
        """Test that empty metadata is not sent."""
        store = S3ObjectStore(s3_config, client=mock_client)
        store.upload_object(CancellationContext(), io.BytesIO(b''), 'a.jpg', 0, {}, '')
        kwargs = mock_client.upload_fileobj.call_args.kwargs
        assert kwargs['ExtraArgs'] == {'ContentType': 'application/octet-stream'}

    def test_upload_error_translated(self, s3_config, mock_client):
        """Test that upload failures are classified."""
        mock_client.upload_fileobj.side_effect = client_error('SlowDown', 503)
        store = S3ObjectStore(s3_config, client=mock_client)
        with pytest.raises(TransientError):
            store.upload_object(CancellationContext(), io.BytesIO(b''), 'a.jpg', 0, {}, 'image/jpeg')

    def test_upload_cancelled(self, s3_config, mock_client):
        """Test that cancellation aborts through the transfer callback."""
        store = S3ObjectStore(s3_config, client=mock_client)
        ctx = CancellationContext()

        def transfer(stream, bucket, key, ExtraArgs=None, Callback=None, Config=None):
            ctx.cancel()
            Callback(1024)

        mock_client.upload_fileobj.side_effect = transfer
        with pytest.raises(OperationCancelledError):
            store.upload_object(ctx, io.BytesIO(b'data'), 'a.jpg', 4, {}, 'image/jpeg')

    def test_object_exists(self, s3_config, mock_client):
        """Test existence checks."""
        store = S3ObjectStore(s3_config, client=mock_client)
        ctx = CancellationContext()

        assert store.object_exists(ctx, 'a.jpg') is True
        mock_client.head_object.assert_called_with(Bucket='photos', Key='a.jpg')

        mock_client.head_object.side_effect = client_error('404', 404, 'HeadObject')
        assert store.object_exists(ctx, 'a.jpg') is False

        mock_client.head_object.side_effect = client_error('InternalError', 500, 'HeadObject')
        with pytest.raises(TransientError):
            store.object_exists(ctx, 'a.jpg')

    def test_builds_boto3_client(self, s3_config):
        """Test the client built from the configuration."""
        s3_config.disable_checksums = True
        store = S3ObjectStore(s3_config, validate_bucket=False)
        assert store._client.meta.endpoint_url == 'https://s3.example.com'
        assert store._client.meta.config.s3['addressing_style'] == 'path'

    def test_create_object_store(self, s3_config, mock_client):
        """Test the factory."""
        store = create_object_store(s3_config, client=mock_client)
        assert isinstance(store, S3ObjectStore)

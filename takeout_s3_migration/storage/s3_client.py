"""
S3-compatible object store client (AWS S3, Backblaze B2, MinIO, ...).
"""
import logging
import re
from typing import BinaryIO, Dict, Optional
from urllib.parse import quote

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
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
from takeout_s3_migration.storage.base import ObjectStore
from takeout_s3_migration.utils.cancellation import CancellationContext
from takeout_s3_migration.utils.retry import DEFAULT_RETRYABLE_ERRORS

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}
AUTH_CODES = {"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch",
              "AuthorizationHeaderMalformed", "InvalidToken", "ExpiredToken"}
VALIDATION_CODES = {"400", "InvalidArgument", "InvalidRequest", "MalformedXML",
                    "EntityTooLarge", "KeyTooLongError", "InvalidBucketName"}

MULTIPART_THRESHOLD = 10 * 1024 * 1024
MULTIPART_CHUNKSIZE = 8 * 1024 * 1024

# S3 limit on the combined size of user metadata keys and values
MAX_METADATA_BYTES = 2048
MIN_TRUNCATED_VALUE = 64


def translate_error(error: Exception, operation: str) -> Exception:
    """Map a botocore exception onto the retry classification used by the driver."""
    message = f"{operation}: {error}"

    if isinstance(error, ClientError):
        code = str(error.response.get('Error', {}).get('Code', ''))
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
        if code in NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(message)
        if code in AUTH_CODES or status == 403:
            return AccessDeniedError(message)
        if code in DEFAULT_RETRYABLE_ERRORS or status == 429 or status >= 500:
            return TransientError(message)
        if code in VALIDATION_CODES or status == 400:
            return ValidationError(message)
        return TerminalError(message)

    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AccessDeniedError(message)
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientError(message)
    if isinstance(error, BotoCoreError):
        return TerminalError(message)
    return error


def _metadata_size(metadata: Dict[str, str]) -> int:
    return sum(len(key) + len(value) for key, value in metadata.items())


def _truncate_encoded(value: str, limit: int) -> str:
    """Cut a percent-encoded value to ``limit`` characters on a character boundary."""
    shortened = re.sub(r'%[0-9A-Fa-f]?$', '', value[:limit])
    escapes = re.search(r'(?:%[0-9A-Fa-f]{2})+$', shortened)
    if escapes:
        raw = bytes.fromhex(escapes.group().replace('%', ''))
        try:
            raw.decode('utf-8')
        except UnicodeDecodeError as e:
            if e.end == len(raw):
                shortened = shortened[:len(shortened) - 3 * (len(raw) - e.start)]
    return shortened


def sanitize_metadata(metadata: Dict[str, str], object_key: str = "") -> Dict[str, str]:
    """
    Prepare user metadata for S3.

    Keys and values must be US-ASCII, so anything else is percent-encoded.
    S3 also rejects requests whose user metadata exceeds 2 KB; the longest
    values are truncated (or dropped when little of them would be left)
    until the map fits.
    """
    cleaned = {}
    for key, value in metadata.items():
        key = str(key)
        value = "" if value is None else str(value)
        if not key.isascii():
            key = quote(key, safe='')
        if not value.isascii():
            value = quote(value, safe=' ,.:;/-_')
        cleaned[key] = value

    excess = _metadata_size(cleaned) - MAX_METADATA_BYTES
    if excess <= 0:
        return cleaned

    truncated, dropped = [], []
    for key in sorted(cleaned, key=lambda k: len(cleaned[k]), reverse=True):
        if excess <= 0:
            break
        value = cleaned[key]
        keep = len(value) - excess
        if keep >= MIN_TRUNCATED_VALUE:
            shortened = _truncate_encoded(value, keep)
            cleaned[key] = shortened
            excess -= len(value) - len(shortened)
            truncated.append(key)
        else:
            del cleaned[key]
            excess -= len(key) + len(value)
            dropped.append(key)

    logger.warning(
        f"Metadata for {object_key or 'object'} exceeds {MAX_METADATA_BYTES} bytes; "
        f"truncated: {', '.join(truncated) or 'none'}; dropped: {', '.join(dropped) or 'none'}"
    )
    return cleaned


class S3ObjectStore(ObjectStore):
    """ObjectStore backed by boto3."""

    def __init__(self, config: S3Config, client=None, validate_bucket: bool = True):
        """
        Initialize the client and check that the bucket is reachable.

        Args:
            config: S3 connection settings
            client: Pre-built boto3 S3 client (mainly for tests)
            validate_bucket: Call head_bucket before returning

        Raises:
            ConfigurationError: Missing settings or bucket not found
            AuthenticationError: Credentials rejected
        """
        config.validate()
        self.config = config
        self._endpoint_url = config.endpoint_url

        if client is None:
            options = {
                'region_name': config.region,
                'retries': {'total_max_attempts': 1, 'mode': 'standard'},
                's3': {'addressing_style': 'path'},
            }
            if config.disable_checksums:
                options['request_checksum_calculation'] = 'when_required'
                options['response_checksum_validation'] = 'when_required'
            session = boto3.Session(
                aws_access_key_id=config.access_key,
                aws_secret_access_key=config.secret_key,
                region_name=config.region,
            )
            client = session.client('s3', endpoint_url=self._endpoint_url, config=Config(**options))

        self._client = client
        self._transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNKSIZE,
            max_concurrency=4,
        )

        if validate_bucket:
            self._validate_bucket()

        logger.info(f"Connected to S3 endpoint {self._endpoint_url or 'default'}, bucket {config.bucket}")

    def _validate_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.config.bucket)
        except (ClientError, BotoCoreError) as e:
            translated = translate_error(e, f"Check bucket {self.config.bucket}")
            if isinstance(translated, AccessDeniedError):
                raise AuthenticationError(str(translated)) from e
            if isinstance(translated, ObjectNotFoundError):
                raise ConfigurationError(f"Bucket {self.config.bucket} does not exist") from e
            raise ConfigurationError(f"Cannot reach bucket {self.config.bucket}: {translated}") from e

    @property
    def bucket(self) -> str:
        return self.config.bucket

    @property
    def endpoint(self) -> str:
        return self._endpoint_url or ""

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def object_key(self, key: str) -> str:
        """Apply the configured prefix to ``key``."""
        key = key.lstrip('/')
        prefix = self.config.prefix.strip('/')
        return f"{prefix}/{key}" if prefix else key

    def upload_object(self, ctx: CancellationContext, stream: BinaryIO, key: str,
                      size: int, metadata: Dict[str, str], content_type: str) -> None:
        object_key = self.object_key(key)
        ctx.raise_if_cancelled(f"Upload {object_key}")

        def on_progress(_bytes_transferred: int) -> None:
            # s3transfer aborts the transfer when a callback raises
            ctx.raise_if_cancelled(f"Upload {object_key}")

        extra_args = {'ContentType': content_type or "application/octet-stream"}
        if metadata:
            extra_args['Metadata'] = sanitize_metadata(metadata, object_key)

        try:
            self._client.upload_fileobj(
                stream,
                self.config.bucket,
                object_key,
                ExtraArgs=extra_args,
                Callback=on_progress,
                Config=self._transfer_config,
            )
        except OperationCancelledError:
            raise
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, f"Upload {object_key}") from e

        logger.debug(f"Uploaded {object_key} ({size} bytes, {content_type})")

    def object_exists(self, ctx: CancellationContext, key: str) -> bool:
        object_key = self.object_key(key)
        ctx.raise_if_cancelled(f"Check existence of {object_key}")
        try:
            self._client.head_object(Bucket=self.config.bucket, Key=object_key)
            return True
        except (ClientError, BotoCoreError) as e:
            translated = translate_error(e, f"Check existence of {object_key}")
            if isinstance(translated, ObjectNotFoundError):
                return False
            raise translated from e


def create_object_store(config: S3Config, client: Optional[object] = None) -> S3ObjectStore:
    """Factory used by the orchestrator to build one client per archive."""
    return S3ObjectStore(config, client=client)

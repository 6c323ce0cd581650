"""Object store modules (interface, S3 client, content types)."""

from takeout_s3_migration.storage.base import ObjectStore
from takeout_s3_migration.storage.content_type import detect_content_type

__all__ = ['ObjectStore', 'detect_content_type']

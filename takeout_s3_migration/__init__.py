"""
Google Takeout to S3 Upload Tool

Uploads photos and videos from Google Takeout archives (zip files or
extracted folders) to S3-compatible object storage, with resumable
journals, bounded concurrency and metadata preservation.
"""
__version__ = "1.0.0"

# Import main classes for easy access
from takeout_s3_migration.config import MigrationConfig
from takeout_s3_migration.exceptions import (
    MigrationError,
    ConfigurationError,
    AuthenticationError,
    UploadError,
    JournalError,
    TransientError,
    TerminalError,
    OperationCancelledError,
    RetryExhaustedError,
    BatchUploadError,
    ArchiveError,
)

__all__ = [
    '__version__',
    'MigrationConfig',
    'MigrationError',
    'ConfigurationError',
    'AuthenticationError',
    'UploadError',
    'JournalError',
    'TransientError',
    'TerminalError',
    'OperationCancelledError',
    'RetryExhaustedError',
    'BatchUploadError',
    'ArchiveError',
]

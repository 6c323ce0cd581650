"""
Custom exceptions for the Takeout to S3 migration tool.
"""
from typing import List, Optional


class MigrationError(Exception):
    """Base exception for migration errors."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ConfigurationError(MigrationError):
    """Error related to configuration."""
    pass


class AuthenticationError(MigrationError):
    """Error during authentication against the object store."""
    pass


class UploadError(MigrationError):
    """Error during file upload."""
    pass


class JournalError(MigrationError):
    """Error reading the upload journal (corrupt or unreadable file)."""
    pass


class TransientError(UploadError):
    """Failure that may succeed when retried (timeouts, throttling, resets)."""
    pass


class TerminalError(UploadError):
    """Failure that will not succeed when retried."""
    pass


class ValidationError(TerminalError):
    """The request was rejected as invalid."""
    pass


class AccessDeniedError(TerminalError):
    """The object store rejected the credentials or the request's permissions."""
    pass


class ObjectNotFoundError(TerminalError):
    """The requested object or bucket does not exist."""
    pass


class OperationCancelledError(MigrationError):
    """The governing context was cancelled or its deadline passed."""
    pass


class RetryExhaustedError(UploadError):
    """An operation kept failing with retryable errors until retries ran out."""

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class BatchUploadError(UploadError):
    """Some files of an archive failed to upload."""

    def __init__(self, failed: int, total: int, errors: List[str], statistics=None,
                 max_messages: int = 10):
        messages = list(errors[:max_messages])
        if len(errors) > max_messages:
            messages.append(f"... and {len(errors) - max_messages} more errors")
        super().__init__(
            f"upload completed with {failed}/{total} files failed:\n" + "\n".join(messages)
        )
        self.failed = failed
        self.total = total
        self.errors = errors
        self.statistics = statistics


class ArchiveError(MigrationError):
    """Processing of a single archive failed."""

    def __init__(self, archive: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"upload failed for {archive}: {message}")
        self.archive = archive
        self.cause = cause

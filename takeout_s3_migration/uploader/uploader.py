"""
Per-archive upload driver.

Every file of an archive goes through the same pipeline inside a worker pool
task: journal check, optional remote existence check, metadata and content
type resolution, open, upload and finally the journal record. A failing file
is counted and reported but never stops its siblings.
"""
import logging
import threading
from enum import Enum
from functools import partial
from typing import BinaryIO, Dict, List, Optional

from takeout_s3_migration.config import UploadConfig
from takeout_s3_migration.exceptions import BatchUploadError, OperationCancelledError, UploadError
from takeout_s3_migration.reporting.progress import ProgressReporter
from takeout_s3_migration.source.base import ArchiveSource, MediaFile
from takeout_s3_migration.storage.base import ObjectStore
from takeout_s3_migration.storage.content_type import detect_content_type
from takeout_s3_migration.utils.cancellation import CancellationContext
from takeout_s3_migration.utils.journal import Journal
from takeout_s3_migration.utils.metrics import RunStatistics
from takeout_s3_migration.utils.retry import RetryConfig, retry_with_backoff
from takeout_s3_migration.utils.worker_pool import WorkerPool

DEFAULT_SOURCE = "Google Takeout"
MAX_REPORTED_ERRORS = 10


class FileState(Enum):
    """States a file passes through during upload."""
    PENDING_SKIP_CHECK = "pending_skip_check"
    PENDING_EXISTENCE_CHECK = "pending_existence_check"
    PENDING_OPEN = "pending_open"
    PENDING_UPLOAD = "pending_upload"
    RECORDED = "recorded"
    SKIPPED = "skipped"
    FAILED = "failed"


class ArchiveUploader:
    """Uploads every file of one archive through a worker pool."""

    def __init__(
        self,
        ctx: CancellationContext,
        store: ObjectStore,
        source: ArchiveSource,
        journal: Optional[Journal],
        pool: WorkerPool,
        progress: Optional[ProgressReporter],
        config: UploadConfig,
        retry_config: Optional[RetryConfig] = None,
        statistics: Optional[RunStatistics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the uploader.

        Args:
            ctx: Archive-scoped cancellation context
            store: Destination object store
            source: Archive to read files from
            journal: Resume ledger (None disables resume bookkeeping)
            pool: Worker pool bounding concurrent file uploads
            progress: Progress reporter (optional)
            config: Upload settings
            retry_config: Retry policy for existence checks, opens and uploads
            statistics: Counters to update (a new RunStatistics by default)
            logger: Logger handle (defaults to this module's logger)
        """
        self.ctx = ctx
        self.store = store
        self.source = source
        self.journal = journal
        self.pool = pool
        self.progress = progress
        self.config = config
        self.retry_config = retry_config or RetryConfig()
        self.statistics = statistics or RunStatistics(source.name)
        self.logger = logger or logging.getLogger(__name__)

        self._errors: List[str] = []
        self._errors_lock = threading.Lock()

    def run(self) -> RunStatistics:
        """
        Upload every file listed by the source.

        Returns:
            The run statistics

        Raises:
            BatchUploadError: If at least one file failed (statistics attached)
            OperationCancelledError: If ``ctx`` was cancelled before every file was submitted
        """
        files = self.source.list_files()
        total_bytes = sum(self._size_of(f) for f in files)
        self.statistics.set_totals(len(files), total_bytes)

        if not files:
            self.logger.warning(f"No files found in archive {self.source.name}")
            self.statistics.finish()
            return self.statistics

        self.logger.info(
            f"Starting upload to {self.store.endpoint or 'S3'} bucket {self.store.bucket}: "
            f"{len(files)} files ({total_bytes / (1024 * 1024):.2f} MB) in archive {self.source.name}"
        )

        if self.progress is not None:
            self.progress.set_archive(self.source.name)
            self.progress.start(len(files))

        not_submitted = 0
        try:
            for index, media_file in enumerate(files):
                if self.ctx.cancelled:
                    not_submitted = len(files) - index
                    self.logger.warning(
                        f"Archive {self.source.name} cancelled ({self.ctx.reason}), "
                        f"{not_submitted} files not submitted"
                    )
                    break
                if self.journal is not None and self.journal.is_uploaded(media_file.path):
                    self.logger.debug(f"Skipping already uploaded file: {media_file.path}")
                    self._record_skipped(media_file.path)
                    continue
                self.pool.submit(partial(self._process, media_file))
            self.pool.wait()
        finally:
            if self.progress is not None:
                self.progress.finish()
            self.statistics.finish()

        self._log_summary()

        if not_submitted:
            raise OperationCancelledError(
                f"Upload of archive {self.source.name} canceled: {self.ctx.reason} "
                f"({not_submitted} files not processed)"
            )

        failed = self.statistics.failed_files
        if failed:
            with self._errors_lock:
                errors = list(self._errors)
            raise BatchUploadError(failed, len(files), errors, statistics=self.statistics,
                                   max_messages=MAX_REPORTED_ERRORS)
        return self.statistics

    def _process(self, media_file: MediaFile) -> None:
        file_ctx = self.ctx.child(timeout=self.config.file_timeout)
        try:
            self.upload_file(file_ctx, media_file)
        except Exception as e:
            self.logger.error(
                f"Failed to upload {media_file.path} from archive {self.source.name}: {e}",
                extra={'archive': self.source.name, 'path': media_file.path},
            )
            self.statistics.record_failed()
            if self.progress is not None:
                self.progress.error(media_file.path, e)
            with self._errors_lock:
                self._errors.append(f"failed to upload {media_file.path}: {e}")
        finally:
            file_ctx.close()

    def upload_file(self, ctx: CancellationContext, media_file: MediaFile) -> FileState:
        """
        Run the pipeline for one file.

        Returns:
            FileState.SKIPPED or FileState.RECORDED

        Raises:
            UploadError: If a stage failed after its retries
            OperationCancelledError: If ``ctx`` was cancelled
        """
        path = media_file.path
        size = self._size_of(media_file)
        self.logger.debug(f"Processing {path} from archive {self.source.name}")
        ctx.raise_if_cancelled(f"Process {path}")

        if self.config.skip_existing and self._exists_remotely(ctx, path):
            self.logger.debug(f"File already exists in bucket, skipping: {path}")
            self._record_skipped(path)
            self._mark(path)
            return FileState.SKIPPED

        if self.config.dry_run:
            self.logger.info(f"[DRY RUN] Would upload {path} ({size / (1024 * 1024):.2f} MB)")
            self._record_uploaded(path, size)
            return FileState.RECORDED

        metadata = self._build_metadata(media_file)
        content_type = self._resolve_content_type(media_file, metadata)

        reader = self._open(ctx, path)
        try:
            operation = f"Upload {path}"
            ctx.raise_if_cancelled(operation)

            def attempt() -> None:
                if reader.seekable():
                    reader.seek(0)
                self.store.upload_object(ctx, reader, path, size, metadata, content_type)

            try:
                retry_with_backoff(ctx, operation, attempt, self.retry_config)
            except OperationCancelledError:
                raise
            except Exception as e:
                raise UploadError(f"failed to upload file: {e}") from e
        finally:
            reader.close()

        self._record_uploaded(path, size)
        self.logger.debug(f"Successfully uploaded {path} from archive {self.source.name} "
                          f"({size / (1024 * 1024):.2f} MB)")
        return FileState.RECORDED

    def _exists_remotely(self, ctx: CancellationContext, path: str) -> bool:
        operation = f"Check existence of {path}"
        ctx.raise_if_cancelled(operation)
        try:
            return retry_with_backoff(
                ctx, operation, lambda: self.store.object_exists(ctx, path), self.retry_config
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            raise UploadError(f"failed to check if file exists: {e}") from e

    def _open(self, ctx: CancellationContext, path: str) -> BinaryIO:
        operation = f"Open file {path}"
        ctx.raise_if_cancelled(operation)
        try:
            return retry_with_backoff(
                ctx, operation, lambda: self.source.open_file(path), self.retry_config
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            raise UploadError(f"failed to open file: {e}") from e

    def _build_metadata(self, media_file: MediaFile) -> Dict[str, str]:
        if not self.config.preserve_metadata:
            return {}
        exported = self.source.get_metadata(media_file.path)
        if not exported:
            return {}
        metadata = {str(k): str(v) for k, v in exported.items()}
        metadata.setdefault("Source", DEFAULT_SOURCE)
        return metadata

    @staticmethod
    def _resolve_content_type(media_file: MediaFile, metadata: Dict[str, str]) -> str:
        content_type = detect_content_type(media_file.path)
        override = (media_file.metadata or {}).get("Content-Type") or metadata.get("Content-Type")
        return override or content_type

    def _size_of(self, media_file: MediaFile) -> int:
        if media_file.size:
            return media_file.size
        return self.source.get_size(media_file.path) or 0

    def _record_skipped(self, path: str) -> None:
        self.statistics.record_skipped()
        if self.progress is not None:
            self.progress.skip(path)

    def _record_uploaded(self, path: str, size: int) -> None:
        self.statistics.record_uploaded(size)
        if self.progress is not None:
            self.progress.complete(path)
        self._mark(path)

    def _mark(self, path: str) -> None:
        if self.journal is not None:
            self.journal.mark_uploaded(path, self.source.name)

    def _log_summary(self) -> None:
        stats = self.statistics
        self.logger.info(f"Upload complete for archive {self.source.name}:")
        self.logger.info(f"  Total files: {stats.total_files}")
        self.logger.info(f"  Uploaded: {stats.uploaded_files} ({stats.uploaded_bytes / (1024 * 1024):.2f} MB)")
        self.logger.info(f"  Skipped: {stats.skipped_files}")
        self.logger.info(f"  Failed: {stats.failed_files}")
        if self.config.dry_run:
            self.logger.info("Note: This was a dry run, no files were actually uploaded")

"""
Migration orchestrator.

Runs many archives concurrently, each with its own worker pool, progress
reporter and (optionally) journal, while a bounded pool caps how many
archives are active at once. A failing archive is reported but never stops
the others.
"""
import glob as globlib
import logging
import os
import threading
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from takeout_s3_migration.config import MigrationConfig
from takeout_s3_migration.exceptions import ArchiveError, BatchUploadError, MigrationError
from takeout_s3_migration.reporting.progress import ProgressReporter
from takeout_s3_migration.source.base import ArchiveSource
from takeout_s3_migration.source.takeout import TakeoutArchive
from takeout_s3_migration.storage.base import ObjectStore
from takeout_s3_migration.uploader.uploader import ArchiveUploader
from takeout_s3_migration.utils.cancellation import CancellationContext, background
from takeout_s3_migration.utils.journal import Journal, journal_path_for_archive
from takeout_s3_migration.utils.metrics import RunStatistics
from takeout_s3_migration.utils.worker_pool import WorkerPool

MAX_REPORTED_ERRORS = 10

StoreFactory = Callable[[], ObjectStore]
SourceFactory = Callable[[Path, str], ArchiveSource]


def archive_name(path: Path) -> str:
    """Identifier of an archive: the zip stem or the directory name."""
    path = Path(path)
    return path.stem if path.suffix.lower() == '.zip' else path.name


def unique_archive_names(paths: Iterable[Path]) -> List[Tuple[Path, str]]:
    """
    Pair every path with a name no other archive of the run uses.

    Repeated names get a numeric suffix in input order, so statistics and
    per-archive journals of ``a/takeout-001.zip`` and ``b/takeout-001.zip``
    stay apart (``takeout-001`` and ``takeout-001-2``).
    """
    used = set()
    named = []
    for path in paths:
        base = archive_name(path)
        name, counter = base, 1
        while name in used:
            counter += 1
            name = f"{base}-{counter}"
        used.add(name)
        named.append((Path(path), name))
    return named


def find_zip_files(directory: Path) -> List[Path]:
    """All zip files below ``directory``, sorted."""
    return sorted(p for p in Path(directory).rglob('*') if p.is_file() and p.suffix.lower() == '.zip')


def expand_inputs(paths: Iterable[str], use_glob: bool = False) -> List[Path]:
    """
    Turn command line inputs into archive paths.

    Glob patterns are expanded when ``use_glob`` is set. A directory containing
    zip files expands to those zips; a directory without any is treated as an
    extracted Takeout folder. Anything else is kept as given. An archive
    reached more than once is only listed the first time.
    """
    logger = logging.getLogger(__name__)
    candidates: List[Path] = []
    for raw in paths:
        if use_glob:
            matches = sorted(globlib.glob(raw))
            if not matches:
                logger.warning(f"No files matched pattern: {raw}")
                continue
            logger.info(f"Found {len(matches)} files matching pattern: {raw}")
            candidates.extend(Path(m) for m in matches)
            continue

        path = Path(raw)
        if path.is_dir():
            zips = find_zip_files(path)
            if zips:
                logger.info(f"Found {len(zips)} zip files in directory: {path}")
                candidates.extend(zips)
            else:
                candidates.append(path)
        else:
            candidates.append(path)

    archives: List[Path] = []
    seen = set()
    for path in candidates:
        key = path.resolve()
        if key in seen:
            logger.warning(f"Ignoring duplicate archive: {path}")
            continue
        seen.add(key)
        archives.append(path)
    return archives


@dataclass
class MigrationResult:
    """Outcome of a multi-archive run."""
    statistics: Dict[str, RunStatistics] = field(default_factory=dict)
    errors: List[ArchiveError] = field(default_factory=list)

    @property
    def failed_archives(self) -> List[str]:
        return [e.archive for e in self.errors]

    @property
    def failed_files(self) -> int:
        return sum(s.failed_files for s in self.statistics.values())

    @property
    def uploaded_files(self) -> int:
        return sum(s.uploaded_files for s in self.statistics.values())

    @property
    def skipped_files(self) -> int:
        return sum(s.skipped_files for s in self.statistics.values())


class MigrationOrchestrator:
    """Orchestrates the upload of many archives."""

    def __init__(
        self,
        config: MigrationConfig,
        store_factory: Optional[StoreFactory] = None,
        source_factory: Optional[SourceFactory] = None,
        journal: Optional[Journal] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            store_factory: Builds one object store client per archive
                (defaults to an S3 client for ``config.s3``)
            source_factory: Opens an archive given its path and name
                (defaults to TakeoutArchive)
            journal: Shared journal used when no per-archive journal path is configured
            logger: Logger handle passed on to every archive's uploader
        """
        self.config = config
        self.store_factory = store_factory or self._default_store_factory
        self.source_factory = source_factory or (lambda path, name: TakeoutArchive(path, name=name))
        self.logger = logger or logging.getLogger(__name__)

        upload = config.upload
        self.per_archive_journals = bool(upload.journal_path)
        if self.per_archive_journals:
            self.shared_journal = None
        else:
            self.shared_journal = journal or self._new_journal(None)

        self._lock = threading.Lock()
        self._result = MigrationResult()

    def _default_store_factory(self) -> ObjectStore:
        from takeout_s3_migration.storage.s3_client import create_object_store
        return create_object_store(self.config.s3)

    def _new_journal(self, path) -> Journal:
        upload = self.config.upload
        return Journal(
            path,
            save_interval=upload.journal_save_interval,
            batch_size=upload.journal_batch_size,
            periodic_interval=upload.periodic_save_interval,
        )

    def check_destination(self) -> ObjectStore:
        """Build one client up front so bad credentials or a missing bucket fail the run early."""
        store = self.store_factory()
        self.logger.info(f"Destination bucket {store.bucket} is reachable")
        return store

    def _prepare_shared_journal(self) -> None:
        journal = self.shared_journal
        if self.config.upload.resume:
            journal.load()
        self.logger.info("Testing journal write access...")
        if journal.save(force=True):
            self.logger.info("Journal write test successful")
        else:
            self.logger.warning("Continuing without a writable journal - uploads will not be resumable")

    def run(self, archive_paths: Iterable[Path],
            ctx: Optional[CancellationContext] = None) -> MigrationResult:
        """
        Upload every archive and wait for all of them.

        Args:
            archive_paths: Zip files or Takeout directories
            ctx: Root cancellation context (cancel it to interrupt the run)

        Returns:
            MigrationResult with per-archive statistics

        Raises:
            ConfigurationError, AuthenticationError, JournalError: Setup failed
                before any archive was processed
            MigrationError: One or more archives failed (result attached)
        """
        root = ctx or background()
        archives = [Path(p) for p in archive_paths]
        self._result = MigrationResult()

        if not archives:
            self.logger.warning("No archives to process")
            return self._result

        self.check_destination()

        if self.shared_journal is not None:
            self._prepare_shared_journal()
            self.shared_journal.start_periodic_save(root)

        max_archives = self.config.upload.max_concurrent_archives
        self.logger.info(f"Processing {len(archives)} archives, up to {max_archives} simultaneously "
                         f"(PID {os.getpid()})")

        archive_pool = WorkerPool(max_archives, name="archive")
        try:
            for index, (path, name) in enumerate(unique_archive_names(archives)):
                archive_pool.submit(partial(self._run_archive, root, path, name, index % max_archives))
            self.logger.info("Waiting for all archives to complete...")
            archive_pool.wait()
        finally:
            archive_pool.shutdown()
            if self.shared_journal is not None:
                self.shared_journal.stop_periodic_save()
                self.shared_journal.save(force=True)

        self.logger.info("All archives have been processed")
        return self._finish(len(archives))

    def _finish(self, total: int) -> MigrationResult:
        result = self._result
        if not result.errors:
            return result

        self.logger.error(f"Encountered {len(result.errors)} errors during upload")
        for error in result.errors:
            self.logger.error(f"  {error}")

        messages = [str(e) for e in result.errors[:MAX_REPORTED_ERRORS]]
        if len(result.errors) > MAX_REPORTED_ERRORS:
            messages.append(f"... and {len(result.errors) - MAX_REPORTED_ERRORS} more errors")
        raise MigrationError(
            f"{len(result.errors)} of {total} archives failed:\n" + "\n".join(messages),
            result=result,
        )

    def _journal_for(self, name: str) -> Tuple[Journal, bool]:
        if not self.per_archive_journals:
            return self.shared_journal, False

        path = journal_path_for_archive(self.config.upload.journal_path, name)
        self.logger.info(f"Using journal at {path} for archive: {name}")
        journal = self._new_journal(path)
        if self.config.upload.resume:
            journal.load()
        return journal, True

    def _record_error(self, error: ArchiveError) -> None:
        with self._lock:
            self._result.errors.append(error)

    def _run_archive(self, root: CancellationContext, path: Path, name: str, position: int) -> None:
        statistics = RunStatistics(name)
        with self._lock:
            self._result.statistics[name] = statistics

        archive_ctx = root.child()
        source: Optional[ArchiveSource] = None
        journal: Optional[Journal] = None
        owns_journal = False
        pool: Optional[WorkerPool] = None
        failed = False

        self.logger.info(f"Starting processing for archive: {name}")
        try:
            archive_ctx.raise_if_cancelled(f"Archive {name}")
            store = self.store_factory()
            source = self.source_factory(path, name)
            journal, owns_journal = self._journal_for(name)
            if owns_journal:
                journal.start_periodic_save(archive_ctx)

            pool = WorkerPool(self.config.upload.concurrency, name=f"upload-{name}")
            progress = ProgressReporter(name, show_bar=self.config.upload.show_progress,
                                        position=position)
            uploader = ArchiveUploader(
                archive_ctx, store, source, journal, pool, progress,
                self.config.upload,
                retry_config=self.config.retry,
                statistics=statistics,
                logger=self.logger,
            )
            uploader.run()
            self.logger.info(f"Successfully completed upload for archive: {name}")
        except BatchUploadError as e:
            failed = True
            self.logger.error(f"upload failed for {path}: {e}")
            self._record_error(ArchiveError(str(path), str(e), e))
        except Exception as e:
            failed = True
            self.logger.error(f"Failed to process archive {path}: {e}", exc_info=True)
            self._record_error(ArchiveError(str(path), str(e), e))
        finally:
            steps = []
            if owns_journal and journal is not None:
                steps.append(("stop periodic journal save", journal.stop_periodic_save))
                steps.append(("save journal", partial(journal.save, force=True)))
            if pool is not None:
                steps.append(("shut down worker pool", pool.shutdown))
            if source is not None:
                steps.append(("close archive", source.close))
            try:
                for step, cleanup in steps:
                    try:
                        cleanup()
                    except Exception as e:
                        self.logger.error(f"Failed to {step} for {path}: {e}", exc_info=True)
                        # one error per archive
                        if not failed:
                            failed = True
                            self._record_error(ArchiveError(str(path), f"failed to {step}: {e}", e))
            finally:
                archive_ctx.close()
            self.logger.info(f"Finished processing archive: {name}")

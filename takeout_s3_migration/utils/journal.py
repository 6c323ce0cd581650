"""
Upload journal for resumable migrations.

The journal is a JSON ledger of paths whose upload completed. It is consulted
before every file is processed so an interrupted run can resume without
re-uploading finished files. Persistence is best effort: save failures are
logged and the run carries on, so at most the work since the last successful
save is repeated after a crash.
"""
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from takeout_s3_migration.exceptions import JournalError
from takeout_s3_migration.utils.cancellation import CancellationContext

logger = logging.getLogger(__name__)

DEFAULT_JOURNAL_NAME = '.s3-takeout-upload-journal.json'
DEFAULT_SAVE_INTERVAL = 30.0
DEFAULT_BATCH_SIZE = 100
DEFAULT_PERIODIC_INTERVAL = 300.0


@dataclass
class JournalEntry:
    """Completion record for one path."""
    path: str
    uploaded: bool
    timestamp: str
    archive: str


def default_journal_path() -> Path:
    """Journal location used when none is configured."""
    try:
        return Path.home() / DEFAULT_JOURNAL_NAME
    except RuntimeError:
        return Path(DEFAULT_JOURNAL_NAME)


def journal_path_for_archive(journal_path: Union[str, Path], archive_name: str) -> Path:
    """
    Derive a per-archive journal path.

    ``uploads.json`` becomes ``uploads-<archive>.json``; any other path is
    treated as a directory that holds ``<archive>.json``.
    """
    path = Path(journal_path)
    if path.suffix == '.json':
        return path.with_name(f"{path.stem}-{archive_name}{path.suffix}")
    return path / f"{archive_name}.json"


class PeriodicSave:
    """Handle for a running background save loop."""

    def __init__(self, journal: 'Journal', ctx: CancellationContext, interval: float):
        self._journal = journal
        self._ctx = ctx
        self._interval = interval
        self._thread = threading.Thread(
            target=self._loop,
            name=f"journal-save-{journal.path.name}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def _loop(self) -> None:
        while not self._ctx.wait(self._interval):
            if self._journal.save():
                logger.info(f"Performed periodic journal save with {len(self._journal)} entries")
        logger.debug("Stopping periodic journal save")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the loop and wait for the thread to exit."""
        self._ctx.close()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()


class Journal:
    """Thread-safe path -> JournalEntry ledger backed by a JSON file."""

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        save_interval: float = DEFAULT_SAVE_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        periodic_interval: float = DEFAULT_PERIODIC_INTERVAL,
    ):
        """
        Initialize the journal.

        Args:
            path: Journal file location (defaults to ~/.s3-takeout-upload-journal.json)
            save_interval: Minimum seconds between two non-forced saves
            batch_size: Number of marks that trigger a background save
            periodic_interval: Seconds between saves of the periodic save loop
        """
        self.path = Path(path) if path else default_journal_path()
        self.save_interval = save_interval
        self.batch_size = batch_size
        self.periodic_interval = periodic_interval

        self._uploads: Dict[str, JournalEntry] = {}
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._last_save: Optional[float] = None
        self._batch_count = 0
        self._periodic: Optional[PeriodicSave] = None

        logger.debug(f"Created journal with path: {self.path}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._uploads)

    def load(self) -> None:
        """
        Load the journal from disk.

        A missing file is a fresh start. An unreadable or malformed file raises
        JournalError; it is never silently replaced.
        """
        if not self.path.exists():
            logger.info(f"📂 No journal file found at {self.path}, starting fresh")
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except OSError as e:
            raise JournalError(f"Could not read journal {self.path}: {e}") from e

        if not raw.strip():
            logger.info(f"📂 Journal file {self.path} is empty, starting fresh")
            return

        try:
            data = json.loads(raw)
            uploads = self._parse(data)
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            raise JournalError(f"Journal {self.path} is corrupt: {e}") from e

        with self._lock:
            self._uploads = uploads
        logger.info(f"📂 Loaded journal with {len(uploads)} entries from {self.path}")

    @staticmethod
    def _parse(data) -> Dict[str, JournalEntry]:
        if not isinstance(data, dict) or not isinstance(data.get('uploads', {}), dict):
            raise ValueError("expected an object with an 'uploads' mapping")
        uploads = {}
        for path, item in (data.get('uploads') or {}).items():
            if not isinstance(item, dict):
                raise ValueError(f"entry for {path!r} is not an object")
            uploads[path] = JournalEntry(
                path=item.get('path', path),
                uploaded=bool(item['uploaded']),
                timestamp=item.get('timestamp', ''),
                archive=item.get('archive', ''),
            )
        return uploads

    def save(self, force: bool = False) -> bool:
        """
        Write the journal to disk.

        Non-forced saves within ``save_interval`` of the previous save are
        skipped. Errors are logged, never raised.

        Returns:
            True if the file was written
        """
        with self._save_lock:
            now = time.monotonic()
            if (not force and self._last_save is not None
                    and now - self._last_save < self.save_interval):
                return False

            with self._lock:
                snapshot = {
                    'uploads': {path: asdict(entry) for path, entry in self._uploads.items()}
                }

            try:
                self._write(snapshot)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"❌ Could not save journal to {self.path}: {e}")
                logger.error("   Progress since the last save may be lost! Check permissions and disk space.")
                return False

            self._last_save = now
            logger.debug(f"Saved journal with {len(snapshot['uploads'])} entries to {self.path}")
            return True

    def _write(self, snapshot: Dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix='.tmp'
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def mark_uploaded(self, path: str, archive: str) -> None:
        """Record ``path`` as uploaded; every batch_size marks trigger a background save."""
        entry = JournalEntry(
            path=path,
            uploaded=True,
            timestamp=datetime.now(timezone.utc).isoformat(),
            archive=archive,
        )
        with self._lock:
            self._uploads[path] = entry
            self._batch_count += 1
            trigger_save = self._batch_count >= self.batch_size
            if trigger_save:
                self._batch_count = 0

        if trigger_save:
            threading.Thread(target=self.save, name="journal-batch-save", daemon=True).start()

    def is_uploaded(self, path: str) -> bool:
        """Check whether ``path`` completed in this or a previous run."""
        with self._lock:
            entry = self._uploads.get(path)
            return entry is not None and entry.uploaded

    def start_periodic_save(self, ctx: CancellationContext,
                            interval: Optional[float] = None) -> PeriodicSave:
        """
        Save the journal every ``interval`` seconds until stopped or ``ctx`` is cancelled.

        Returns:
            The handle of the background loop (also kept on the journal)
        """
        self.stop_periodic_save()
        handle = PeriodicSave(self, ctx.child(), interval or self.periodic_interval)
        self._periodic = handle
        handle.start()
        logger.debug(f"Started periodic journal save for {self.path}")
        return handle

    def stop_periodic_save(self) -> None:
        """Stop the periodic save loop, if one is running."""
        handle, self._periodic = self._periodic, None
        if handle is not None:
            handle.stop()

    def clear(self) -> None:
        """Remove every entry and persist the empty journal."""
        with self._lock:
            self._uploads = {}
            self._batch_count = 0
        self.save(force=True)
        logger.info(f"Cleared journal {self.path}")

    def stats(self) -> Tuple[int, int]:
        """Return (total entries, uploaded entries)."""
        with self._lock:
            total = len(self._uploads)
            uploaded = sum(1 for entry in self._uploads.values() if entry.uploaded)
        return total, uploaded

    def list_completed(self) -> List[str]:
        """Return the paths marked as uploaded."""
        with self._lock:
            return [path for path, entry in self._uploads.items() if entry.uploaded]

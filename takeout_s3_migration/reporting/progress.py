"""
Per-archive progress reporting.
"""
import logging
import threading
import time
from datetime import timedelta
from typing import Optional

from tqdm import tqdm

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Tracks completed, skipped and failed files for one archive."""

    def __init__(self, archive: str = "", update_interval: float = 2.0,
                 show_bar: bool = False, position: Optional[int] = None):
        """
        Initialize the progress reporter.

        Args:
            archive: Archive name shown in progress lines
            update_interval: Minimum seconds between two progress log lines
            show_bar: Display a tqdm progress bar
            position: tqdm bar line when several archives run at once
        """
        self.archive = archive
        self.update_interval = update_interval
        self.show_bar = show_bar
        self.position = position
        self._lock = threading.Lock()
        self._bar: Optional[tqdm] = None
        self.total = 0
        self.completed = 0
        self.skipped = 0
        self.errors = 0
        self.start_time = time.time()
        self.last_update_time = self.start_time

    def set_archive(self, archive: str) -> None:
        with self._lock:
            self.archive = archive

    def start(self, total: int) -> None:
        with self._lock:
            self.total = total
            self.completed = 0
            self.skipped = 0
            self.errors = 0
            self.start_time = time.time()
            self.last_update_time = self.start_time
            self._bar = tqdm(
                total=total,
                desc=self.archive or "Uploading",
                unit="file",
                position=self.position,
                leave=False,
                disable=not self.show_bar,
            )
        logger.info(f"Starting upload of {total} files from {self.archive}")

    def complete(self, path: str) -> None:
        with self._lock:
            self.completed += 1
            self._advance()

    def skip(self, path: str) -> None:
        with self._lock:
            self.skipped += 1
            self._advance()

    def error(self, path: str, error: BaseException) -> None:
        with self._lock:
            self.errors += 1
            self._advance()

    @property
    def processed(self) -> int:
        return self.completed + self.skipped + self.errors

    def _advance(self) -> None:
        if self._bar is not None:
            self._bar.update(1)

        now = time.time()
        if now - self.last_update_time < self.update_interval:
            return
        self.last_update_time = now

        processed = self.processed
        if processed == 0 or self.total == 0:
            return

        percentage = processed / self.total * 100
        if self.completed > 0:
            per_file = (now - self.start_time) / processed
            eta = str(timedelta(seconds=round(per_file * (self.total - processed))))
        else:
            eta = "unknown"

        logger.info(
            f"Progress [{self.archive}]: {percentage:.1f}% ({processed}/{self.total}, "
            f"{self.completed} completed, {self.skipped} skipped, {self.errors} errors) ETA: {eta}"
        )

    def finish(self) -> None:
        with self._lock:
            if self._bar is not None:
                self._bar.close()
                self._bar = None
            duration = timedelta(seconds=round(time.time() - self.start_time))
            logger.info(
                f"Upload complete [{self.archive}]: {self.completed}/{self.total} files uploaded, "
                f"{self.skipped} skipped, {self.errors} errors in {duration}"
            )

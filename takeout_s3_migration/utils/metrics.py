"""
Metrics tracking for upload runs.
"""
import json
import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class RunStatistics:
    """
    Per-archive counters.

    Counters are only changed through the record_* methods, which use a lock
    private to this object so concurrent completions stay consistent without
    touching the journal's lock.
    """

    def __init__(self, archive: str = ""):
        self.archive = archive
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self._lock = threading.Lock()
        self._total_files = 0
        self._uploaded_files = 0
        self._skipped_files = 0
        self._failed_files = 0
        self._total_bytes = 0
        self._uploaded_bytes = 0

    def set_totals(self, files: int, total_bytes: int) -> None:
        with self._lock:
            self._total_files = files
            self._total_bytes = total_bytes

    def record_uploaded(self, size: int) -> None:
        with self._lock:
            self._uploaded_files += 1
            self._uploaded_bytes += size

    def record_skipped(self) -> None:
        with self._lock:
            self._skipped_files += 1

    def record_failed(self) -> None:
        with self._lock:
            self._failed_files += 1

    @property
    def total_files(self) -> int:
        with self._lock:
            return self._total_files

    @property
    def uploaded_files(self) -> int:
        with self._lock:
            return self._uploaded_files

    @property
    def skipped_files(self) -> int:
        with self._lock:
            return self._skipped_files

    @property
    def failed_files(self) -> int:
        with self._lock:
            return self._failed_files

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    @property
    def uploaded_bytes(self) -> int:
        with self._lock:
            return self._uploaded_bytes

    @property
    def processed_files(self) -> int:
        with self._lock:
            return self._uploaded_files + self._skipped_files + self._failed_files

    @property
    def duration(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return self.end_time - self.start_time
        return time.time() - self.start_time

    @property
    def speed_mbps(self) -> float:
        """Get upload speed in MB/s."""
        duration = self.duration
        if duration == 0:
            return 0.0
        return self.uploaded_bytes / (1024 * 1024) / duration

    def finish(self) -> None:
        """Mark the run as finished."""
        self.end_time = time.time()

    def to_dict(self) -> Dict:
        """Convert statistics to dictionary."""
        with self._lock:
            counters = {
                'total_files': self._total_files,
                'uploaded_files': self._uploaded_files,
                'skipped_files': self._skipped_files,
                'failed_files': self._failed_files,
                'total_bytes': self._total_bytes,
                'uploaded_bytes': self._uploaded_bytes,
            }
        return {
            'archive': self.archive,
            'duration_seconds': self.duration,
            'speed_mbps': self.speed_mbps,
            **counters,
        }


def save_statistics(statistics: Iterable[RunStatistics], file_path: Path) -> None:
    """Save per-archive statistics to a JSON file."""
    items = [stats.to_dict() for stats in statistics]
    summary = {
        'archives': items,
        'total_files': sum(item['total_files'] for item in items),
        'uploaded_files': sum(item['uploaded_files'] for item in items),
        'skipped_files': sum(item['skipped_files'] for item in items),
        'failed_files': sum(item['failed_files'] for item in items),
        'uploaded_bytes': sum(item['uploaded_bytes'] for item in items),
    }
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, 'w') as f:
        json.dump(summary, f, indent=2)
    logger.info(f"Statistics saved to {file_path}")

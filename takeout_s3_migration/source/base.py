"""
Archive source interface consumed by the upload driver.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional


@dataclass(frozen=True)
class MediaFile:
    """One file to transfer, identified by its path inside the archive."""
    path: str
    size: int = 0
    archive_id: str = ""
    metadata: Optional[Dict[str, str]] = None


class ArchiveSource(ABC):
    """A zip file or directory whose files are uploaded as one archive job."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Archive identifier used in the journal and in logs."""

    @abstractmethod
    def list_files(self) -> List[MediaFile]:
        """Return every file of the archive. Called once per run."""

    @abstractmethod
    def open_file(self, path: str) -> BinaryIO:
        """Open ``path`` for reading. Raises FileNotFoundError or OSError."""

    @abstractmethod
    def get_metadata(self, path: str) -> Optional[Dict[str, str]]:
        """Exported metadata for ``path``, or None when there is none."""

    @abstractmethod
    def get_size(self, path: str) -> int:
        """Size of ``path`` in bytes (0 when unknown)."""

    def close(self) -> None:
        """Release any handle held on the archive."""

"""
Read Google Takeout archives (zip files or extracted directories).

Media files are identified by extension. Each media file may have a JSON
sidecar (``photo.jpg.json`` or ``photo.json``) written by Google Takeout;
its content is flattened into a string map and exported as object metadata.
"""
import json
import logging
import threading
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from takeout_s3_migration.source.base import ArchiveSource, MediaFile
from takeout_s3_migration.storage.content_type import is_media_file

logger = logging.getLogger(__name__)


def flatten_metadata(data: Any, prefix: str = "") -> Dict[str, str]:
    """
    Flatten a sidecar JSON document into string keys and string values.

    Nested objects are joined with ``.``; lists become comma separated values
    (objects inside lists contribute their ``name`` or ``title`` when present).
    """
    flat: Dict[str, str] = {}
    if isinstance(data, dict):
        for key, value in data.items():
            name = f"{prefix}.{key}" if prefix else str(key)
            flat.update(flatten_metadata(value, name))
    elif isinstance(data, list):
        parts = []
        for item in data:
            if isinstance(item, dict):
                label = item.get('name') or item.get('title')
                parts.append(str(label) if label is not None else json.dumps(item, sort_keys=True))
            elif item is not None:
                parts.append(str(item))
        if prefix and parts:
            flat[prefix] = ", ".join(parts)
    elif data is not None and prefix:
        flat[prefix] = str(data).lower() if isinstance(data, bool) else str(data)
    return flat


def _skip(path: str) -> bool:
    pure = PurePosixPath(path)
    return '__MACOSX' in pure.parts or pure.name.startswith('._')


def _sidecar_candidates(path: str) -> Tuple[str, str]:
    pure = PurePosixPath(path)
    return f"{path}.json", str(pure.with_suffix('.json'))


class TakeoutArchive(ArchiveSource):
    """ArchiveSource over a Takeout zip file or directory."""

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        """
        Open the archive and index its media files.

        Args:
            path: Zip file or directory
            name: Archive identifier (defaults to the zip stem or directory name)

        Raises:
            FileNotFoundError: If ``path`` does not exist
            zipfile.BadZipFile: If a zip file cannot be read
        """
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Takeout archive not found: {self.path}")

        self.is_zip = self.path.is_file()
        self._name = name or (self.path.stem if self.is_zip else self.path.name)
        self._zip: Optional[zipfile.ZipFile] = None
        self._zip_lock = threading.Lock()
        self._files: Dict[str, MediaFile] = {}

        if self.is_zip:
            self._zip = zipfile.ZipFile(self.path, 'r')
        self._scan()

    @property
    def name(self) -> str:
        return self._name

    def _entries(self) -> Iterator[Tuple[str, int]]:
        if self._zip is not None:
            for info in self._zip.infolist():
                if not info.is_dir():
                    yield info.filename, info.file_size
        else:
            for file_path in sorted(self.path.rglob('*')):
                if file_path.is_file():
                    yield file_path.relative_to(self.path).as_posix(), file_path.stat().st_size

    def _scan(self) -> None:
        entries = dict(self._entries())
        json_count = 0

        for path, size in entries.items():
            if _skip(path) or path.lower().endswith('.json') or not is_media_file(path):
                continue

            metadata = None
            for candidate in _sidecar_candidates(path):
                if candidate in entries:
                    metadata = self._read_sidecar(candidate)
                    break
            if metadata is not None:
                json_count += 1

            self._files[path] = MediaFile(path=path, size=size, archive_id=self._name, metadata=metadata)

        logger.info(f"Identified {len(self._files)} media files in {self._name}, "
                    f"{json_count} with JSON metadata")

    def _read_sidecar(self, path: str) -> Optional[Dict[str, str]]:
        try:
            with self.open_file(path) as f:
                data = json.loads(f.read().decode('utf-8'))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to extract metadata from {path}: {e}")
            return None
        return flatten_metadata(data)

    def list_files(self) -> List[MediaFile]:
        return list(self._files.values())

    def open_file(self, path: str) -> BinaryIO:
        if self.is_zip:
            with self._zip_lock:
                if self._zip is None:
                    raise OSError(f"{self.path.name} is closed")
                try:
                    return self._zip.open(path, 'r')
                except KeyError as e:
                    raise FileNotFoundError(f"{path} not found in {self.path.name}") from e

        target = (self.path / path).resolve()
        try:
            target.relative_to(self.path.resolve())
        except ValueError:
            raise FileNotFoundError(f"{path} is outside {self.path}")
        return open(target, 'rb')

    def get_metadata(self, path: str) -> Optional[Dict[str, str]]:
        media_file = self._files.get(path)
        if media_file is None or media_file.metadata is None:
            return None
        return dict(media_file.metadata)

    def get_size(self, path: str) -> int:
        media_file = self._files.get(path)
        return media_file.size if media_file is not None else 0

    def close(self) -> None:
        if self._zip is not None:
            with self._zip_lock:
                self._zip.close()
                self._zip = None

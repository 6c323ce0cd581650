"""
Pytest configuration and shared fixtures.
"""
import io
import json
import threading
import zipfile
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

import pytest
import yaml

from takeout_s3_migration.config import UploadConfig
from takeout_s3_migration.source.base import ArchiveSource, MediaFile
from takeout_s3_migration.storage.base import ObjectStore
from takeout_s3_migration.utils.cancellation import CancellationContext
from takeout_s3_migration.utils.journal import Journal
from takeout_s3_migration.utils.retry import RetryConfig


class FakeObjectStore(ObjectStore):
    """In-memory object store.

    ``failures`` maps a key to a list of exceptions raised by successive
    upload attempts for that key; once the list is empty uploads succeed.
    """

    def __init__(self, bucket: str = "test-bucket", existing: Optional[List[str]] = None):
        self._bucket = bucket
        self.objects: Dict[str, bytes] = {key: b"" for key in (existing or [])}
        self.metadata: Dict[str, Dict[str, str]] = {}
        self.content_types: Dict[str, str] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.exists_failures: Dict[str, List[Exception]] = {}
        self.upload_attempts: Dict[str, int] = {}
        self.exists_calls = 0
        self._lock = threading.Lock()

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload_object(self, ctx: CancellationContext, stream: BinaryIO, key: str,
                      size: int, metadata: Dict[str, str], content_type: str) -> None:
        ctx.raise_if_cancelled(f"Upload {key}")
        with self._lock:
            self.upload_attempts[key] = self.upload_attempts.get(key, 0) + 1
            pending = self.failures.get(key)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        data = stream.read()
        with self._lock:
            self.objects[key] = data
            self.metadata[key] = dict(metadata)
            self.content_types[key] = content_type

    def object_exists(self, ctx: CancellationContext, key: str) -> bool:
        with self._lock:
            self.exists_calls += 1
            pending = self.exists_failures.get(key)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        with self._lock:
            return key in self.objects


class FakeArchiveSource(ArchiveSource):
    """In-memory archive built from a path -> bytes mapping."""

    def __init__(self, name: str, files: Dict[str, bytes],
                 metadata: Optional[Dict[str, Dict[str, str]]] = None):
        self._name = name
        self.files = files
        self.metadata = metadata or {}
        self.open_failures: Dict[str, List[Exception]] = {}
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    def list_files(self) -> List[MediaFile]:
        return [MediaFile(path=path, size=len(data), archive_id=self._name)
                for path, data in sorted(self.files.items())]

    def open_file(self, path: str) -> BinaryIO:
        pending = self.open_failures.get(path)
        if pending:
            raise pending.pop(0)
        if path not in self.files:
            raise FileNotFoundError(path)
        return io.BytesIO(self.files[path])

    def get_metadata(self, path: str) -> Optional[Dict[str, str]]:
        return self.metadata.get(path)

    def get_size(self, path: str) -> int:
        return len(self.files.get(path, b""))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def ctx():
    """Root cancellation context, closed after the test."""
    context = CancellationContext()
    yield context
    context.close()


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry policy without backoff delays."""
    return RetryConfig(max_retries=2, initial_backoff=0.0, max_backoff=0.0)


@pytest.fixture
def upload_config() -> UploadConfig:
    """Upload settings for driver tests."""
    return UploadConfig(concurrency=2, skip_existing=False, file_timeout=30)


@pytest.fixture
def journal(tmp_path) -> Journal:
    """Journal stored in the test's temporary directory."""
    return Journal(tmp_path / 'journal.json', save_interval=0)


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def sample_files() -> Dict[str, bytes]:
    """Three small media files."""
    return {
        'Takeout/Google Photos/2021/a.jpg': b'image a',
        'Takeout/Google Photos/2021/b.jpg': b'image bb',
        'Takeout/Google Photos/2021/c.mp4': b'video ccc',
    }


@pytest.fixture
def sample_metadata() -> Dict:
    """Google Takeout sidecar content."""
    return {
        'title': 'a.jpg',
        'description': 'Beach',
        'photoTakenTime': {
            'timestamp': '1609459200',
            'formatted': 'Jan 1, 2021, 12:00:00 AM UTC'
        },
        'geoData': {
            'latitude': 37.7749,
            'longitude': -122.4194
        },
        'people': [{'name': 'Alice'}, {'name': 'Bob'}],
        'favorited': True
    }


@pytest.fixture
def sample_zip_file(tmp_path, sample_metadata) -> Path:
    """Create a Takeout zip with media files, a sidecar and macOS clutter."""
    zip_path = tmp_path / 'takeout-001.zip'
    with zipfile.ZipFile(zip_path, 'w') as zf:
        zf.writestr('Takeout/Google Photos/2021/a.jpg', b'fake image data')
        zf.writestr('Takeout/Google Photos/2021/a.jpg.json', json.dumps(sample_metadata))
        zf.writestr('Takeout/Google Photos/2021/clip.MP4', b'fake video data')
        zf.writestr('Takeout/Google Photos/2021/notes.txt', b'not media')
        zf.writestr('__MACOSX/Takeout/._a.jpg', b'resource fork')
        zf.writestr('Takeout/Google Photos/2021/._b.jpg', b'resource fork')
    return zip_path


@pytest.fixture
def sample_takeout_dir(tmp_path, sample_metadata) -> Path:
    """Create an extracted Takeout directory."""
    root = tmp_path / 'Takeout-extracted'
    album = root / 'Google Photos' / 'Trip'
    album.mkdir(parents=True)
    (album / 'IMG_0001.jpg').write_bytes(b'jpeg bytes')
    (album / 'IMG_0001.json').write_text(json.dumps(sample_metadata))
    (album / 'VID_0002.mov').write_bytes(b'mov bytes')
    (album / 'metadata.json').write_text(json.dumps({'title': 'Trip'}))
    return root


@pytest.fixture
def sample_config() -> Dict:
    """Fixture providing a sample configuration dictionary."""
    return {
        's3': {
            'bucket': 'photos',
            'endpoint': 's3.us-west-000.backblazeb2.com',
            'region': 'us-west-000',
            'access_key': 'key-id',
            'secret_key': 'secret',
            'prefix': 'takeout',
            'disable_checksums': True
        },
        'upload': {
            'concurrency': 8,
            'max_concurrent_archives': 2,
            'dry_run': False,
            'resume': True,
            'skip_existing': False
        },
        'retry': {
            'max_retries': 3,
            'initial_backoff': 0.5,
            'max_backoff': 10
        },
        'logging': {
            'level': 'DEBUG'
        }
    }


@pytest.fixture
def config_file(tmp_path, sample_config) -> Path:
    """Create a temporary config.yaml file."""
    config_path = tmp_path / 'config.yaml'
    with open(config_path, 'w') as f:
        yaml.dump(sample_config, f)
    return config_path


@pytest.fixture(autouse=True)
def clear_s3_env(monkeypatch):
    """Keep S3_* variables from the environment out of the tests."""
    for name in ('S3_ACCESS_KEY', 'S3_SECRET_KEY', 'S3_ENDPOINT', 'S3_BUCKET'):
        monkeypatch.delenv(name, raising=False)

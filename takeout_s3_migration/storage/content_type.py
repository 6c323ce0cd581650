"""
Content type detection by file extension.
"""
import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

COMMON_MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.tiff': 'image/tiff',
    '.tif': 'image/tiff',
    '.bmp': 'image/bmp',
    '.heic': 'image/heic',
    '.heif': 'image/heif',
    '.mp4': 'video/mp4',
    '.m4v': 'video/x-m4v',
    '.mov': 'video/quicktime',
    '.3gp': 'video/3gpp',
    '.avi': 'video/x-msvideo',
    '.wmv': 'video/x-ms-wmv',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.json': 'application/json',
    '.txt': 'text/plain',
    '.pdf': 'application/pdf',
    '.zip': 'application/zip',
    '.gz': 'application/gzip',
}

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.tiff', '.tif',
                    '.bmp', '.heic', '.heif'}
VIDEO_EXTENSIONS = {'.mp4', '.mov', '.avi', '.wmv', '.mkv', '.webm', '.flv',
                    '.m4v', '.3gp'}


def _extension(filename: str) -> str:
    return PurePosixPath(filename.replace('\\', '/')).suffix.lower()


def detect_content_type(filename: str) -> str:
    """Content type from the extension table, then mimetypes, then octet-stream."""
    ext = _extension(filename)
    if ext in COMMON_MIME_TYPES:
        return COMMON_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file{ext}") if ext else (None, None)
    return guessed or DEFAULT_CONTENT_TYPE


def is_image_file(filename: str) -> bool:
    return _extension(filename) in IMAGE_EXTENSIONS


def is_video_file(filename: str) -> bool:
    return _extension(filename) in VIDEO_EXTENSIONS


def is_media_file(filename: str) -> bool:
    return is_image_file(filename) or is_video_file(filename)

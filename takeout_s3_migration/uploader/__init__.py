"""Upload driver modules."""

from takeout_s3_migration.uploader.uploader import ArchiveUploader, FileState

__all__ = ['ArchiveUploader', 'FileState']

"""Archive sources (interface and Google Takeout reader)."""

from takeout_s3_migration.source.base import ArchiveSource, MediaFile
from takeout_s3_migration.source.takeout import TakeoutArchive

__all__ = ['ArchiveSource', 'MediaFile', 'TakeoutArchive']

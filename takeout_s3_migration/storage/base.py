"""
Object store interface consumed by the upload driver.
"""
from abc import ABC, abstractmethod
from typing import BinaryIO, Dict

from takeout_s3_migration.utils.cancellation import CancellationContext


class ObjectStore(ABC):
    """Destination bucket for uploaded files."""

    @abstractmethod
    def upload_object(self, ctx: CancellationContext, stream: BinaryIO, key: str,
                      size: int, metadata: Dict[str, str], content_type: str) -> None:
        """Upload ``stream`` under ``key``. Raises on failure."""

    @abstractmethod
    def object_exists(self, ctx: CancellationContext, key: str) -> bool:
        """
        Check whether ``key`` exists.

        Returns False when the object is missing; transport and permission
        failures raise instead.
        """

    @property
    @abstractmethod
    def bucket(self) -> str:
        """Bucket name."""

    @property
    def endpoint(self) -> str:
        return ""

    @property
    def prefix(self) -> str:
        return ""

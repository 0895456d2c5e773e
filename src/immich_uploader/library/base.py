"""Interface the sync engine needs from a media library."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from immich_uploader.models import AssetRef


class MediaLibrary(ABC):
    """Source of assets to upload.

    Implementations own the binary data; the engine only holds AssetRef
    values and reads a payload for the duration of one transfer.
    """

    @abstractmethod
    def fetch_assets(self, created_after: datetime | None = None) -> list[AssetRef]:
        """Return assets created strictly after ``created_after``.

        Results are ordered by creation time, oldest first. ``None`` returns
        every asset.
        """

    @abstractmethod
    def existing_ids(self, asset_ids: Iterable[str]) -> set[str]:
        """Return the subset of ``asset_ids`` still present in the library."""

    @abstractmethod
    async def load_resource(self, asset: AssetRef) -> bytes:
        """Read the primary resource of ``asset``.

        Raises:
            AssetUnavailableError: If the payload cannot be read.
        """

"""Directory-backed media library.

Treats every image or video file below a root directory as an asset. The
asset id is the path relative to the root, so it stays stable as long as
the file is not moved. File I/O for payloads is async using aiofiles.
"""

import logging
import mimetypes
import os
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

import aiofiles

from immich_uploader.errors import AssetUnavailableError
from immich_uploader.library.base import MediaLibrary
from immich_uploader.models import AssetRef, ResourceType

logger = logging.getLogger(__name__)

# Types the stdlib table does not know on every platform
_EXTRA_TYPES = {
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".dng": "image/x-adobe-dng",
    ".webp": "image/webp",
    ".mov": "video/quicktime",
    ".m4v": "video/x-m4v",
}


def guess_mime_type(path: Path) -> str | None:
    """Guess a MIME type from the file extension."""
    suffix = path.suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type


def resource_type_for(mime_type: str | None) -> ResourceType:
    if mime_type is None:
        return ResourceType.OTHER
    if mime_type.startswith("image/"):
        return ResourceType.IMAGE
    if mime_type.startswith("video/"):
        return ResourceType.VIDEO
    return ResourceType.OTHER


class FilesystemLibrary(MediaLibrary):
    """Media library backed by a directory tree.

    Example:
        library = FilesystemLibrary(Path("~/Pictures").expanduser())
        for asset in library.fetch_assets(created_after=watermark):
            data = await library.load_resource(asset)
    """

    def __init__(self, root: Path, include_hidden: bool = False) -> None:
        """Initialize the library.

        Args:
            root: Directory to scan recursively
            include_hidden: Also consider dot-files and dot-directories
        """
        self.root = Path(root)
        self.include_hidden = include_hidden

    def _iter_files(self) -> Iterable[Path]:
        if not self.root.is_dir():
            logger.warning("Library root does not exist: root=%s", self.root)
            return

        for dirpath, dirnames, filenames in os.walk(self.root):
            if not self.include_hidden:
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if not self.include_hidden and name.startswith("."):
                    continue
                yield Path(dirpath) / name

    def _asset_for(self, path: Path) -> AssetRef | None:
        mime_type = guess_mime_type(path)
        resource_type = resource_type_for(mime_type)
        if resource_type is ResourceType.OTHER:
            return None

        try:
            stat = path.stat()
        except OSError as e:
            logger.debug("Skipping unreadable file: path=%s, error=%s", path, e)
            return None

        # st_birthtime exists on macOS and BSD; elsewhere mtime is the best proxy
        created = getattr(stat, "st_birthtime", stat.st_mtime)
        return AssetRef(
            id=path.relative_to(self.root).as_posix(),
            created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            filename=path.name,
            resource_type=resource_type,
            mime_type=mime_type,
        )

    def fetch_assets(self, created_after: datetime | None = None) -> list[AssetRef]:
        assets = []
        for path in self._iter_files():
            asset = self._asset_for(path)
            if asset is None:
                continue
            if created_after is not None and asset.created_at <= created_after:
                continue
            assets.append(asset)

        assets.sort(key=lambda a: a.created_at)
        return assets

    def existing_ids(self, asset_ids: Iterable[str]) -> set[str]:
        return {asset_id for asset_id in asset_ids if (self.root / asset_id).is_file()}

    async def load_resource(self, asset: AssetRef) -> bytes:
        filepath = self.root / asset.id
        try:
            async with aiofiles.open(filepath, "rb") as f:
                return await f.read()
        except OSError as e:
            raise AssetUnavailableError(f"Cannot read {asset.id}: {e}") from e

"""Media library adapters."""

from immich_uploader.library.base import MediaLibrary
from immich_uploader.library.filesystem import FilesystemLibrary

__all__ = ["FilesystemLibrary", "MediaLibrary"]

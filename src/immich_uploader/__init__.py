"""Immich uploader - sync a local photo library to an Immich server."""

__version__ = "0.1.0"

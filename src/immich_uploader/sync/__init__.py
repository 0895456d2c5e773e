"""Sync module: tracker, wire protocol and connection probe."""

from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.multipart import EncodedRequest, encode_asset
from immich_uploader.sync.probe import ConnectionProbe, ProbeResult, ProbeState
from immich_uploader.sync.state import MemoryStateStore, SqliteStateStore, StateStore
from immich_uploader.sync.tracker import SyncTracker, TrackerCounts
from immich_uploader.sync.uploader import AssetUploader

__all__ = [
    "AssetUploader",
    "CancellationToken",
    "ConnectionProbe",
    "EncodedRequest",
    "MemoryStateStore",
    "ProbeResult",
    "ProbeState",
    "SqliteStateStore",
    "StateStore",
    "SyncTracker",
    "TrackerCounts",
    "encode_asset",
]

"""Upload tracking shared by the foreground driver and the background host.

Assets created after the watermark are automatically in scope for upload.
Only uploaded and failed assets are recorded explicitly; everything else in
scope is pending.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from immich_uploader.library.base import MediaLibrary
from immich_uploader.logging import log_tracking_change
from immich_uploader.models import AssetRef, SyncState, UploadStatus
from immich_uploader.sync.state import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerCounts:
    uploaded: int
    failed: int


class SyncTracker:
    """Watermark plus uploaded/failed bookkeeping over a StateStore.

    Construct one per process and pass it to the drivers that need it.
    There is no way to move an id out of the uploaded set
    other than pruning it once the asset is gone from the library.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    @property
    def store(self) -> StateStore:
        return self._store

    # --- Watermark ---

    def enable_tracking(self) -> datetime:
        """Start tracking from now, discarding any previous bookkeeping."""
        now = datetime.now(timezone.utc)
        self._store.reset(now)
        log_tracking_change(logger, enabled=True, watermark=now)
        return now

    def disable_tracking(self) -> None:
        """Stop tracking. Uploaded and failed history is kept."""
        self._store.set_enabled_at(None)
        log_tracking_change(logger, enabled=False)

    @property
    def enabled_at(self) -> datetime | None:
        return self._store.get_enabled_at()

    @property
    def is_tracking_enabled(self) -> bool:
        return self.enabled_at is not None

    # --- Asset status ---

    def mark_uploaded(self, asset_id: str) -> None:
        """Record a confirmed upload, clearing any earlier failure.

        Args:
            asset_id: Library identifier of the asset
        """
        if self._store.add_uploaded(asset_id):
            logger.debug("Marked asset as uploaded: asset_id=%s", asset_id)

    def mark_failed(self, asset_id: str) -> None:
        """Record a failed upload. No-op for an asset already uploaded.

        Args:
            asset_id: Library identifier of the asset
        """
        if self._store.add_failed(asset_id):
            logger.debug("Marked asset as failed: asset_id=%s", asset_id)

    def status(self, asset_id: str) -> UploadStatus:
        """Derive the asset's status from the current sets.

        Args:
            asset_id: Library identifier of the asset

        Returns:
            UPLOADED, FAILED, or PENDING when in neither set
        """
        return self.snapshot().status(asset_id)

    def uploaded_ids(self) -> set[str]:
        return self._store.uploaded_ids()

    def failed_ids(self) -> set[str]:
        return self._store.failed_ids()

    def counts(self) -> TrackerCounts:
        return TrackerCounts(
            uploaded=len(self._store.uploaded_ids()),
            failed=len(self._store.failed_ids()),
        )

    def snapshot(self) -> SyncState:
        return self._store.snapshot()

    # --- Retry ---

    def retry_all(self) -> set[str]:
        """Clear every failure so those assets become candidates again."""
        cleared = self._store.clear_failed()
        logger.info("Retrying %d failed uploads", len(cleared))
        return cleared

    def retry_one(self, asset_id: str) -> None:
        if self._store.remove_failed(asset_id):
            logger.debug("Retrying failed upload: asset_id=%s", asset_id)

    def clear_all(self) -> None:
        """Forget the watermark and all recorded outcomes."""
        self._store.clear_all()
        logger.info("Cleared all tracking data")

    # --- Candidates ---

    def candidates(
        self,
        assets: Iterable[AssetRef],
        snapshot: SyncState | None = None,
    ) -> list[AssetRef]:
        """Filter ``assets`` down to the ones that still need uploading.

        Args:
            assets: Assets from the library (any order)
            snapshot: State to filter against; read fresh when omitted

        Returns:
            In-scope assets that are neither uploaded nor failed, oldest first
        """
        state = snapshot or self.snapshot()
        if state.enabled_at is None:
            return []

        selected = [
            asset
            for asset in assets
            if asset.created_at > state.enabled_at
            and asset.id not in state.uploaded
            and asset.id not in state.failed
        ]
        selected.sort(key=lambda a: a.created_at)
        return selected

    def pending_count(self, assets: Iterable[AssetRef]) -> int:
        return len(self.candidates(assets))

    # --- Housekeeping ---

    def prune_deleted(self, existing_ids: set[str]) -> int:
        """Drop tracked ids whose assets are no longer in the library.

        Returns:
            Number of entries removed across both sets
        """
        tracked = self._store.uploaded_ids() | self._store.failed_ids()
        stale = tracked - existing_ids
        if not stale:
            return 0

        removed = self._store.remove_ids(stale)
        logger.info("Cleaned up %d deleted asset(s)", removed)
        return removed

    def prune_deleted_in_background(self, library: MediaLibrary) -> threading.Thread:
        """Run prune_deleted on a daemon thread.

        Failures are logged and dropped; pruning is housekeeping only and
        must never hold up the caller.
        """

        def _prune() -> None:
            try:
                tracked = self._store.uploaded_ids() | self._store.failed_ids()
                if not tracked:
                    return
                self.prune_deleted(library.existing_ids(tracked))
            except Exception as e:
                logger.warning("Background prune failed: %s", e, exc_info=True)

        thread = threading.Thread(target=_prune, name="tracker-prune", daemon=True)
        thread.start()
        return thread

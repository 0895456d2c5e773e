"""Foreground sync: upload every pending asset now, one at a time."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from immich_uploader.errors import AssetUnavailableError, ConfigError, EncodingError
from immich_uploader.library.base import MediaLibrary
from immich_uploader.models import AssetRef, UploadOutcome
from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.tracker import SyncTracker
from immich_uploader.sync.uploader import AssetUploader

logger = logging.getLogger(__name__)


class SyncPhase(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    UPLOADING = "uploading"
    NOTHING_TO_DO = "nothing_to_do"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class SyncProgress:
    """Progress of a manual run as shown to the user."""

    phase: SyncPhase = SyncPhase.IDLE
    uploaded: int = 0
    failed: int = 0
    total: int = 0
    message: str = ""

    @property
    def attempted(self) -> int:
        return self.uploaded + self.failed

    @property
    def remaining(self) -> int:
        return max(self.total - self.attempted, 0)


class ManualSyncDriver:
    """User-initiated upload of all candidates.

    Only one run may be active at a time. Progress is published to
    registered callbacks after every state change.

    Example:
        driver = ManualSyncDriver(tracker, library, uploader)
        driver.on_progress(lambda p: print(p.message))
        progress = await driver.run()
    """

    def __init__(
        self,
        tracker: SyncTracker,
        library: MediaLibrary,
        uploader: AssetUploader,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.tracker = tracker
        self.library = library
        self.uploader = uploader
        self.cancel_token = cancel_token or CancellationToken()

        self._progress = SyncProgress()
        self._running = False
        self._task: asyncio.Task | None = None
        self._progress_callbacks: list[Callable[[SyncProgress], None]] = []

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._running

    def on_progress(self, callback: Callable[[SyncProgress], None]) -> None:
        """Register callback for progress updates.

        Args:
            callback: Function called with the new SyncProgress
        """
        self._progress_callbacks.append(callback)

    def _publish(self, progress: SyncProgress) -> None:
        self._progress = progress
        for callback in self._progress_callbacks:
            try:
                callback(progress)
            except Exception:
                logger.debug("Progress callback failed", exc_info=True)

    def start(self) -> bool:
        """Schedule a run on the current event loop.

        Returns:
            False if a run is already active, True otherwise
        """
        if self._running:
            logger.info("Manual sync already running")
            return False

        self._running = True
        self.cancel_token.reset()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def run(self) -> SyncProgress:
        """Run to completion and return the final progress.

        If a run is already active this waits for it instead of starting
        another.
        """
        self.start()
        return await self.wait()

    async def wait(self) -> SyncProgress:
        """Wait for the active run, if any, and return the latest progress."""
        if self._task is not None:
            await self._task
        return self._progress

    def cancel(self) -> None:
        """Stop before the next item; the current transfer finishes."""
        if self._running:
            logger.info("Manual sync cancellation requested")
        self.cancel_token.cancel()

    async def _run(self) -> None:
        try:
            await self._sync()
        except Exception as e:
            logger.exception("Manual sync failed")
            current = self._progress
            self._publish(
                SyncProgress(
                    SyncPhase.ERROR,
                    current.uploaded,
                    current.failed,
                    current.total,
                    f"Error: {e}",
                )
            )
        finally:
            self._running = False

    async def _sync(self) -> None:
        try:
            self.uploader.validate_config()
        except ConfigError as e:
            self._publish(SyncProgress(SyncPhase.ERROR, message=str(e)))
            return

        self._publish(SyncProgress(SyncPhase.FETCHING, message="Fetching assets..."))

        snapshot = self.tracker.snapshot()
        if not snapshot.is_enabled:
            self._publish(SyncProgress(SyncPhase.ERROR, message="Tracking is not enabled"))
            return

        assets = self.library.fetch_assets(created_after=snapshot.enabled_at)
        candidates = self.tracker.candidates(assets, snapshot=snapshot)
        total = len(candidates)
        if total == 0:
            self._publish(SyncProgress(SyncPhase.NOTHING_TO_DO, message="No pending assets"))
            return

        logger.info("Manual sync starting: %d asset(s)", total)
        uploaded = failed = 0

        for index, asset in enumerate(candidates, start=1):
            if self.cancel_token.cancelled:
                self._publish(
                    SyncProgress(
                        SyncPhase.CANCELLED,
                        uploaded,
                        failed,
                        total,
                        f"Cancelled - {uploaded} uploaded, {failed} failed",
                    )
                )
                logger.info(
                    "Manual sync cancelled: uploaded=%d, failed=%d, remaining=%d",
                    uploaded,
                    failed,
                    total - uploaded - failed,
                )
                return

            self._publish(
                SyncProgress(
                    SyncPhase.UPLOADING,
                    uploaded,
                    failed,
                    total,
                    f"Uploading {index} of {total}...",
                )
            )

            outcome = await self._upload_one(asset)
            if outcome.is_config_error:
                self._publish(
                    SyncProgress(
                        SyncPhase.ERROR, uploaded, failed, total, outcome.reason or ""
                    )
                )
                return

            if outcome.success:
                self.tracker.mark_uploaded(asset.id)
                uploaded += 1
            else:
                self.tracker.mark_failed(asset.id)
                failed += 1

            self._publish(
                SyncProgress(
                    SyncPhase.UPLOADING,
                    uploaded,
                    failed,
                    total,
                    f"Uploading {index} of {total}...",
                )
            )

        self._publish(
            SyncProgress(
                SyncPhase.DONE,
                uploaded,
                failed,
                total,
                f"Done - {uploaded} uploaded, {failed} failed",
            )
        )
        logger.info("Manual sync finished: uploaded=%d, failed=%d", uploaded, failed)

    async def _upload_one(self, asset: AssetRef) -> UploadOutcome:
        try:
            payload = await self.library.load_resource(asset)
        except AssetUnavailableError as e:
            logger.warning("Cannot load asset: asset_id=%s, error=%s", asset.id, e)
            return UploadOutcome.failed(f"Asset unavailable: {e}")

        try:
            return await self.uploader.upload(asset, payload)
        except EncodingError as e:
            logger.error("Cannot encode asset: asset_id=%s, error=%s", asset.id, e)
            return UploadOutcome.failed(f"Encoding error: {e}")

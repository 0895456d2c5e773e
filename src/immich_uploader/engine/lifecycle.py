"""Background cycle: retry failed jobs, settle finished ones, enqueue new work."""

import logging
from dataclasses import dataclass
from enum import Enum

from immich_uploader.engine.host import JobAction, JobHost, PreparedUpload
from immich_uploader.engine.notifier import LoggingNotifier, Notifier
from immich_uploader.errors import (
    AssetUnavailableError,
    ConfigError,
    EncodingError,
    JobHostError,
    LimitExceeded,
)
from immich_uploader.library.base import MediaLibrary
from immich_uploader.logging import log_cycle_result
from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.multipart import DEVICE_ID, encode_asset
from immich_uploader.sync.tracker import SyncTracker
from immich_uploader.sync.uploader import resolve_upload_endpoint

logger = logging.getLogger(__name__)


class CycleResult(Enum):
    """What the host should do after a cycle."""

    COMPLETED = "completed"
    PROCESSING = "processing"  # re-invoke soon
    FAILED = "failed"


@dataclass
class CycleReport:
    result: CycleResult = CycleResult.COMPLETED
    retried: int = 0
    acknowledged: int = 0
    abandoned: int = 0
    enqueued: int = 0
    skipped: int = 0


class _Cancelled(Exception):
    """Raised internally when the token is observed between passes."""


class JobLifecycleController:
    """Drives one host-triggered cycle over the job host.

    The controller never talks to the server. It hands encoded requests to
    the host, and the tracker learns about results only through the
    acknowledge pass.

    Example:
        controller = JobLifecycleController(tracker, library, queue, url, key)
        result = await controller.run_cycle()
    """

    def __init__(
        self,
        tracker: SyncTracker,
        library: MediaLibrary,
        host: JobHost,
        base_url: str,
        api_key: str,
        notifier: Notifier | None = None,
        cancel_token: CancellationToken | None = None,
        device_id: str = DEVICE_ID,
    ) -> None:
        self.tracker = tracker
        self.library = library
        self.host = host
        self.base_url = base_url
        self.api_key = api_key
        self.device_id = device_id
        self.notifier = notifier or LoggingNotifier()
        self.cancel_token = cancel_token or CancellationToken()
        self._last_report: CycleReport | None = None

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def notify_cancel(self) -> None:
        """Host entry point: stop at the next item boundary."""
        logger.info("Cycle cancellation requested")
        self.cancel_token.cancel()

    async def run_cycle(self) -> CycleResult:
        """Run retry, acknowledge, abandon and enqueue passes in that order.

        Returns:
            COMPLETED when all work was handed off, PROCESSING on backpressure
            or cancellation, FAILED on an unexpected error
        """
        report = CycleReport()
        self._last_report = report

        try:
            self._check_cancelled()
            report.retried = self._retry_pass()
            self._check_cancelled()
            report.acknowledged = self._acknowledge_pass()
            self._check_cancelled()
            report.abandoned = self._abandon_pass()
            self._check_cancelled()
            await self._enqueue_pass(report)
            if self.cancel_token.cancelled:
                report.result = CycleResult.PROCESSING
        except _Cancelled:
            report.result = CycleResult.PROCESSING
        except LimitExceeded as e:
            logger.info("Host at capacity, cycle will resume: %s", e)
            report.result = CycleResult.PROCESSING
        except Exception:
            logger.exception("Background cycle failed")
            report.result = CycleResult.FAILED

        log_cycle_result(
            logger,
            report.result.value,
            retried=report.retried,
            acknowledged=report.acknowledged,
            enqueued=report.enqueued,
            abandoned=report.abandoned,
        )
        return report.result

    def _check_cancelled(self) -> None:
        if self.cancel_token.cancelled:
            raise _Cancelled()

    def _retry_pass(self) -> int:
        retried = 0
        for job in self.host.fetch_jobs(JobAction.RETRY):
            if self.cancel_token.cancelled:
                break
            try:
                self.host.retry(job)
                retried += 1
                logger.debug("Retried job: job_id=%s, asset_id=%s", job.job_id, job.asset_id)
            except JobHostError as e:
                logger.warning("Retry failed: job_id=%s, error=%s", job.job_id, e)
        return retried

    def _acknowledge_pass(self) -> int:
        acknowledged = 0
        for job in self.host.fetch_jobs(JobAction.ACKNOWLEDGE):
            if self.cancel_token.cancelled:
                break
            # Record before releasing the slot so a crash in between only
            # repeats an idempotent mark
            self.tracker.mark_uploaded(job.asset_id)
            try:
                self.host.acknowledge(job)
                acknowledged += 1
            except JobHostError as e:
                logger.warning("Acknowledge failed: job_id=%s, error=%s", job.job_id, e)

        if acknowledged:
            self.notifier.notify(
                "Upload Complete",
                f"{acknowledged} photo(s) uploaded successfully",
            )
        return acknowledged

    def _abandon_pass(self) -> int:
        abandoned = 0
        for job in self.host.fetch_jobs(JobAction.ABANDON):
            if self.cancel_token.cancelled:
                break
            # Failed before release so the asset is never re-enqueued as pending
            self.tracker.mark_failed(job.asset_id)
            try:
                self.host.abandon(job)
                abandoned += 1
                logger.warning(
                    "Gave up on job: job_id=%s, asset_id=%s, attempts=%d",
                    job.job_id,
                    job.asset_id,
                    job.attempts,
                )
            except JobHostError as e:
                logger.warning("Abandon failed: job_id=%s, error=%s", job.job_id, e)
        return abandoned

    async def _enqueue_pass(self, report: CycleReport) -> None:
        if not self.tracker.is_tracking_enabled:
            logger.debug("Tracking disabled, nothing to enqueue")
            return

        try:
            destination = resolve_upload_endpoint(self.base_url, self.api_key)
        except ConfigError as e:
            logger.error("Skipping discovery, bad configuration: %s", e)
            return

        snapshot = self.tracker.snapshot()
        assets = self.library.fetch_assets(created_after=snapshot.enabled_at)
        queued = self.host.queued_asset_ids()
        candidates = [
            asset
            for asset in self.tracker.candidates(assets, snapshot=snapshot)
            if asset.id not in queued
        ]
        if not candidates:
            return

        try:
            for asset in candidates:
                if self.cancel_token.cancelled:
                    break

                try:
                    payload = await self.library.load_resource(asset)
                except AssetUnavailableError as e:
                    logger.warning("Skipping asset: asset_id=%s, error=%s", asset.id, e)
                    report.skipped += 1
                    continue

                try:
                    encoded = encode_asset(asset, payload, device_id=self.device_id)
                except EncodingError as e:
                    logger.error("Cannot encode asset: asset_id=%s, error=%s", asset.id, e)
                    self.tracker.mark_failed(asset.id)
                    continue

                prepared = PreparedUpload(
                    asset_id=asset.id, destination=destination, encoded=encoded
                )
                job_id = self.host.create_job(prepared, asset)
                report.enqueued += 1
                logger.debug("Created job: job_id=%s, asset_id=%s", job_id, asset.id)
        finally:
            if report.enqueued:
                self.notifier.notify(
                    "Uploading Photos",
                    f"Starting upload of {report.enqueued} photo(s)",
                )

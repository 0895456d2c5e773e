"""Tests for the background job lifecycle controller."""

import httpx
import pytest

from conftest import API_KEY, BASE_URL, FakeJobHost, after, make_asset, status_handler

from immich_uploader.engine.host import JobAction
from immich_uploader.engine.job_queue import SqliteJobQueue
from immich_uploader.engine.lifecycle import CycleResult, JobLifecycleController
from immich_uploader.models import UploadStatus
from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.uploader import AssetUploader


def _controller(tracker, library, host, notifier, api_key=API_KEY, **kwargs):
    return JobLifecycleController(
        tracker, library, host, BASE_URL, api_key, notifier=notifier, **kwargs
    )


def _add_assets(library, t0, count, prefix="P"):
    return [library.add(make_asset(f"{prefix}{i}", after(t0, i + 1))) for i in range(count)]


class TestEnqueuePass:
    """Test discovery and job creation."""

    @pytest.mark.asyncio
    async def test_tracking_disabled_completes_without_work(
        self, memory_tracker, library, host, notifier
    ):
        controller = _controller(memory_tracker, library, host, notifier)

        assert await controller.run_cycle() is CycleResult.COMPLETED
        assert host.created == []
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_creates_one_job_per_candidate(self, memory_tracker, library, host, notifier):
        """Each candidate becomes a job, oldest first, with one notification."""
        t0 = memory_tracker.enable_tracking()
        library.add(make_asset("old", after(t0, -5)))
        _add_assets(library, t0, 3)
        memory_tracker.mark_failed("P2")

        result = await _controller(memory_tracker, library, host, notifier).run_cycle()

        assert result is CycleResult.COMPLETED
        assert host.created == ["P0", "P1"]
        assert notifier.messages == [("Uploading Photos", "Starting upload of 2 photo(s)")]

    @pytest.mark.asyncio
    async def test_jobs_carry_encoded_request(self, memory_tracker, library, notifier):
        """The prepared upload targets the assets endpoint with a full body."""
        prepared = []

        class CapturingHost(FakeJobHost):
            def create_job(self, upload, asset):
                prepared.append(upload)
                return super().create_job(upload, asset)

        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 1)

        await _controller(memory_tracker, library, CapturingHost(), notifier).run_cycle()

        assert prepared[0].destination == BASE_URL + "assets"
        assert prepared[0].encoded.body.endswith(f"--{prepared[0].encoded.boundary}--\r\n".encode())
        assert b"payload-P0" in prepared[0].encoded.body

    @pytest.mark.asyncio
    async def test_already_queued_assets_skipped(self, memory_tracker, library, host, notifier):
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        controller = _controller(memory_tracker, library, host, notifier)

        await controller.run_cycle()
        await controller.run_cycle()

        assert host.created == ["P0", "P1"]

    @pytest.mark.asyncio
    async def test_unavailable_asset_skipped(self, memory_tracker, library, host, notifier):
        """A payload that cannot load is skipped, left pending."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        library.unavailable.add("P0")

        result = await _controller(memory_tracker, library, host, notifier).run_cycle()

        assert result is CycleResult.COMPLETED
        assert host.created == ["P1"]
        assert memory_tracker.status("P0") is UploadStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_api_key_skips_discovery(self, memory_tracker, library, host, notifier):
        """Bad configuration is logged and the cycle still completes."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)

        controller = _controller(memory_tracker, library, host, notifier, api_key="")

        assert await controller.run_cycle() is CycleResult.COMPLETED
        assert host.created == []
        assert library.loaded == []


class TestBackpressure:
    """Test the in-flight ceiling."""

    @pytest.mark.asyncio
    async def test_limit_returns_processing(self, memory_tracker, library, notifier):
        """Hitting the ceiling ends the cycle in processing and still notifies."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 5)
        host = FakeJobHost(max_in_flight=2)

        result = await _controller(memory_tracker, library, host, notifier).run_cycle()

        assert result is CycleResult.PROCESSING
        assert host.created == ["P0", "P1"]
        assert notifier.messages == [("Uploading Photos", "Starting upload of 2 photo(s)")]

    @pytest.mark.asyncio
    async def test_resume_without_duplicates(self, memory_tracker, library, notifier):
        """Re-invocation with capacity enqueues only the remaining assets."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 5)
        host = FakeJobHost(max_in_flight=2)
        controller = _controller(memory_tracker, library, host, notifier)

        assert await controller.run_cycle() is CycleResult.PROCESSING
        host.max_in_flight = 10
        assert await controller.run_cycle() is CycleResult.COMPLETED

        assert host.created == ["P0", "P1", "P2", "P3", "P4"]
        assert len(set(host.created)) == 5


class TestRetryAndAcknowledge:
    """Test the retry and acknowledge passes."""

    @pytest.mark.asyncio
    async def test_completed_jobs_marked_and_acknowledged(
        self, memory_tracker, library, host, notifier
    ):
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 3)
        controller = _controller(memory_tracker, library, host, notifier)
        await controller.run_cycle()

        host.finish("P0")
        host.finish("P1")
        notifier.messages.clear()
        await controller.run_cycle()

        assert memory_tracker.uploaded_ids() == {"P0", "P1"}
        assert sorted(host.acknowledged) == ["P0", "P1"]
        assert notifier.messages == [("Upload Complete", "2 photo(s) uploaded successfully")]
        assert controller.last_report.acknowledged == 2

    @pytest.mark.asyncio
    async def test_failed_jobs_retried(self, memory_tracker, library, host, notifier):
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        controller = _controller(memory_tracker, library, host, notifier)
        await controller.run_cycle()

        host.finish("P1", success=False)
        await controller.run_cycle()

        assert host.retried == ["P1"]
        assert controller.last_report.retried == 1
        assert host.created == ["P0", "P1"]

    @pytest.mark.asyncio
    async def test_acknowledge_failure_keeps_tracker_write(
        self, memory_tracker, library, host, notifier
    ):
        """A rejected acknowledgment is skipped; the upload stays recorded."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        controller = _controller(memory_tracker, library, host, notifier)
        await controller.run_cycle()

        host.finish("P0")
        host.finish("P1")
        host.reject_acknowledge.add("P0")
        result = await controller.run_cycle()

        assert result is CycleResult.COMPLETED
        assert memory_tracker.uploaded_ids() == {"P0", "P1"}
        assert host.acknowledged == ["P1"]
        assert controller.last_report.acknowledged == 1

    @pytest.mark.asyncio
    async def test_exhausted_jobs_marked_failed_and_released(
        self, memory_tracker, library, host, notifier
    ):
        """A job out of attempts becomes a failed asset and frees its slot."""
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        controller = _controller(memory_tracker, library, host, notifier)
        await controller.run_cycle()

        host.exhaust("P0")
        result = await controller.run_cycle()

        assert result is CycleResult.COMPLETED
        assert host.abandoned == ["P0"]
        assert memory_tracker.status("P0") is UploadStatus.FAILED
        assert controller.last_report.abandoned == 1
        assert host.queued_asset_ids() == {"P1"}
        assert host.created == ["P0", "P1"]

    @pytest.mark.asyncio
    async def test_no_notification_without_acknowledgments(
        self, memory_tracker, library, host, notifier
    ):
        memory_tracker.enable_tracking()
        await _controller(memory_tracker, library, host, notifier).run_cycle()
        assert notifier.messages == []


class TestCancellationAndFailure:
    """Test cooperative cancellation and unexpected errors."""

    @pytest.mark.asyncio
    async def test_cancel_before_cycle(self, memory_tracker, library, host, notifier):
        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 2)
        controller = _controller(memory_tracker, library, host, notifier)

        controller.notify_cancel()

        assert await controller.run_cycle() is CycleResult.PROCESSING
        assert host.created == []

    @pytest.mark.asyncio
    async def test_cancel_between_items(self, memory_tracker, library, notifier):
        """Cancellation observed mid-pass stops after the current item."""
        token = CancellationToken()

        class CancellingHost(FakeJobHost):
            def create_job(self, upload, asset):
                job_id = super().create_job(upload, asset)
                token.cancel()
                return job_id

        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 3)
        host = CancellingHost()
        controller = _controller(memory_tracker, library, host, notifier, cancel_token=token)

        assert await controller.run_cycle() is CycleResult.PROCESSING
        assert host.created == ["P0"]
        assert notifier.messages == [("Uploading Photos", "Starting upload of 1 photo(s)")]

    @pytest.mark.asyncio
    async def test_cancel_during_retry_pass(self, memory_tracker, library, notifier):
        """Remaining retries and later passes are skipped."""
        token = CancellationToken()

        class CancellingHost(FakeJobHost):
            def retry(self, job):
                super().retry(job)
                token.cancel()

        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 4)
        host = CancellingHost()
        controller = _controller(memory_tracker, library, host, notifier, cancel_token=token)
        await controller.run_cycle()

        host.finish("P0", success=False)
        host.finish("P1", success=False)
        host.finish("P2")

        assert await controller.run_cycle() is CycleResult.PROCESSING
        assert host.retried == ["P0"]
        assert controller.last_report.retried == 1
        assert [job.asset_id for job in host.fetch_jobs(JobAction.RETRY)] == ["P1"]
        assert host.acknowledged == []
        assert memory_tracker.status("P2") is UploadStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_during_acknowledge_pass(self, memory_tracker, library, notifier):
        """Acknowledged jobs stay uploaded and only they are announced."""
        token = CancellationToken()

        class CancellingHost(FakeJobHost):
            def acknowledge(self, job):
                super().acknowledge(job)
                token.cancel()

        t0 = memory_tracker.enable_tracking()
        _add_assets(library, t0, 3)
        host = CancellingHost()
        controller = _controller(memory_tracker, library, host, notifier, cancel_token=token)
        await controller.run_cycle()

        for asset_id in ("P0", "P1", "P2"):
            host.finish(asset_id)
        notifier.messages.clear()

        assert await controller.run_cycle() is CycleResult.PROCESSING
        assert host.acknowledged == ["P0"]
        assert memory_tracker.uploaded_ids() == {"P0"}
        assert memory_tracker.status("P1") is UploadStatus.PENDING
        assert controller.last_report.acknowledged == 1
        assert notifier.messages == [("Upload Complete", "1 photo(s) uploaded successfully")]

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_cycle(self, memory_tracker, library, notifier):
        class BrokenHost(FakeJobHost):
            def fetch_jobs(self, action):
                raise RuntimeError("host crashed")

        memory_tracker.enable_tracking()
        controller = _controller(memory_tracker, library, BrokenHost(), notifier)

        assert await controller.run_cycle() is CycleResult.FAILED
        assert controller.last_report.result is CycleResult.FAILED


class TestWithJobQueue:
    """Test cycles against the SQLite job queue and its transfer worker."""

    @pytest.mark.asyncio
    async def test_rejected_asset_fails_and_frees_slot(
        self, memory_tracker, library, notifier, tmp_path
    ):
        """A server that keeps rejecting one asset does not stall the queue."""
        queue = SqliteJobQueue(
            tmp_path / "upload_jobs.db", max_in_flight=1, retry_backoff=0, max_attempts=2
        )
        t0 = memory_tracker.enable_tracking()
        library.add(make_asset("BAD", after(t0, 1)))
        library.add(make_asset("NEW", after(t0, 2)))
        client = httpx.AsyncClient(transport=httpx.MockTransport(status_handler({"BAD": 500})))
        uploader = AssetUploader(BASE_URL, API_KEY, client=client)
        controller = _controller(memory_tracker, library, queue, notifier)

        results = []
        for _ in range(4):
            results.append(await controller.run_cycle())
            await queue.drain(uploader)

        assert results == [
            CycleResult.PROCESSING,
            CycleResult.PROCESSING,
            CycleResult.COMPLETED,
            CycleResult.COMPLETED,
        ]
        assert memory_tracker.status("BAD") is UploadStatus.FAILED
        assert memory_tracker.status("NEW") is UploadStatus.UPLOADED
        assert queue.get_stats()["total"] == 0

        await client.aclose()
        queue.close()

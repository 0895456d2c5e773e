"""Shared fixtures: in-memory library, fake job host and recording notifier."""

import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from immich_uploader.engine.host import JobAction, JobHost, PreparedUpload, UploadJob
from immich_uploader.engine.notifier import Notifier
from immich_uploader.errors import AssetUnavailableError, JobHostError, LimitExceeded
from immich_uploader.library.base import MediaLibrary
from immich_uploader.models import AssetRef, ResourceType
from immich_uploader.sync.state import MemoryStateStore, SqliteStateStore
from immich_uploader.sync.tracker import SyncTracker

BASE_URL = "https://photos.example.com:443/api/"
API_KEY = "test-key"


def make_asset(
    asset_id: str,
    created_at: datetime,
    filename: str | None = None,
    resource_type: ResourceType = ResourceType.IMAGE,
) -> AssetRef:
    return AssetRef(
        id=asset_id,
        created_at=created_at,
        filename=filename or f"{asset_id}.jpg",
        resource_type=resource_type,
    )


class FakeLibrary(MediaLibrary):
    """Library over a list of AssetRef values with in-memory payloads."""

    def __init__(self, assets: Iterable[AssetRef] = ()) -> None:
        self.assets: list[AssetRef] = list(assets)
        self.unavailable: set[str] = set()
        self.loaded: list[str] = []

    def add(self, asset: AssetRef) -> AssetRef:
        self.assets.append(asset)
        return asset

    def fetch_assets(self, created_after: datetime | None = None) -> list[AssetRef]:
        selected = [
            a for a in self.assets if created_after is None or a.created_at > created_after
        ]
        return sorted(selected, key=lambda a: a.created_at)

    def existing_ids(self, asset_ids: Iterable[str]) -> set[str]:
        present = {a.id for a in self.assets}
        return {asset_id for asset_id in asset_ids if asset_id in present}

    async def load_resource(self, asset: AssetRef) -> bytes:
        if asset.id in self.unavailable:
            raise AssetUnavailableError(f"{asset.id} is offline")
        self.loaded.append(asset.id)
        return f"payload-{asset.id}".encode()


class FakeJobHost(JobHost):
    """Job host that keeps jobs in a dict and enforces an in-flight ceiling."""

    def __init__(self, max_in_flight: int = 50) -> None:
        self.max_in_flight = max_in_flight
        self.jobs: dict[str, tuple[UploadJob, str]] = {}
        self.created: list[str] = []
        self.retried: list[str] = []
        self.acknowledged: list[str] = []
        self.abandoned: list[str] = []
        self.reject_acknowledge: set[str] = set()

    def create_job(self, upload: PreparedUpload, asset: AssetRef) -> str:
        if len(self.jobs) >= self.max_in_flight:
            raise LimitExceeded("ceiling reached")
        job_id = uuid.uuid4().hex
        job = UploadJob(job_id=job_id, asset_id=asset.id, filename=asset.filename)
        self.jobs[job_id] = (job, "queued")
        self.created.append(asset.id)
        return job_id

    def fetch_jobs(self, action: JobAction) -> list[UploadJob]:
        wanted = {
            JobAction.RETRY: "failed",
            JobAction.ACKNOWLEDGE: "completed",
            JobAction.ABANDON: "exhausted",
        }[action]
        return [job for job, state in self.jobs.values() if state == wanted]

    def retry(self, job: UploadJob) -> None:
        self.jobs[job.job_id] = (job, "queued")
        self.retried.append(job.asset_id)

    def acknowledge(self, job: UploadJob) -> None:
        if job.asset_id in self.reject_acknowledge:
            raise JobHostError(f"job {job.job_id} vanished")
        del self.jobs[job.job_id]
        self.acknowledged.append(job.asset_id)

    def abandon(self, job: UploadJob) -> None:
        del self.jobs[job.job_id]
        self.abandoned.append(job.asset_id)

    def queued_asset_ids(self) -> set[str]:
        return {job.asset_id for job, _ in self.jobs.values()}

    def finish(self, asset_id: str, success: bool = True) -> None:
        """Simulate the transfer worker completing or failing a job."""
        self._set_state(asset_id, "completed" if success else "failed")

    def exhaust(self, asset_id: str) -> None:
        """Simulate a job failing its last allowed attempt."""
        self._set_state(asset_id, "exhausted")

    def _set_state(self, asset_id: str, state: str) -> None:
        for job_id, (job, _) in list(self.jobs.items()):
            if job.asset_id == asset_id:
                self.jobs[job_id] = (job, state)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> None:
        self.messages.append((title, body))


def status_handler(statuses: dict[str, int], default: int = 201):
    """MockTransport handler answering per deviceAssetId."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = request.content
        for asset_id, status in statuses.items():
            if f'name="deviceAssetId"\r\n\r\n{asset_id}\r\n'.encode() in body:
                return httpx.Response(status)
        return httpx.Response(default)

    handler.requests = seen
    return handler


@pytest.fixture(params=["memory", "sqlite"])
def tracker(request, tmp_path):
    """Tracker over each store backend."""
    if request.param == "memory":
        store = MemoryStateStore()
    else:
        store = SqliteStateStore(tmp_path / "sync_state.db")
    yield SyncTracker(store)
    store.close()


@pytest.fixture
def memory_tracker():
    return SyncTracker(MemoryStateStore())


@pytest.fixture
def library():
    return FakeLibrary()


@pytest.fixture
def host():
    return FakeJobHost()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def after(watermark: datetime, seconds: float) -> datetime:
    return watermark + timedelta(seconds=seconds)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)

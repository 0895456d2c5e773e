"""Interface to the background job host.

The host owns the queue of outbound transfers and performs them; the
lifecycle controller only creates, retries and acknowledges jobs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from immich_uploader.models import AssetRef
from immich_uploader.sync.multipart import EncodedRequest


class JobAction(Enum):
    """What the host expects the controller to do with a job."""

    RETRY = "retry"
    ACKNOWLEDGE = "acknowledge"
    ABANDON = "abandon"  # out of attempts


@dataclass(frozen=True)
class UploadJob:
    """One asset resource in flight with the host."""

    job_id: str
    asset_id: str
    filename: str
    attempts: int = 0


@dataclass(frozen=True)
class PreparedUpload:
    """An encoded request ready to hand to the host."""

    asset_id: str
    destination: str
    encoded: EncodedRequest


class JobHost(ABC):
    """Background execution host for upload jobs."""

    @abstractmethod
    def fetch_jobs(self, action: JobAction) -> list[UploadJob]:
        """List jobs waiting for ``action``."""

    @abstractmethod
    def retry(self, job: UploadJob) -> None:
        """Resubmit a failed job to its original destination.

        Raises:
            JobHostError: If the job can no longer be retried
        """

    @abstractmethod
    def acknowledge(self, job: UploadJob) -> None:
        """Release a completed job's in-flight slot.

        Raises:
            JobHostError: If the job can no longer be acknowledged
        """

    @abstractmethod
    def abandon(self, job: UploadJob) -> None:
        """Drop a job that used up its attempts, releasing its slot.

        Raises:
            JobHostError: If the job is not waiting to be abandoned
        """

    @abstractmethod
    def create_job(self, upload: PreparedUpload, asset: AssetRef) -> str:
        """Queue a new transfer and return its job id.

        Raises:
            LimitExceeded: If the in-flight ceiling is reached
        """

    @abstractmethod
    def queued_asset_ids(self) -> set[str]:
        """Asset ids that already have a job, in any state."""

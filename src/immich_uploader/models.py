"""Core data types shared by the tracker, wire protocol and drivers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ResourceType(Enum):
    """Kind of primary resource an asset carries."""

    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"


class UploadStatus(Enum):
    """Derived per-asset status. Never persisted."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    FAILED = "failed"


@dataclass(frozen=True)
class AssetRef:
    """Reference to one asset in the media library.

    The payload is not held here; it is read through
    MediaLibrary.load_resource() when a transfer needs it.
    """

    id: str
    created_at: datetime
    filename: str
    resource_type: ResourceType = ResourceType.OTHER
    modified_at: datetime | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class SyncState:
    """Point-in-time copy of the tracker's persisted state."""

    enabled_at: datetime | None
    uploaded: frozenset[str] = field(default_factory=frozenset)
    failed: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_enabled(self) -> bool:
        return self.enabled_at is not None

    def status(self, asset_id: str) -> UploadStatus:
        if asset_id in self.uploaded:
            return UploadStatus.UPLOADED
        if asset_id in self.failed:
            return UploadStatus.FAILED
        return UploadStatus.PENDING


class OutcomeStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CONFIG_ERROR = "config_error"


@dataclass
class UploadOutcome:
    """Result of a single transmission attempt."""

    status: OutcomeStatus
    status_code: int | None = None
    reason: str | None = None

    @classmethod
    def succeeded(cls, status_code: int) -> UploadOutcome:
        return cls(OutcomeStatus.SUCCESS, status_code=status_code)

    @classmethod
    def failed(cls, reason: str, status_code: int | None = None) -> UploadOutcome:
        return cls(OutcomeStatus.FAILURE, status_code=status_code, reason=reason)

    @classmethod
    def config_error(cls, reason: str) -> UploadOutcome:
        return cls(OutcomeStatus.CONFIG_ERROR, reason=reason)

    @property
    def success(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def is_config_error(self) -> bool:
        return self.status is OutcomeStatus.CONFIG_ERROR

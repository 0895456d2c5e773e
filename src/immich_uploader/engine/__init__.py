"""Engine module: background job lifecycle, local job host and manual sync."""

from immich_uploader.engine.host import JobAction, JobHost, PreparedUpload, UploadJob
from immich_uploader.engine.job_queue import DrainStats, SqliteJobQueue
from immich_uploader.engine.lifecycle import CycleReport, CycleResult, JobLifecycleController
from immich_uploader.engine.manual import ManualSyncDriver, SyncPhase, SyncProgress
from immich_uploader.engine.notifier import LoggingNotifier, Notifier

__all__ = [
    "CycleReport",
    "CycleResult",
    "DrainStats",
    "JobAction",
    "JobHost",
    "JobLifecycleController",
    "LoggingNotifier",
    "ManualSyncDriver",
    "Notifier",
    "PreparedUpload",
    "SqliteJobQueue",
    "SyncPhase",
    "SyncProgress",
    "UploadJob",
]

"""SQLite-backed job queue acting as the local background host.

Jobs hold the fully encoded multipart body so the transfer worker can replay
it without going back to the library. The API key is not stored; the
worker's uploader adds it at send time.
"""

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from immich_uploader.engine.host import JobAction, JobHost, PreparedUpload, UploadJob
from immich_uploader.errors import JobHostError, LimitExceeded
from immich_uploader.models import AssetRef
from immich_uploader.sync.cancellation import CancellationToken
from immich_uploader.sync.multipart import REQUIRED_FIELDS, EncodedRequest
from immich_uploader.sync.uploader import AssetUploader

logger = logging.getLogger(__name__)


@dataclass
class QueuedJob:
    """A job row as stored in the queue."""

    id: str
    asset_id: str
    filename: str
    destination: str
    boundary: str
    body: bytes
    created_at: datetime
    attempts: int
    last_attempt: datetime | None
    status: str  # "queued", "uploading", "completed", "failed", "exhausted"

    def to_upload_job(self) -> UploadJob:
        return UploadJob(
            job_id=self.id,
            asset_id=self.asset_id,
            filename=self.filename,
            attempts=self.attempts,
        )

    def encoded(self) -> EncodedRequest:
        return EncodedRequest(
            boundary=self.boundary, body=self.body, field_names=REQUIRED_FIELDS
        )


@dataclass
class DrainStats:
    sent: int = 0
    completed: int = 0
    failed: int = 0


class SqliteJobQueue(JobHost):
    """Persistent job host with an in-flight ceiling.

    A job stays in flight from creation until it is acknowledged or
    abandoned, so the ceiling counts every row regardless of status. A job
    that fails its last allowed attempt becomes "exhausted" instead of
    "failed" and is offered for abandonment rather than retry.
    """

    MAX_ATTEMPTS = 5

    _COLUMNS = (
        "id, asset_id, filename, destination, boundary, body, "
        "created_at, attempts, last_attempt, status"
    )
    _ACTION_STATUS = {
        JobAction.RETRY: "failed",
        JobAction.ACKNOWLEDGE: "completed",
        JobAction.ABANDON: "exhausted",
    }

    def __init__(
        self,
        db_path: Path,
        max_in_flight: int = 50,
        retry_backoff: float = 60.0,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        """Initialize the job queue.

        Args:
            db_path: Path to the SQLite database file
            max_in_flight: Unacknowledged jobs allowed before create_job refuses
            retry_backoff: Seconds a retried job waits before it is sent again
            max_attempts: Sends allowed before a failed job is exhausted
        """
        self.db_path = db_path
        self.max_in_flight = max_in_flight
        self.retry_backoff = retry_backoff
        self.max_attempts = max_attempts
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), timeout=10.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_table()
        self._recover_interrupted()

    def _create_table(self) -> None:
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS upload_jobs (
                    id TEXT PRIMARY KEY,
                    asset_id TEXT NOT NULL UNIQUE,
                    filename TEXT NOT NULL,
                    destination TEXT NOT NULL,
                    boundary TEXT NOT NULL,
                    body BLOB NOT NULL,
                    created_at TEXT NOT NULL,
                    attempts INTEGER DEFAULT 0,
                    last_attempt TEXT,
                    status TEXT DEFAULT 'queued',
                    error TEXT
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_created
                ON upload_jobs (status, created_at)
            """)
            self._conn.commit()

    def _recover_interrupted(self) -> None:
        """Return jobs left 'uploading' by a crashed worker to the queue."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE upload_jobs SET status = 'queued' WHERE status = 'uploading'"
            )
            self._conn.commit()
        if cursor.rowcount:
            logger.info("Requeued %d interrupted job(s)", cursor.rowcount)

    def _row_to_job(self, row: sqlite3.Row) -> QueuedJob:
        return QueuedJob(
            id=row["id"],
            asset_id=row["asset_id"],
            filename=row["filename"],
            destination=row["destination"],
            boundary=row["boundary"],
            body=row["body"],
            created_at=datetime.fromisoformat(row["created_at"]),
            attempts=row["attempts"],
            last_attempt=(
                datetime.fromisoformat(row["last_attempt"])
                if row["last_attempt"]
                else None
            ),
            status=row["status"],
        )

    # --- JobHost ---

    def create_job(self, upload: PreparedUpload, asset: AssetRef) -> str:
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM upload_jobs WHERE asset_id = ?", (upload.asset_id,)
            ).fetchone()
            if row:
                return row["id"]

            in_flight = self._conn.execute(
                "SELECT COUNT(*) FROM upload_jobs"
            ).fetchone()[0]
            if in_flight >= self.max_in_flight:
                raise LimitExceeded(
                    f"In-flight job limit reached ({self.max_in_flight})"
                )

            job_id = str(uuid.uuid4())
            self._conn.execute(
                """
                INSERT INTO upload_jobs
                    (id, asset_id, filename, destination, boundary, body, created_at, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'queued')
                """,
                (
                    job_id,
                    upload.asset_id,
                    asset.filename,
                    upload.destination,
                    upload.encoded.boundary,
                    upload.encoded.body,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()
        return job_id

    def fetch_jobs(self, action: JobAction) -> list[UploadJob]:
        status = self._ACTION_STATUS[action]
        with self._lock:
            cursor = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM upload_jobs
                WHERE status = ?
                ORDER BY created_at ASC
                """,
                (status,),
            )
            rows = cursor.fetchall()
        return [self._row_to_job(row).to_upload_job() for row in rows]

    def retry(self, job: UploadJob) -> None:
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE upload_jobs
                SET status = 'queued', error = NULL
                WHERE id = ? AND status = 'failed'
                """,
                (job.job_id,),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise JobHostError(f"Job {job.job_id} is not waiting for retry")

    def acknowledge(self, job: UploadJob) -> None:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM upload_jobs WHERE id = ? AND status = 'completed'",
                (job.job_id,),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise JobHostError(f"Job {job.job_id} is not waiting for acknowledgment")

    def abandon(self, job: UploadJob) -> None:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM upload_jobs WHERE id = ? AND status = 'exhausted'",
                (job.job_id,),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise JobHostError(f"Job {job.job_id} is not waiting to be abandoned")

    def queued_asset_ids(self) -> set[str]:
        with self._lock:
            cursor = self._conn.execute("SELECT asset_id FROM upload_jobs")
            return {row["asset_id"] for row in cursor.fetchall()}

    # --- Transfer worker ---

    def get_pending(self, limit: int = 10) -> list[QueuedJob]:
        """Get queued jobs ready to send.

        Jobs that were attempted before wait out the retry backoff.

        Args:
            limit: Maximum number of jobs to return

        Returns:
            Jobs ordered by creation time
        """
        backoff_cutoff = (
            datetime.now(timezone.utc) - timedelta(seconds=self.retry_backoff)
        ).isoformat()

        with self._lock:
            cursor = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM upload_jobs
                WHERE status = 'queued'
                  AND (last_attempt IS NULL OR last_attempt <= ?)
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (backoff_cutoff, limit),
            )
            rows = cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    def mark_uploading(self, job_id: str) -> None:
        """Mark a job as being sent and count the attempt.

        Args:
            job_id: Job ID
        """
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._conn.execute(
                """
                UPDATE upload_jobs
                SET status = 'uploading',
                    attempts = attempts + 1,
                    last_attempt = ?
                WHERE id = ?
                """,
                (now, job_id),
            )
            self._conn.commit()

    def mark_completed(self, job_id: str) -> None:
        """Mark a job as sent successfully, pending acknowledgment.

        Args:
            job_id: Job ID
        """
        with self._lock:
            self._conn.execute(
                "UPDATE upload_jobs SET status = 'completed', error = NULL WHERE id = ?",
                (job_id,),
            )
            self._conn.commit()

    def mark_failed(self, job_id: str, error: str) -> None:
        """Mark a job as failed, or exhausted once it reached max attempts.

        Failed jobs are offered for retry, exhausted ones for abandonment.

        Args:
            job_id: Job ID
            error: Error message from the failed attempt
        """
        with self._lock:
            self._conn.execute(
                """
                UPDATE upload_jobs
                SET status = CASE WHEN attempts >= ? THEN 'exhausted' ELSE 'failed' END,
                    error = ?
                WHERE id = ?
                """,
                (self.max_attempts, error, job_id),
            )
            self._conn.commit()

    def _requeue(self, job_id: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                UPDATE upload_jobs
                SET status = 'queued', attempts = MAX(attempts - 1, 0), last_attempt = NULL
                WHERE id = ?
                """,
                (job_id,),
            )
            self._conn.commit()

    async def drain(
        self,
        uploader: AssetUploader,
        batch_size: int = 10,
        cancel_token: CancellationToken | None = None,
    ) -> DrainStats:
        """Send every ready job once.

        Completed, failed and exhausted jobs stay in the table until the
        lifecycle controller acknowledges, retries or abandons them.

        Args:
            uploader: Uploader that supplies the API key and HTTP client
            batch_size: Jobs fetched per query
            cancel_token: Stops after the current transfer when set

        Returns:
            Counts of jobs sent, completed and failed
        """
        stats = DrainStats()
        while True:
            pending = self.get_pending(limit=batch_size)
            if not pending:
                break

            for job in pending:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info("Drain cancelled: sent=%d", stats.sent)
                    return stats

                self.mark_uploading(job.id)
                outcome = await uploader.send(job.destination, job.encoded(), job.asset_id)

                if outcome.is_config_error:
                    # Nothing was sent; leave the job for a corrected config
                    self._requeue(job.id)
                    logger.error("Drain stopped: %s", outcome.reason)
                    return stats

                stats.sent += 1
                if outcome.success:
                    self.mark_completed(job.id)
                    stats.completed += 1
                else:
                    self.mark_failed(job.id, outcome.reason or "Unknown error")
                    stats.failed += 1

        if stats.sent:
            logger.info(
                "Drain finished: sent=%d, completed=%d, failed=%d",
                stats.sent,
                stats.completed,
                stats.failed,
            )
        return stats

    def get_stats(self) -> dict[str, int]:
        """Get job counts by status."""
        with self._lock:
            cursor = self._conn.execute(
                """
                SELECT status, COUNT(*) as count
                FROM upload_jobs
                GROUP BY status
                """
            )
            rows = cursor.fetchall()

        stats = {
            "queued": 0,
            "uploading": 0,
            "completed": 0,
            "failed": 0,
            "exhausted": 0,
            "total": 0,
        }
        for row in rows:
            stats[row["status"]] = row["count"]
            stats["total"] += row["count"]
        return stats

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

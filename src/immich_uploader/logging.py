"""Structured JSON logging for the uploader.

Provides audit-friendly logging with contextual fields for tracking changes,
upload attempts and background cycles. API keys are never logged.

Usage:
    from immich_uploader.logging import setup_logging, log_upload_success

    setup_logging("INFO")
    log = logging.getLogger(__name__)
    log_upload_success(log, "A1", 201)
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from immich_uploader import __version__

# Optional client identifier added to every record
_client_id: str | None = None


class UploaderJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds client context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add standard fields to every log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["client_version"] = __version__
        if _client_id:
            log_record["client_id"] = _client_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    client_id: str | None = None,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for rotating file handler
        client_id: Identifier for this client instance
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    global _client_id
    if client_id:
        _client_id = client_id

    formatter = UploaderJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # JSON to stderr so stdout stays free for CLI output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


# --- Audit Event Functions ---


def log_upload_success(
    logger: logging.Logger,
    asset_id: str,
    status_code: int,
    elapsed_ms: float | None = None,
) -> None:
    """Log a successful upload.

    Args:
        logger: Logger instance
        asset_id: Library identifier of the asset
        status_code: HTTP status returned by the server
        elapsed_ms: Round-trip time in milliseconds
    """
    extra: dict = {
        "event": "upload_success",
        "asset_id": asset_id,
        "status_code": status_code,
    }
    if elapsed_ms is not None:
        extra["elapsed_ms"] = round(elapsed_ms, 1)
    logger.info("Upload successful", extra=extra)


def log_upload_failed(
    logger: logging.Logger,
    asset_id: str,
    error: str,
    status_code: int | None = None,
) -> None:
    """Log a failed upload attempt.

    Args:
        logger: Logger instance
        asset_id: Library identifier of the asset
        error: Error message (sanitized - no credentials)
        status_code: HTTP status if the server answered
    """
    extra: dict = {
        "event": "upload_failed",
        "asset_id": asset_id,
        "error": error,
    }
    if status_code is not None:
        extra["status_code"] = status_code
    logger.warning("Upload failed", extra=extra)


def log_tracking_change(
    logger: logging.Logger,
    enabled: bool,
    watermark: datetime | None = None,
) -> None:
    """Log tracking being switched on or off."""
    extra: dict = {"event": "tracking_change", "enabled": enabled}
    if watermark is not None:
        extra["watermark"] = watermark.isoformat()
    logger.info("Tracking %s", "enabled" if enabled else "disabled", extra=extra)


def log_cycle_result(
    logger: logging.Logger,
    result: str,
    retried: int,
    acknowledged: int,
    enqueued: int,
    abandoned: int = 0,
) -> None:
    """Log the outcome of one background cycle.

    Args:
        logger: Logger instance
        result: completed, processing or failed
        retried: Jobs resubmitted in the retry pass
        acknowledged: Jobs acknowledged in the acknowledge pass
        enqueued: Jobs created in the discovery pass
        abandoned: Jobs given up after their last allowed attempt
    """
    logger.info(
        "Cycle finished",
        extra={
            "event": "cycle_result",
            "result": result,
            "retried": retried,
            "acknowledged": acknowledged,
            "enqueued": enqueued,
            "abandoned": abandoned,
        },
    )

"""Tests for JSON log formatting and audit helpers."""

import io
import json
import logging

from immich_uploader import __version__
from immich_uploader.logging import (
    UploaderJsonFormatter,
    log_cycle_result,
    log_upload_failed,
    log_upload_success,
)


def _capture(name: str):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(UploaderJsonFormatter())
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


def _records(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestAuditEvents:
    """Test that audit helpers emit structured fields."""

    def test_upload_success(self):
        logger, stream = _capture("test.upload_success")

        log_upload_success(logger, "A1", 201, elapsed_ms=12.345)

        (record,) = _records(stream)
        assert record["event"] == "upload_success"
        assert record["asset_id"] == "A1"
        assert record["status_code"] == 201
        assert record["elapsed_ms"] == 12.3
        assert record["level"] == "INFO"
        assert record["client_version"] == __version__

    def test_upload_failed_without_status(self):
        logger, stream = _capture("test.upload_failed")

        log_upload_failed(logger, "A1", "Connection error")

        (record,) = _records(stream)
        assert record["event"] == "upload_failed"
        assert record["level"] == "WARNING"
        assert "status_code" not in record

    def test_cycle_result(self):
        logger, stream = _capture("test.cycle")

        log_cycle_result(
            logger, "processing", retried=1, acknowledged=2, enqueued=3, abandoned=1
        )

        (record,) = _records(stream)
        assert record["result"] == "processing"
        assert (record["retried"], record["acknowledged"], record["enqueued"]) == (1, 2, 3)
        assert record["abandoned"] == 1
        assert record["timestamp"].endswith("+00:00")

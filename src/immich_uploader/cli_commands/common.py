"""Shared helpers for CLI commands: output and component wiring."""

import json
from collections.abc import Iterator
from contextlib import contextmanager

import typer

from immich_uploader.config import Settings
from immich_uploader.engine.job_queue import SqliteJobQueue
from immich_uploader.library import FilesystemLibrary
from immich_uploader.sync.state import SqliteStateStore
from immich_uploader.sync.tracker import SyncTracker


def output(data: dict, as_json: bool, human_lines: list[str]) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data, default=str))
    else:
        for line in human_lines:
            typer.echo(line)


@contextmanager
def open_tracker(settings: Settings) -> Iterator[SyncTracker]:
    """Tracker over the shared state file, closed on exit."""
    store = SqliteStateStore(settings.state_db_path)
    try:
        yield SyncTracker(store)
    finally:
        store.close()


@contextmanager
def open_queue(settings: Settings) -> Iterator[SqliteJobQueue]:
    queue = SqliteJobQueue(
        settings.queue_db_path,
        max_in_flight=settings.max_in_flight_jobs,
        max_attempts=settings.max_upload_attempts,
    )
    try:
        yield queue
    finally:
        queue.close()


def open_library(settings: Settings) -> FilesystemLibrary:
    return FilesystemLibrary(settings.library_path)

"""Status command for the uploader CLI."""

import json

import typer

from immich_uploader.cli_commands.common import open_library, open_queue, open_tracker
from immich_uploader.config import get_settings


def status_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show tracking counts and job queue state."""
    settings = get_settings()

    with open_tracker(settings) as tracker:
        enabled_at = tracker.enabled_at
        counts = tracker.counts()
        pending = 0
        if enabled_at is not None:
            assets = open_library(settings).fetch_assets(created_after=enabled_at)
            pending = tracker.pending_count(assets)

    with open_queue(settings) as queue:
        queue_stats = queue.get_stats()

    status_data = {
        "configured": settings.has_valid_configuration,
        "tracking": enabled_at is not None,
        "enabled_at": enabled_at.isoformat() if enabled_at else None,
        "uploaded": counts.uploaded,
        "failed": counts.failed,
        "pending": pending,
        "queue": queue_stats,
    }

    if output_json:
        typer.echo(json.dumps(status_data))
        return

    typer.echo("")
    typer.echo("Uploader Status")
    typer.echo("---------------")
    if not settings.has_valid_configuration:
        typer.echo("Server: not configured")
    if enabled_at is None:
        typer.echo("Tracking: disabled")
    else:
        typer.echo(f"Tracking since: {enabled_at.isoformat()}")
        typer.echo(f"Uploaded: {counts.uploaded}")
        typer.echo(f"Failed: {counts.failed}")
        typer.echo(f"Pending: {pending}")
    typer.echo(
        f"Queue: {queue_stats['queued']} queued, {queue_stats['completed']} completed, "
        f"{queue_stats['failed']} failed"
    )
    typer.echo("")

    if enabled_at is None:
        typer.echo("Start tracking with: immich-uploader tracking enable")

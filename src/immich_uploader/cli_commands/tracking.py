"""Tracking management CLI commands."""

import typer

from immich_uploader.cli_commands.common import open_library, open_tracker, output
from immich_uploader.config import get_settings
from immich_uploader.models import UploadStatus

tracking_app = typer.Typer(
    name="tracking",
    help="Upload tracking - enable, disable, inspect and retry.",
    no_args_is_help=True,
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    "-j",
    help="Output in JSON format",
)


@tracking_app.command()
def enable(output_json: bool = JSON_OPTION) -> None:
    """Start tracking from now.

    Assets created after this moment are uploaded. Any previous upload
    history is discarded.
    """
    with open_tracker(get_settings()) as tracker:
        watermark = tracker.enable_tracking()

    output(
        {"enabled": True, "enabled_at": watermark.isoformat()},
        output_json,
        [f"Tracking enabled from {watermark.isoformat()}"],
    )


@tracking_app.command()
def disable(output_json: bool = JSON_OPTION) -> None:
    """Stop tracking. Upload history is kept."""
    with open_tracker(get_settings()) as tracker:
        tracker.disable_tracking()

    output({"enabled": False}, output_json, ["Tracking disabled"])


@tracking_app.command()
def show(output_json: bool = JSON_OPTION) -> None:
    """Show the watermark and per-status counts."""
    settings = get_settings()
    with open_tracker(settings) as tracker:
        enabled_at = tracker.enabled_at
        counts = tracker.counts()
        pending = 0
        if enabled_at is not None:
            assets = open_library(settings).fetch_assets(created_after=enabled_at)
            pending = tracker.pending_count(assets)

    data = {
        "enabled": enabled_at is not None,
        "enabled_at": enabled_at.isoformat() if enabled_at else None,
        "uploaded": counts.uploaded,
        "failed": counts.failed,
        "pending": pending,
    }
    lines = [
        "",
        "Upload Tracking",
        "---------------",
        f"Enabled since: {enabled_at.isoformat()}" if enabled_at else "Tracking: disabled",
        f"Uploaded: {counts.uploaded}",
        f"Failed: {counts.failed}",
        f"Pending: {pending}",
        "",
    ]
    output(data, output_json, lines)


@tracking_app.command("list")
def list_assets(
    status: UploadStatus = typer.Option(
        None,
        "--status",
        "-s",
        help="Only show assets with this status",
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum assets to show"),
    output_json: bool = JSON_OPTION,
) -> None:
    """List tracked assets with their status, newest first."""
    settings = get_settings()
    with open_tracker(settings) as tracker:
        snapshot = tracker.snapshot()

    if not snapshot.is_enabled:
        output({"enabled": False, "assets": []}, output_json, ["Tracking is not enabled"])
        raise typer.Exit(1)

    assets = open_library(settings).fetch_assets(created_after=snapshot.enabled_at)
    rows = []
    for asset in reversed(assets):
        asset_status = snapshot.status(asset.id)
        if status is not None and asset_status is not status:
            continue
        rows.append(
            {
                "id": asset.id,
                "filename": asset.filename,
                "created_at": asset.created_at.isoformat(),
                "status": asset_status.value,
            }
        )
        if len(rows) >= limit:
            break

    lines = [f"{row['status']:<9} {row['created_at']}  {row['id']}" for row in rows]
    output(
        {"enabled": True, "assets": rows},
        output_json,
        lines or ["No matching assets"],
    )


@tracking_app.command()
def retry(
    asset_id: str = typer.Argument(None, help="Asset id to retry"),
    all_failed: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Retry every failed asset",
    ),
    output_json: bool = JSON_OPTION,
) -> None:
    """Make failed assets pending again."""
    if not asset_id and not all_failed:
        typer.echo("Give an asset id or --all.")
        raise typer.Exit(1)

    with open_tracker(get_settings()) as tracker:
        if all_failed:
            retried = sorted(tracker.retry_all())
        else:
            was_failed = asset_id in tracker.failed_ids()
            tracker.retry_one(asset_id)
            retried = [asset_id] if was_failed else []

    output(
        {"retried": retried},
        output_json,
        [f"{len(retried)} asset(s) will be retried"],
    )


@tracking_app.command()
def prune(output_json: bool = JSON_OPTION) -> None:
    """Forget assets that no longer exist in the library."""
    settings = get_settings()
    library = open_library(settings)
    with open_tracker(settings) as tracker:
        tracked = tracker.uploaded_ids() | tracker.failed_ids()
        removed = tracker.prune_deleted(library.existing_ids(tracked)) if tracked else 0

    output({"removed": removed}, output_json, [f"Removed {removed} deleted asset(s)"])


@tracking_app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Disable tracking and forget all upload history."""
    if not yes:
        typer.confirm("Forget all upload history?", abort=True)

    with open_tracker(get_settings()) as tracker:
        tracker.clear_all()
    typer.echo("Tracking data cleared")

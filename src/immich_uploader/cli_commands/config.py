"""Configuration CLI commands."""

import json

import typer

from immich_uploader.config import get_settings

config_app = typer.Typer(
    name="config",
    help="Configuration - view settings.",
    no_args_is_help=True,
)


@config_app.command()
def show(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show current configuration. The API key is never printed."""
    settings = get_settings()

    config_data = {
        "server_url": settings.full_server_url,
        "api_key_set": bool(settings.api_key),
        "request_timeout": settings.request_timeout,
        "max_in_flight_jobs": settings.max_in_flight_jobs,
        "max_upload_attempts": settings.max_upload_attempts,
        "cycle_interval": settings.cycle_interval,
        "data_dir": str(settings.data_path),
        "library_dir": str(settings.library_path),
        "log_level": settings.log_level,
    }

    if output_json:
        typer.echo(json.dumps(config_data, indent=2))
    else:
        typer.echo("")
        typer.echo("Uploader Configuration")
        typer.echo("----------------------")
        typer.echo(f"Server URL: {settings.full_server_url or '(not set)'}")
        typer.echo(f"API key: {'set' if settings.api_key else '(not set)'}")
        typer.echo(f"Request timeout: {settings.request_timeout}s")
        typer.echo(f"Max in-flight jobs: {settings.max_in_flight_jobs}")
        typer.echo(f"Max upload attempts: {settings.max_upload_attempts}")
        typer.echo(f"Cycle interval: {settings.cycle_interval}s")
        typer.echo(f"Data directory: {settings.data_path}")
        typer.echo(f"Library directory: {settings.library_path}")
        typer.echo(f"Log level: {settings.log_level}")
        typer.echo("")
        typer.echo("Set values using environment variables with IMMICH_UPLOADER_ prefix")
        typer.echo("Example: IMMICH_UPLOADER_SERVER_URL=photos.example.com")

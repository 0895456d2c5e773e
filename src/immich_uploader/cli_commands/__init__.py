"""CLI command modules for the uploader."""

from immich_uploader.cli_commands.background import background_app
from immich_uploader.cli_commands.check import check_command
from immich_uploader.cli_commands.config import config_app
from immich_uploader.cli_commands.status import status_command
from immich_uploader.cli_commands.sync import sync_command
from immich_uploader.cli_commands.tracking import tracking_app

__all__ = [
    "background_app",
    "check_command",
    "config_app",
    "status_command",
    "sync_command",
    "tracking_app",
]

"""Uploader configuration settings using pydantic-settings."""

from functools import cached_property
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = "443"
DEFAULT_PATH = "/api/"


class Settings(BaseSettings):
    """Configuration settings for the Immich uploader.

    Settings are loaded from environment variables with the IMMICH_UPLOADER_
    prefix. For example, IMMICH_UPLOADER_API_KEY=abc sets api_key to "abc".
    """

    model_config = SettingsConfigDict(
        env_prefix="IMMICH_UPLOADER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    server_url: str = ""
    server_port: str = DEFAULT_PORT
    server_path: str = DEFAULT_PATH
    api_key: str = ""
    request_timeout: float = 30.0  # seconds, passed to httpx.Timeout

    # Background host settings
    max_in_flight_jobs: int = 50
    max_upload_attempts: int = 5  # sends per job before the asset is marked failed
    cycle_interval: int = 60  # seconds between background cycles

    # File paths
    data_dir: Path = Path("~/.local/share/immich-uploader")
    library_dir: Path = Path("~/Pictures")

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    @field_validator("server_port", "server_path", mode="before")
    @classmethod
    def default_when_blank(cls, v: str | None, info) -> str:
        """Blank port or path fall back to the defaults."""
        if v is None or str(v).strip() == "":
            return DEFAULT_PORT if info.field_name == "server_port" else DEFAULT_PATH
        return str(v).strip()

    @field_validator("max_in_flight_jobs", "max_upload_attempts", "cycle_interval")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure ceilings and intervals are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @property
    def full_server_url(self) -> str:
        """Base API URL composed from host, port and path.

        A missing scheme defaults to https. Port and path are appended as
        configured, so "photos.example.com" becomes
        "https://photos.example.com:443/api/".
        """
        url = self.server_url.strip()
        if not url:
            return ""

        if not url.startswith(("http://", "https://")):
            url = "https://" + url

        if self.server_port:
            url += ":" + self.server_port

        if self.server_path:
            path = self.server_path
            url += path if path.startswith("/") else "/" + path

        return url

    @property
    def has_valid_configuration(self) -> bool:
        return bool(self.server_url.strip()) and bool(self.api_key)

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def library_path(self) -> Path:
        """Return expanded library directory path."""
        return self.library_dir.expanduser()

    @property
    def state_db_path(self) -> Path:
        """SQLite file shared by the foreground and background contexts."""
        return self.data_path / "sync_state.db"

    @property
    def queue_db_path(self) -> Path:
        return self.data_path / "upload_jobs.db"

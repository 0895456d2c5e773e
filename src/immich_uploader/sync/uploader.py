"""Async HTTP uploader for assets.

One call is one attempt. Retrying is left to the drivers so this stays a
plain transport primitive.
"""

import logging
import time
from typing import Any

import httpx

from immich_uploader import __version__
from immich_uploader.errors import ConfigError, TransportError
from immich_uploader.logging import log_upload_failed, log_upload_success
from immich_uploader.models import AssetRef, UploadOutcome
from immich_uploader.sync.multipart import DEVICE_ID, EncodedRequest, encode_asset

logger = logging.getLogger(__name__)

SUCCESS_CODES = frozenset({200, 201})
ASSETS_SEGMENT = "assets"


def build_endpoint(base_url: str, segment: str) -> str:
    """Append ``segment`` to ``base_url``, adding a slash only when missing.

    Raises:
        ConfigError: If the base URL is empty or not an absolute http(s) URL
    """
    base_url = (base_url or "").strip()
    if not base_url:
        raise ConfigError("Server URL not configured")

    joined = base_url + segment if base_url.endswith("/") else f"{base_url}/{segment}"
    try:
        parsed = httpx.URL(joined)
    except httpx.InvalidURL as e:
        raise ConfigError(f"Invalid server URL: {e}") from e

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigError("Invalid server URL")
    return joined


def resolve_upload_endpoint(base_url: str, api_key: str) -> str:
    """Upload URL for the given configuration.

    Raises:
        ConfigError: If the API key is empty or the URL does not parse
    """
    if not api_key:
        raise ConfigError("API key not configured")
    return build_endpoint(base_url, ASSETS_SEGMENT)


class AssetUploader:
    """Single-attempt HTTP uploader for the asset ingest endpoint.

    Uses one httpx.AsyncClient for connection pooling. Status 200 and 201
    count as success; any other status or transport error is a failure.

    Example:
        async with AssetUploader(settings.full_server_url, settings.api_key) as up:
            outcome = await up.upload(asset, payload)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        device_id: str = DEVICE_ID,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            base_url: Base API URL of the server (e.g., https://host:443/api/)
            api_key: Static API key sent as x-api-key
            timeout: Request timeout in seconds
            device_id: Client identifier sent with every asset
            client: Pre-built client, mainly for tests
        """
        self.base_url = base_url
        self.api_key = api_key
        self.device_id = device_id
        self._owns_client = client is None

        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={
                "User-Agent": f"immich-uploader/{__version__}",
            },
        )

    def validate_config(self) -> str:
        """Check API key and base URL without touching the network.

        Returns:
            The resolved upload endpoint

        Raises:
            ConfigError: If the API key is empty or the URL does not parse
        """
        return resolve_upload_endpoint(self.base_url, self.api_key)

    async def upload(self, asset: AssetRef, payload: bytes) -> UploadOutcome:
        """Encode and upload one asset.

        Args:
            asset: Asset being uploaded
            payload: Binary content of its primary resource

        Returns:
            UploadOutcome; config_error if nothing was sent

        Raises:
            EncodingError: If the asset cannot be encoded
        """
        try:
            url = self.validate_config()
        except ConfigError as e:
            logger.error("Upload skipped, bad configuration: %s", e)
            return UploadOutcome.config_error(str(e))

        encoded = encode_asset(asset, payload, device_id=self.device_id)
        return await self.send(url, encoded, asset_id=asset.id)

    async def send(
        self,
        url: str,
        encoded: EncodedRequest,
        asset_id: str,
    ) -> UploadOutcome:
        """Send an already encoded request.

        Args:
            url: Destination URL
            encoded: Multipart body and boundary
            asset_id: Asset id, used for logging only

        Returns:
            UploadOutcome for this attempt
        """
        if not self.api_key:
            return UploadOutcome.config_error("API key not configured")

        started = time.monotonic()
        try:
            response = await self._post(url, encoded)
        except TransportError as e:
            log_upload_failed(logger, asset_id, str(e), e.status_code)
            return UploadOutcome.failed(str(e), status_code=e.status_code)

        elapsed_ms = (time.monotonic() - started) * 1000
        log_upload_success(logger, asset_id, response.status_code, elapsed_ms)
        return UploadOutcome.succeeded(response.status_code)

    async def _post(self, url: str, encoded: EncodedRequest) -> httpx.Response:
        """POST the body once.

        Raises:
            TransportError: On a network failure, timeout or non-success status
        """
        headers = {
            "x-api-key": self.api_key,
            "Content-Type": encoded.content_type,
        }
        try:
            response = await self._client.post(url, content=encoded.body, headers=headers)
        except httpx.ConnectError as e:
            raise TransportError(f"Connection error: {e}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}") from e

        if response.status_code not in SUCCESS_CODES:
            raise TransportError(
                f"Server returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def close(self) -> None:
        """Close the HTTP client if this uploader created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AssetUploader":
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        await self.close()

"""Tests for the single-attempt asset uploader."""

from datetime import datetime, timezone

import httpx
import pytest

from conftest import API_KEY, BASE_URL, make_asset

from immich_uploader.errors import ConfigError
from immich_uploader.models import OutcomeStatus
from immich_uploader.sync.uploader import AssetUploader, build_endpoint

ASSET = make_asset("A1", datetime(2024, 1, 1, tzinfo=timezone.utc), filename="img.heic")


def _uploader(handler, api_key: str = API_KEY, base_url: str = BASE_URL) -> AssetUploader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AssetUploader(base_url, api_key, client=client)


class TestBuildEndpoint:
    """Test URL joining and validation."""

    def test_joins_without_double_slash(self):
        assert build_endpoint("https://h/api/", "assets") == "https://h/api/assets"

    def test_adds_missing_slash(self):
        assert build_endpoint("https://h/api", "assets") == "https://h/api/assets"

    @pytest.mark.parametrize("base", ["", "   ", "not a url", "ftp://h/api/"])
    def test_rejects_bad_base(self, base):
        with pytest.raises(ConfigError):
            build_endpoint(base, "assets")


class TestAssetUploader:
    """Test status mapping and request shape."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 201])
    async def test_success_codes(self, status):
        """200 and 201 both count as success."""
        uploader = _uploader(lambda request: httpx.Response(status))

        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.success
        assert outcome.status_code == status
        await uploader._client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 409, 500, 503])
    async def test_other_status_is_failure(self, status):
        uploader = _uploader(lambda request: httpx.Response(status))

        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.status_code == status
        assert str(status) in outcome.reason
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self):
        """Connection errors become a failure outcome, never an exception."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        uploader = _uploader(handler)
        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.status_code is None
        assert "Connection error" in outcome.reason
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        uploader = _uploader(handler)
        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.reason.startswith("Timeout")
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """The request posts the multipart body to {base}/assets with the key."""
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(201)

        uploader = _uploader(handler)
        await uploader.upload(ASSET, b"data")

        request = captured[0]
        assert request.method == "POST"
        assert request.url.host == "photos.example.com"
        assert request.url.path == "/api/assets"
        assert request.headers["x-api-key"] == API_KEY
        assert request.headers["content-type"].startswith("multipart/form-data; boundary=")
        assert b'name="deviceAssetId"\r\n\r\nA1\r\n' in request.content
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_fast(self):
        """No request is made without an API key."""
        calls = []
        uploader = _uploader(lambda request: calls.append(request), api_key="")

        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.is_config_error
        assert calls == []
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_bad_url_fails_fast(self):
        calls = []
        uploader = _uploader(lambda request: calls.append(request), base_url="")

        outcome = await uploader.upload(ASSET, b"data")

        assert outcome.is_config_error
        assert calls == []
        await uploader._client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed_by_context_manager(self):
        async with AssetUploader(BASE_URL, API_KEY) as uploader:
            client = uploader._client
        assert client.is_closed

"""multipart/form-data encoding for the asset upload endpoint.

The server's ingest endpoint expects a fixed set of fields in a fixed order.
The body is built by hand rather than through httpx's files= helper so the
same bytes can be stored in the job queue and replayed later.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePath

from immich_uploader.errors import EncodingError
from immich_uploader.models import AssetRef, ResourceType

# Identifies this client type to the server
DEVICE_ID = "immich-uploader-py"

REQUIRED_FIELDS = (
    "deviceAssetId",
    "deviceId",
    "fileCreatedAt",
    "fileModifiedAt",
    "assetData",
)

CRLF = b"\r\n"

_PART_NAME = re.compile(rb'Content-Disposition: form-data; name="([^"]+)"')

# Declared type (MIME or uniform type identifier) -> canonical MIME type
_KNOWN_TYPES = {
    "public.jpeg": "image/jpeg",
    "public.jpg": "image/jpeg",
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "public.png": "image/png",
    "image/png": "image/png",
    "public.heic": "image/heic",
    "public.heif": "image/heic",
    "image/heic": "image/heic",
    "image/heif": "image/heic",
    "com.compuserve.gif": "image/gif",
    "image/gif": "image/gif",
    "public.mpeg-4": "video/mp4",
    "video/mp4": "video/mp4",
    "com.apple.quicktime-movie": "video/quicktime",
    "video/quicktime": "video/quicktime",
}

_KNOWN_EXTENSIONS = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heic",
    ".gif": "image/gif",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
}


@dataclass(frozen=True)
class EncodedRequest:
    """A fully encoded multipart body and its boundary."""

    boundary: str
    body: bytes
    field_names: tuple[str, ...]

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"


def new_boundary() -> str:
    """Fresh boundary token; 128 random bits make collisions negligible."""
    return f"Boundary-{uuid.uuid4().hex}"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with a Z suffix, second precision.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def resolve_mime_type(
    declared: str | None,
    filename: str,
    resource_type: ResourceType = ResourceType.OTHER,
) -> str:
    """Pick the Content-Type for the assetData part.

    Known declared types win, then known file extensions. Anything else
    falls back by kind: image-like to image/jpeg, video or movie-like to
    video/mp4, the rest to application/octet-stream.
    """
    hint = (declared or "").strip().lower()
    if hint in _KNOWN_TYPES:
        return _KNOWN_TYPES[hint]

    suffix = PurePath(filename).suffix.lower()
    if suffix in _KNOWN_EXTENSIONS:
        return _KNOWN_EXTENSIONS[suffix]

    if "image" in hint or (not hint and resource_type is ResourceType.IMAGE):
        return "image/jpeg"
    if "video" in hint or "movie" in hint or (
        not hint and resource_type is ResourceType.VIDEO
    ):
        return "video/mp4"
    return "application/octet-stream"


def _quote(value: str) -> str:
    # Quoted-string per RFC 7578 section 4.2: percent-encode quote and line breaks
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


def _text_part(boundary: str, name: str, value: str) -> bytes:
    return b"".join(
        [
            f"--{boundary}".encode(),
            CRLF,
            f'Content-Disposition: form-data; name="{name}"'.encode(),
            CRLF,
            CRLF,
            value.encode("utf-8"),
            CRLF,
        ]
    )


def _file_part(
    boundary: str, name: str, filename: str, mime_type: str, payload: bytes
) -> bytes:
    return b"".join(
        [
            f"--{boundary}".encode(),
            CRLF,
            f'Content-Disposition: form-data; name="{name}"; '
            f'filename="{_quote(filename)}"'.encode("utf-8"),
            CRLF,
            f"Content-Type: {mime_type}".encode(),
            CRLF,
            CRLF,
            payload,
            CRLF,
        ]
    )


def check_field_order(parts: list[bytes]) -> tuple[str, ...]:
    """Read each part's field name and require the fixed server order.

    Returns:
        The field names in order

    Raises:
        EncodingError: If a part has no name or the order differs
    """
    names = []
    for part in parts:
        match = _PART_NAME.search(part)
        if match is None:
            raise EncodingError("Multipart part has no field name")
        names.append(match.group(1).decode())

    field_names = tuple(names)
    if field_names != REQUIRED_FIELDS:
        raise EncodingError(
            f"Multipart fields out of order: expected {REQUIRED_FIELDS}, got {field_names}"
        )
    return field_names


def encode_asset(
    asset: AssetRef,
    payload: bytes,
    device_id: str = DEVICE_ID,
    boundary: str | None = None,
) -> EncodedRequest:
    """Encode an asset and its payload as a multipart/form-data body.

    Args:
        asset: Asset whose fields populate the form
        payload: Binary content of the asset's primary resource
        device_id: Client identifier sent as deviceId
        boundary: Boundary token; a fresh one is generated when omitted

    Returns:
        EncodedRequest with the body and boundary

    Raises:
        EncodingError: If a required field is empty or the parts are not
            in the required order
    """
    boundary = boundary or new_boundary()
    created = format_timestamp(asset.created_at)
    modified = format_timestamp(asset.modified_at or asset.created_at)

    text_fields = [
        ("deviceAssetId", asset.id),
        ("deviceId", device_id),
        ("fileCreatedAt", created),
        ("fileModifiedAt", modified),
    ]
    for name, value in text_fields:
        if not value:
            raise EncodingError(f"Required field {name} is empty")
    if not asset.filename:
        raise EncodingError("Required field assetData has no filename")

    parts = [_text_part(boundary, name, value) for name, value in text_fields]
    mime_type = resolve_mime_type(asset.mime_type, asset.filename, asset.resource_type)
    parts.append(_file_part(boundary, "assetData", asset.filename, mime_type, payload))

    field_names = check_field_order(parts)
    body = b"".join(parts) + f"--{boundary}--".encode() + CRLF
    return EncodedRequest(boundary=boundary, body=body, field_names=field_names)

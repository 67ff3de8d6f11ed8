"""
Externally generated media assets.

The render core never owns generated media. Callers hand it ``AssetLookup``
objects that map asset ids to bytes or URLs (an ``ExportAssets`` bundle holds
one per namespace: shots, narration, music), and the ``AssetMaterializer``
writes whatever a stage needs into the request workspace.
"""

import base64
import binascii
import hashlib
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Protocol

import httpx

from sizzle.config import Settings, get_settings
from sizzle.exceptions import AssetFetchError

logger = logging.getLogger(__name__)

MediaType = Literal["video", "image", "audio"]

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.S)
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.-]")

_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/aac": ".aac",
    "audio/mp4": ".m4a",
    "audio/ogg": ".ogg",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

_DEFAULT_EXTENSIONS: dict[str, str] = {"video": ".mp4", "image": ".png", "audio": ".mp3"}


@dataclass(frozen=True)
class MediaAsset:
    """One generated asset, either inline bytes or a resolvable URL."""

    media_type: MediaType
    data: bytes | None = None
    url: str | None = None
    mime_type: str | None = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.url is None):
            raise ValueError("MediaAsset needs exactly one of data or url")

    @classmethod
    def from_url(cls, url: str, media_type: MediaType) -> "MediaAsset":
        """Wrap a data: or http(s) URL, picking the MIME type out of data URLs."""
        mime_type = None
        if url.startswith("data:"):
            match = _DATA_URL_RE.match(url)
            mime_type = match.group("mime") if match else None
        return cls(media_type=media_type, url=url, mime_type=mime_type)


class AssetLookup(Protocol):
    def get(self, asset_id: str) -> MediaAsset | None: ...


class InMemoryAssetLookup:
    """Asset lookup backed by a plain mapping."""

    def __init__(self, assets: Mapping[str, MediaAsset] | None = None):
        self._assets = dict(assets or {})

    def get(self, asset_id: str) -> MediaAsset | None:
        return self._assets.get(asset_id)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._assets

    def __len__(self) -> int:
        return len(self._assets)


class ShotAssetLookup:
    """Resolve shot ids to a generated video, degrading to the shot's still."""

    def __init__(
        self,
        videos: Mapping[str, MediaAsset] | None = None,
        stills: Mapping[str, MediaAsset] | None = None,
    ):
        self.videos = dict(videos or {})
        self.stills = dict(stills or {})

    def get(self, asset_id: str) -> MediaAsset | None:
        asset = self.videos.get(asset_id)
        if asset is not None:
            return asset
        asset = self.stills.get(asset_id)
        if asset is not None:
            logger.info(f"[ASSETS] No video for shot {asset_id}, using still image")
            return asset
        return None


@dataclass(frozen=True)
class ExportAssets:
    """
    Generated media for one export, one lookup per id namespace.

    Shot ids, narration source ids and music source ids are independent, so
    the same id may appear in more than one of them. Each stage only ever
    reads its own lookup.
    """

    shots: AssetLookup
    narration: AssetLookup
    music: AssetLookup


def decode_data_url(url: str) -> tuple[str | None, bytes]:
    """
    Decode a base64 ``data:`` URL.

    Returns:
        Tuple of (mime type or None, payload bytes)

    Raises:
        ValueError: If the URL is not a base64 data URL
    """
    match = _DATA_URL_RE.match(url)
    if not match:
        raise ValueError("not a base64 data URL")
    try:
        payload = base64.b64decode(match.group("data"), validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
    return match.group("mime"), payload


def encode_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def extension_for(asset: MediaAsset) -> str:
    if asset.mime_type:
        mime = asset.mime_type.split(";")[0].strip().lower()
        ext = _EXTENSIONS.get(mime) or mimetypes.guess_extension(mime)
        if ext:
            return ext
    return _DEFAULT_EXTENSIONS[asset.media_type]


def asset_filename(asset_id: str, asset: MediaAsset) -> str:
    """File name for a materialized asset, distinct for every distinct id."""
    digest = hashlib.sha1(asset_id.encode("utf-8")).hexdigest()[:10]
    return f"{_UNSAFE_CHARS_RE.sub('_', asset_id)}-{digest}{extension_for(asset)}"


class AssetMaterializer:
    """Writes assets into a workspace directory so FFmpeg can read them."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    async def materialize(self, asset_id: str, asset: MediaAsset, directory: Path) -> Path:
        """
        Write ``asset`` to ``directory`` and return the file path.

        The same asset id materialized twice into one directory is written once.

        Raises:
            AssetFetchError: If a URL cannot be fetched or a data URL cannot be decoded
        """
        directory.mkdir(parents=True, exist_ok=True)

        data = asset.data
        mime_type = asset.mime_type
        if data is None:
            data, fetched_mime = await self._resolve_url(asset_id, asset.url)
            mime_type = mime_type or fetched_mime

        typed = MediaAsset(media_type=asset.media_type, data=data, mime_type=mime_type)
        path = directory / asset_filename(asset_id, typed)
        if path.exists():
            return path

        if not data:
            raise AssetFetchError(asset_id, "asset is empty")
        path.write_bytes(data)
        logger.debug(f"[ASSETS] Materialized {asset_id} -> {path} ({len(data)} bytes)")
        return path

    async def _resolve_url(self, asset_id: str, url: str) -> tuple[bytes, str | None]:
        if url.startswith("data:"):
            try:
                mime_type, payload = decode_data_url(url)
            except ValueError as e:
                raise AssetFetchError(asset_id, str(e)) from e
            return payload, mime_type

        if not url.startswith(("http://", "https://")):
            raise AssetFetchError(asset_id, f"unsupported URL scheme: {url[:32]}")

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.asset_fetch_timeout_s,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise AssetFetchError(asset_id, "download timed out") from e
        except httpx.HTTPStatusError as e:
            raise AssetFetchError(asset_id, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AssetFetchError(asset_id, str(e)) from e

        content_type = response.headers.get("content-type")
        return response.content, content_type.split(";")[0].strip() if content_type else None

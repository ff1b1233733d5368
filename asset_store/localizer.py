"""
Asset localization.

Downloads provider-hosted media and stores it under a storage root using the
partition key ``<assetType>/<yyyyMMdd>/<uuid>.<ext>`` (optionally below a
fixed prefix such as ``generated``).
"""
import asyncio
import logging
import mimetypes
import os
import re
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Literal, Optional, Sequence
from urllib.parse import unquote, urlsplit

import httpx

from asset_store.errors import DownloadFailedError
from asset_store.path_guard import canonical_root, resolve_contained

logger = logging.getLogger(__name__)

AssetType = Literal["images", "videos"]

DOWNLOAD_TIMEOUT_SECONDS = 120.0
GENERIC_CONTENT_TYPE = "application/octet-stream"
FALLBACK_EXTENSIONS = {
    "images": "png",
    "videos": "mp4",
}
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
    "image/heic": "heic",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
    "image/tiff": "tiff",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/x-matroska": "mkv",
    "video/mpeg": "mpeg",
}
URL_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,8}$")


@dataclass(frozen=True)
class AssetReference:
    remote_url: str
    asset_type: AssetType = "images"


@dataclass(frozen=True)
class LocalizedAsset:
    output_path: Path
    relative_path: str
    content_type: str


def normalize_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime or None


def mime_to_extension(mime: Optional[str]) -> Optional[str]:
    """Map a MIME type to a canonical extension without the leading dot."""
    if not mime or mime == GENERIC_CONTENT_TYPE:
        return None
    if mime in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime]
    guessed = mimetypes.guess_extension(mime)
    return guessed.lstrip(".") if guessed else None


def extract_url_extension(remote_url: str) -> Optional[str]:
    try:
        path = urlsplit(remote_url).path
    except ValueError:
        return None
    suffix = PurePosixPath(unquote(path)).suffix.lstrip(".").lower()
    if suffix and URL_EXTENSION_RE.match(suffix):
        return suffix
    return None


def resolve_extension(remote_url: str, content_type: Optional[str], asset_type: AssetType) -> str:
    """Content-type first, then the URL path, then a per-type fallback."""
    return (
        mime_to_extension(normalize_mime(content_type))
        or extract_url_extension(remote_url)
        or FALLBACK_EXTENSIONS.get(asset_type, "bin")
    )


def build_partition_key(asset_type: AssetType, extension: str, now: Optional[datetime] = None) -> str:
    date_dir = (now or datetime.now(UTC)).strftime("%Y%m%d")
    return f"{asset_type}/{date_dir}/{uuid.uuid4().hex}.{extension}"


def _write_atomic(destination: Path, content: bytes) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.part")
    try:
        temp_path.write_bytes(content)
        os.replace(temp_path, destination)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class AssetLocalizer:
    """Download remote assets into a storage root."""

    def __init__(
        self,
        root: os.PathLike | str,
        partition_prefix: str = "",
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.root = canonical_root(root)
        self.partition_prefix = partition_prefix.strip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self._transport)

    async def _download(self, client: httpx.AsyncClient, remote_url: str) -> tuple[bytes, Optional[str]]:
        try:
            # httpx timeouts are per phase; this bounds the whole transfer.
            async with asyncio.timeout(self.timeout):
                response = await client.get(remote_url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Download failed for %s: %s", remote_url, exc)
            raise DownloadFailedError(remote_url, exc) from exc
        except TimeoutError as exc:
            logger.error("Download timed out after %ss for %s", self.timeout, remote_url)
            raise DownloadFailedError(remote_url, exc) from exc
        return response.content, response.headers.get("content-type")

    async def localize(
        self,
        remote_url: str,
        asset_type: AssetType = "images",
        client: Optional[httpx.AsyncClient] = None,
    ) -> LocalizedAsset:
        """Download one asset and store it under the root."""
        if client is None:
            async with self._client() as own_client:
                return await self.localize(remote_url, asset_type, own_client)

        content, content_type = await self._download(client, remote_url)
        extension = resolve_extension(remote_url, content_type, asset_type)
        partition_key = build_partition_key(asset_type, extension)
        relative_path = f"{self.partition_prefix}/{partition_key}" if self.partition_prefix else partition_key
        output_path = resolve_contained(self.root, relative_path)

        await asyncio.to_thread(_write_atomic, output_path, content)

        mime = normalize_mime(content_type)
        if mime is None or mime == GENERIC_CONTENT_TYPE:
            mime = mimetypes.guess_type(output_path.name)[0] or GENERIC_CONTENT_TYPE
        logger.debug("Stored %s (%d bytes) at %s", remote_url, len(content), output_path)
        return LocalizedAsset(output_path=output_path, relative_path=relative_path, content_type=mime)

    async def localize_all(self, remote_urls: Sequence[str], asset_type: AssetType = "images") -> list[LocalizedAsset]:
        """Download all assets concurrently; output order matches input order.

        Any single failure fails the whole batch.
        """
        return await self.localize_references([AssetReference(url, asset_type) for url in remote_urls])

    async def localize_references(self, references: Sequence[AssetReference]) -> list[LocalizedAsset]:
        if not references:
            return []
        async with self._client() as client:
            tasks = [
                asyncio.create_task(self.localize(ref.remote_url, ref.asset_type, client))
                for ref in references
            ]
            try:
                return list(await asyncio.gather(*tasks))
            except BaseException:
                # The shared client closes on exit; siblings must not outlive it.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

"""
Public base URL resolution for the long-lived HTTP API.

Turns a request's forwarded headers (or the configured public URL) into the
origin used to hand localized assets back to callers as shareable URLs.
"""
import logging
from typing import Mapping, Optional, Sequence
from urllib.parse import quote

from asset_store.localizer import AssetLocalizer, AssetType

logger = logging.getLogger(__name__)

PUBLIC_ROUTE = "/public"


def normalize_prefix(prefix: Optional[str] = "") -> str:
    """Return the prefix with a leading slash, or an empty string."""
    if not prefix:
        return ""
    prefix = prefix.strip().rstrip("/")
    if not prefix:
        return ""
    return prefix if prefix.startswith("/") else f"/{prefix}"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    if not value:
        return None
    # Proxy chains append values; the first one is the client-facing hop.
    first = value.split(",", 1)[0].strip()
    return first or None


def resolve_base_url(headers: Mapping[str, str], url_prefix: Optional[str] = "") -> Optional[str]:
    """Derive ``<proto>://<host><prefix>`` from request headers, or None without a host."""
    host = _header(headers, "x-forwarded-host") or _header(headers, "host")
    if not host:
        return None
    protocol = _header(headers, "x-forwarded-proto") or "http"
    return f"{protocol}://{host}{normalize_prefix(url_prefix)}"


def fallback_base_url(public_dir_url: str, url_prefix: Optional[str] = "") -> str:
    base = public_dir_url.rstrip("/")
    if base.endswith(PUBLIC_ROUTE):
        base = base[: -len(PUBLIC_ROUTE)]
    return f"{base}{normalize_prefix(url_prefix)}"


def build_public_asset_url(base_url: str, relative_path: str) -> str:
    encoded = "/".join(quote(segment, safe="") for segment in relative_path.split("/") if segment)
    return f"{base_url.rstrip('/')}{PUBLIC_ROUTE}/{encoded}"


async def localize_to_url(
    localizer: AssetLocalizer,
    remote_url: str,
    asset_type: AssetType,
    base_url: str,
) -> str:
    asset = await localizer.localize(remote_url, asset_type)
    local_url = build_public_asset_url(base_url, asset.relative_path)
    logger.info("asset localized: %s -> %s", remote_url, local_url)
    return local_url


async def localize_all_to_urls(
    localizer: AssetLocalizer,
    remote_urls: Sequence[str],
    asset_type: AssetType,
    base_url: str,
) -> list[str]:
    """Localize a batch and return public URLs in input order."""
    assets = await localizer.localize_all(remote_urls, asset_type)
    local_urls = []
    for remote_url, asset in zip(remote_urls, assets):
        local_url = build_public_asset_url(base_url, asset.relative_path)
        logger.info("asset localized: %s -> %s", remote_url, local_url)
        local_urls.append(local_url)
    return local_urls

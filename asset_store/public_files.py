"""Read-only lookups for the long-lived public directory."""
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from asset_store.errors import AssetNotFoundError, EmptyPathError
from asset_store.path_guard import resolve_contained

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_MEDIA_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class PublicFile:
    path: Path
    media_type: str
    size: int


def guess_media_type(path: os.PathLike | str) -> str:
    media_type, _ = mimetypes.guess_type(os.fspath(path))
    return media_type or DEFAULT_MEDIA_TYPE


def open_public_file(root: os.PathLike | str, sub_path: str) -> PublicFile:
    """Resolve a request sub-path under the public root.

    Raises EmptyPathError, PathTraversalError or AssetNotFoundError.
    """
    if not unquote(sub_path or "").lstrip("/\\"):
        logger.warning("Rejected empty public file path %r", sub_path)
        raise EmptyPathError("File path must not be empty")

    file_path = resolve_contained(root, sub_path)
    if not file_path.is_file():
        raise AssetNotFoundError(f"File not found: {sub_path}")
    return PublicFile(
        path=file_path,
        media_type=guess_media_type(file_path),
        size=file_path.stat().st_size,
    )

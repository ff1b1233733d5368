"""
Path containment checks shared by every file-serving path.

Any caller-supplied path is untrusted. It is percent-decoded, stripped of
leading separators, joined onto the storage root and normalized; the result
is only returned when it is still a descendant of the root.
"""
import logging
import os
from pathlib import Path
from typing import Union
from urllib.parse import unquote

from asset_store.errors import PathTraversalError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def canonical_root(root: PathLike) -> Path:
    """Resolve the storage root once; symlinks at the root itself are followed."""
    return Path(root).resolve()


def _relation_to_root(root: Path, candidate: str) -> str:
    try:
        relative = os.path.relpath(candidate, root)
    except ValueError:
        # Different drives on Windows.
        return candidate
    return relative


def _escapes_root(relative: str) -> bool:
    if os.path.isabs(relative):
        return True
    first_segment = relative.split(os.sep, 1)[0]
    if os.altsep:
        first_segment = first_segment.split(os.altsep, 1)[0]
    return first_segment == os.pardir


def _reject(root: Path, requested: str, reason: str) -> PathTraversalError:
    logger.warning("Rejected path %r under root %s: %s", requested, root, reason)
    return PathTraversalError(f"Path escapes storage root: {requested!r}")


def resolve_contained(root: PathLike, requested_relative_path: str) -> Path:
    """Return the absolute path for an untrusted relative path, or raise PathTraversalError."""
    root_path = canonical_root(root)
    raw_value = requested_relative_path or ""
    decoded = unquote(raw_value)
    if "\x00" in decoded:
        raise _reject(root_path, raw_value, "null byte")

    stripped = decoded.lstrip("/\\")
    joined = os.path.normpath(os.path.join(str(root_path), stripped))
    relative = _relation_to_root(root_path, joined)
    if _escapes_root(relative):
        raise _reject(root_path, raw_value, f"resolves to {joined}")
    return Path(joined)


def relative_to_root(root: PathLike, absolute_path: PathLike) -> str:
    """Return the posix-style path of an existing absolute path relative to root.

    Raises PathTraversalError if the path is not a descendant of root.
    """
    root_path = canonical_root(root)
    candidate = os.path.normpath(os.path.abspath(os.fspath(absolute_path)))
    relative = _relation_to_root(root_path, candidate)
    if _escapes_root(relative):
        # Caller may hold a non-canonical spelling of the root (e.g. /var vs /private/var).
        relative = _relation_to_root(root_path, os.path.realpath(candidate))
    if _escapes_root(relative) or relative == os.curdir:
        raise _reject(root_path, os.fspath(absolute_path), "outside storage root")
    return Path(relative).as_posix()

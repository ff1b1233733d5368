"""Error kinds raised by the asset localization and static-serving code."""
from typing import Optional


class AssetError(Exception):
    code = "ASSET_ERROR"

    def to_payload(self) -> dict[str, dict[str, str]]:
        return {"error": {"code": self.code, "message": str(self)}}


class PathTraversalError(AssetError):
    """Requested path resolves outside of its storage root."""
    code = "PATH_TRAVERSAL"


class EmptyPathError(AssetError):
    code = "EMPTY_PATH"


class AssetNotFoundError(AssetError):
    code = "NOT_FOUND"


class DownloadFailedError(AssetError):
    """Remote fetch failed, timed out, or returned a non-success status."""
    code = "DOWNLOAD_FAILED"

    def __init__(self, remote_url: str, cause: Optional[BaseException] = None):
        self.remote_url = remote_url
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Failed to download {remote_url} ({detail})")


class ServerNotReadyError(AssetError):
    code = "SERVER_NOT_READY"

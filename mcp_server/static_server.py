"""
Ephemeral loopback file server backing MCP tool results.

Started lazily on first use, bound to an OS-assigned port on 127.0.0.1 and
serving files from a private temp root under /assets/ with single byte-range
support. Lives for the rest of the process unless stopped explicitly.
"""
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit

from aiohttp import web

from asset_store.byte_range import resolve_byte_range
from asset_store.errors import PathTraversalError, ServerNotReadyError
from asset_store.path_guard import canonical_root, relative_to_root, resolve_contained
from asset_store.public_files import IMMUTABLE_CACHE_CONTROL, guess_media_type

logger = logging.getLogger(__name__)

ASSET_PREFIX = "/assets/"
LOOPBACK_HOST = "127.0.0.1"
CHUNK_SIZE = 256 * 1024


def _open_at(path: Path, offset: int):
    handle = open(path, "rb")
    try:
        handle.seek(offset)
    except BaseException:
        handle.close()
        raise
    return handle


class EphemeralStaticServer:
    def __init__(
        self,
        root_dir: os.PathLike | str,
        *,
        host: str = LOOPBACK_HOST,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.root_dir = Path(root_dir)
        self._host = host
        self._chunk_size = max(4096, int(chunk_size))
        self._port: Optional[int] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_lock = asyncio.Lock()

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def is_ready(self) -> bool:
        return self._port is not None

    @property
    def base_url(self) -> str:
        if self._port is None:
            raise ServerNotReadyError("MCP static file server is not ready")
        return f"http://{self._host}:{self._port}"

    async def ensure_started(self) -> int:
        """Start the listener once; concurrent callers all get the same port."""
        if self._port is not None:
            return self._port
        async with self._start_lock:
            if self._port is not None:
                return self._port
            await asyncio.to_thread(self.root_dir.mkdir, parents=True, exist_ok=True)

            app = web.Application()
            app.router.add_route("GET", "/{tail:.*}", self._handle_request)
            runner = web.AppRunner(app, access_log=None)
            await runner.setup()
            site = web.TCPSite(runner, self._host, 0)
            try:
                await site.start()
                sockets = site._server.sockets if site._server else None
                if not sockets:
                    raise RuntimeError("Failed to resolve static file server port")
                port = int(sockets[0].getsockname()[1])
            except BaseException:
                await runner.cleanup()
                raise

            self._runner = runner
            self._site = site
            self._port = port
            logger.info("MCP static file server started at http://%s:%s (root %s)", self._host, port, self.root_dir)
            return port

    async def stop(self) -> None:
        async with self._start_lock:
            runner = self._runner
            self._runner = None
            self._site = None
            self._port = None
            if runner is not None:
                await runner.cleanup()
                logger.info("MCP static file server stopped")

    def to_local_url(self, local_path: os.PathLike | str) -> str:
        """Build a fetchable URL for a file under the root.

        Each path segment is percent-encoded on its own.
        """
        if self._port is None:
            raise ServerNotReadyError("MCP static file server is not ready")
        relative = relative_to_root(self.root_dir, local_path)
        encoded_path = "/".join(quote(segment, safe="") for segment in relative.split("/"))
        return f"http://{self._host}:{self._port}{ASSET_PREFIX}{encoded_path}"

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        try:
            return await self._serve_asset(request)
        except Exception:
            logger.error("MCP static file server error on %s", request.raw_path, exc_info=True)
            return web.Response(status=500, text="Internal Server Error")

    async def _serve_asset(self, request: web.Request) -> web.StreamResponse:
        raw_path = urlsplit(request.raw_path).path
        if not raw_path.startswith(ASSET_PREFIX):
            return web.Response(status=404, text="Not Found")

        try:
            file_path = resolve_contained(canonical_root(self.root_dir), raw_path[len(ASSET_PREFIX):])
        except PathTraversalError:
            return web.Response(status=400, text="Invalid path")

        try:
            stat = await asyncio.to_thread(file_path.stat)
        except (FileNotFoundError, NotADirectoryError):
            return web.Response(status=404, text="Not Found")
        if not file_path.is_file():
            return web.Response(status=404, text="Not Found")

        size = stat.st_size
        headers = {
            "Content-Type": guess_media_type(file_path),
            "Accept-Ranges": "bytes",
            "Cache-Control": IMMUTABLE_CACHE_CONTROL,
        }

        byte_range = resolve_byte_range(request.headers.get("Range"), size)
        if byte_range is None:
            headers["Content-Length"] = str(size)
            return await self._stream_file(request, file_path, 200, headers, 0, size)

        headers["Content-Range"] = byte_range.content_range
        if not byte_range.satisfiable:
            return web.Response(status=416, headers=headers)

        headers["Content-Length"] = str(byte_range.length)
        return await self._stream_file(request, file_path, 206, headers, byte_range.start, byte_range.length)

    async def _stream_file(
        self,
        request: web.Request,
        file_path: Path,
        status: int,
        headers: dict[str, str],
        start: int,
        length: int,
    ) -> web.StreamResponse:
        handle = await asyncio.to_thread(_open_at, file_path, start)
        try:
            resp = web.StreamResponse(status=status, headers=headers)
            await resp.prepare(request)
            try:
                remaining = length
                while remaining > 0:
                    chunk = await asyncio.to_thread(handle.read, min(self._chunk_size, remaining))
                    if not chunk:
                        break
                    await resp.write(chunk)
                    remaining -= len(chunk)
                if remaining > 0:
                    logger.warning(
                        "Short read while streaming %s: %d of %d bytes missing",
                        file_path, remaining, length,
                    )
                    if request.transport is not None:
                        request.transport.close()
                    return resp
                await resp.write_eof()
            except (ConnectionResetError, BrokenPipeError) as e:
                logger.debug(f"Client disconnected while streaming {file_path}: {e}")
            except Exception:
                # Headers are already on the wire; only the connection can signal failure.
                logger.error("Failed while streaming %s", file_path, exc_info=True)
                if request.transport is not None:
                    request.transport.close()
            return resp
        finally:
            await asyncio.to_thread(handle.close)

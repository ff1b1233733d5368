import asyncio
import re
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path

import httpx

from asset_store.errors import DownloadFailedError
from asset_store.localizer import (
    AssetLocalizer,
    AssetReference,
    build_partition_key,
    extract_url_extension,
    mime_to_extension,
    resolve_extension,
)

PARTITION_RE = re.compile(r"^(images|videos)/\d{8}/[0-9a-f]{32}\.[a-z0-9]+$")


class TestResolveExtension(unittest.TestCase):
    def test_content_type_wins_over_url(self):
        self.assertEqual(resolve_extension("https://cdn.example/x.png", "image/jpeg", "images"), "jpg")

    def test_content_type_parameters_are_ignored(self):
        self.assertEqual(resolve_extension("https://cdn.example/x", "video/mp4; codecs=avc1", "videos"), "mp4")

    def test_url_extension_used_without_content_type(self):
        self.assertEqual(resolve_extension("https://cdn.example/a/b.WEBP?sig=1", None, "images"), "webp")

    def test_generic_content_type_falls_through_to_url(self):
        self.assertEqual(
            resolve_extension("https://cdn.example/clip.mov", "application/octet-stream", "videos"),
            "mov",
        )

    def test_fallback_per_asset_type(self):
        self.assertEqual(resolve_extension("https://cdn.example/image", None, "images"), "png")
        self.assertEqual(resolve_extension("https://cdn.example/video", None, "videos"), "mp4")

    def test_url_extension_rejects_odd_suffixes(self):
        self.assertIsNone(extract_url_extension("https://cdn.example/file.tar-gz!"))
        self.assertIsNone(extract_url_extension("https://cdn.example/noext"))

    def test_mime_table(self):
        self.assertEqual(mime_to_extension("image/png"), "png")
        self.assertEqual(mime_to_extension("video/quicktime"), "mov")
        self.assertIsNone(mime_to_extension(None))


class TestBuildPartitionKey(unittest.TestCase):
    def test_layout_uses_utc_date_and_random_name(self):
        now = datetime(2024, 3, 9, 23, 59, tzinfo=UTC)
        key = build_partition_key("images", "jpg", now=now)
        self.assertTrue(key.startswith("images/20240309/"))
        self.assertRegex(key, PARTITION_RE)

    def test_keys_are_unique(self):
        keys = {build_partition_key("videos", "mp4") for _ in range(50)}
        self.assertEqual(len(keys), 50)


class TestAssetLocalizer(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()

    def tearDown(self):
        self._tmp.cleanup()

    def _localizer(self, handler, **kwargs) -> AssetLocalizer:
        return AssetLocalizer(self.root, transport=httpx.MockTransport(handler), **kwargs)

    def test_localize_stores_jpeg_with_jpg_extension(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"\xff\xd8jpeg-bytes", headers={"content-type": "image/jpeg"})

        localizer = self._localizer(handler)
        asset = asyncio.run(localizer.localize("https://cdn.example/out/result.png", "images"))

        self.assertRegex(asset.relative_path, PARTITION_RE)
        self.assertTrue(asset.relative_path.endswith(".jpg"))
        self.assertEqual(asset.content_type, "image/jpeg")
        self.assertEqual(asset.output_path, self.root / asset.relative_path)
        self.assertEqual(asset.output_path.read_bytes(), b"\xff\xd8jpeg-bytes")
        leftovers = [p.name for p in asset.output_path.parent.iterdir() if p.name.endswith(".part")]
        self.assertEqual(leftovers, [])

    def test_partition_prefix_is_prepended(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"video", headers={"content-type": "video/mp4"})

        localizer = self._localizer(handler, partition_prefix="/generated/")
        asset = asyncio.run(localizer.localize("https://cdn.example/v", "videos"))

        self.assertTrue(asset.relative_path.startswith("generated/videos/"))
        self.assertTrue(asset.output_path.is_file())

    def test_missing_content_type_is_guessed_from_extension(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"data")

        localizer = self._localizer(handler)
        asset = asyncio.run(localizer.localize("https://cdn.example/v/clip.mp4", "videos"))

        self.assertTrue(asset.relative_path.endswith(".mp4"))
        self.assertEqual(asset.content_type, "video/mp4")

    def test_localize_all_preserves_input_order(self):
        delays = {"/first.png": 0.05, "/second.png": 0.0, "/third.png": 0.02}

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(delays[request.url.path])
            return httpx.Response(200, content=request.url.path.encode(), headers={"content-type": "image/png"})

        localizer = self._localizer(handler)
        urls = [f"https://cdn.example{path}" for path in delays]
        assets = asyncio.run(localizer.localize_all(urls, "images"))

        self.assertEqual([asset.output_path.read_bytes() for asset in assets], [p.encode() for p in delays])

    def test_localize_all_with_no_urls(self):
        localizer = self._localizer(lambda request: httpx.Response(500))
        self.assertEqual(asyncio.run(localizer.localize_all([], "images")), [])

    def test_http_error_status_raises_download_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="gone")

        localizer = self._localizer(handler)
        with self.assertRaises(DownloadFailedError) as ctx:
            asyncio.run(localizer.localize("https://cdn.example/missing.png", "images"))

        self.assertEqual(ctx.exception.remote_url, "https://cdn.example/missing.png")
        self.assertEqual(ctx.exception.code, "DOWNLOAD_FAILED")
        self.assertEqual(list(self.root.rglob("*")), [])

    def test_connection_error_raises_download_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        localizer = self._localizer(handler)
        with self.assertRaises(DownloadFailedError):
            asyncio.run(localizer.localize("https://cdn.example/a.png", "images"))

    def test_trickling_body_is_cut_off_by_total_timeout(self):
        async def trickle():
            for _ in range(10):
                await asyncio.sleep(0.2)
                yield b"x"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=trickle(), headers={"content-type": "video/mp4"})

        localizer = self._localizer(handler, timeout=0.5)
        with self.assertRaises(DownloadFailedError) as ctx:
            asyncio.run(localizer.localize("https://cdn.example/slow.mp4", "videos"))

        self.assertIsInstance(ctx.exception.cause, TimeoutError)
        self.assertEqual(list(self.root.rglob("*")), [])

    def test_one_failure_fails_the_whole_batch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/bad.png":
                return httpx.Response(500)
            return httpx.Response(200, content=b"ok", headers={"content-type": "image/png"})

        localizer = self._localizer(handler)
        with self.assertRaises(DownloadFailedError) as ctx:
            asyncio.run(localizer.localize_references([
                AssetReference("https://cdn.example/good.png", "images"),
                AssetReference("https://cdn.example/bad.png", "images"),
            ]))

        self.assertEqual(ctx.exception.remote_url, "https://cdn.example/bad.png")


if __name__ == "__main__":
    unittest.main()

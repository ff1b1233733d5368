import asyncio
import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx

from asset_store.errors import ServerNotReadyError
from mcp_server.static_server import EphemeralStaticServer

PAYLOAD = bytes(range(100))


class TestEphemeralStaticServer(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve() / "mcp-root"
        video_dir = self.root / "videos" / "20240101"
        video_dir.mkdir(parents=True)
        self.video = video_dir / "clip.mp4"
        self.video.write_bytes(PAYLOAD)
        self.spaced = self.root / "images" / "hello world#1.png"
        self.spaced.parent.mkdir(parents=True)
        self.spaced.write_bytes(b"png")

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, scenario):
        async def runner():
            server = EphemeralStaticServer(self.root)
            await server.ensure_started()
            try:
                async with httpx.AsyncClient(trust_env=False) as client:
                    return await scenario(server, client)
            finally:
                await server.stop()

        return asyncio.run(runner())

    def test_full_file(self):
        async def scenario(server, client):
            return await client.get(server.to_local_url(self.video))

        response = self._run(scenario)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, PAYLOAD)
        self.assertEqual(response.headers["content-type"], "video/mp4")
        self.assertEqual(response.headers["accept-ranges"], "bytes")
        self.assertEqual(response.headers["content-length"], "100")
        self.assertIn("immutable", response.headers["cache-control"])

    def test_partial_content(self):
        async def scenario(server, client):
            return await client.get(server.to_local_url(self.video), headers={"Range": "bytes=10-19"})

        response = self._run(scenario)
        self.assertEqual(response.status_code, 206)
        self.assertEqual(response.headers["content-range"], "bytes 10-19/100")
        self.assertEqual(response.headers["content-length"], "10")
        self.assertEqual(response.content, PAYLOAD[10:20])

    def test_open_ended_range(self):
        async def scenario(server, client):
            return await client.get(server.to_local_url(self.video), headers={"Range": "bytes=95-"})

        response = self._run(scenario)
        self.assertEqual(response.status_code, 206)
        self.assertEqual(response.headers["content-range"], "bytes 95-99/100")
        self.assertEqual(response.content, PAYLOAD[95:])

    def test_full_range_matches_unranged_body(self):
        async def scenario(server, client):
            url = server.to_local_url(self.video)
            return await client.get(url), await client.get(url, headers={"Range": "bytes=0-99"})

        whole, ranged = self._run(scenario)
        self.assertEqual(ranged.status_code, 206)
        self.assertEqual(ranged.headers["content-range"], "bytes 0-99/100")
        self.assertEqual(ranged.content, whole.content)

    def test_adjacent_ranges_concatenate_to_whole_file(self):
        async def scenario(server, client):
            url = server.to_local_url(self.video)
            parts = []
            for header in ("bytes=0-49", "bytes=50-99"):
                parts.append(await client.get(url, headers={"Range": header}))
            return parts

        first, second = self._run(scenario)
        self.assertEqual([first.status_code, second.status_code], [206, 206])
        self.assertEqual(first.content + second.content, PAYLOAD)

    def test_unsatisfiable_range(self):
        async def scenario(server, client):
            return await client.get(server.to_local_url(self.video), headers={"Range": "bytes=200-300"})

        response = self._run(scenario)
        self.assertEqual(response.status_code, 416)
        self.assertEqual(response.headers["content-range"], "bytes */100")

    def test_malformed_range_serves_whole_file(self):
        async def scenario(server, client):
            return await client.get(server.to_local_url(self.video), headers={"Range": "bytes=0-1,5-6"})

        response = self._run(scenario)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, PAYLOAD)

    def test_encoded_traversal_is_rejected(self):
        async def scenario(server, client):
            return await client.get(f"{server.base_url}/assets/..%2F..%2Fetc%2Fpasswd")

        self.assertEqual(self._run(scenario).status_code, 400)

    def test_literal_dot_segments_are_rejected(self):
        # httpx normalizes dot segments, so the request line is written by hand.
        async def scenario(server, client):
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(
                b"GET /assets/../../etc/passwd HTTP/1.1\r\n"
                b"Host: 127.0.0.1\r\n"
                b"Connection: close\r\n\r\n"
            )
            await writer.drain()
            raw = await reader.read()
            writer.close()
            await writer.wait_closed()
            return raw

        raw = self._run(scenario)
        status_line = raw.split(b"\r\n", 1)[0]
        self.assertEqual(status_line.split(b" ")[1], b"400")
        self.assertNotIn(b"root:", raw)

    def test_file_shrinking_mid_stream_drops_connection(self):
        async def scenario(server, client):
            try:
                await client.get(server.to_local_url(self.video))
            except httpx.HTTPError:
                return "dropped"
            return "completed"

        with patch("mcp_server.static_server._open_at", return_value=io.BytesIO(PAYLOAD[:5])), \
                self.assertLogs("mcp_server.static_server", level="WARNING") as logs:
            outcome = self._run(scenario)

        self.assertEqual(outcome, "dropped")
        self.assertTrue(any("Short read" in line for line in logs.output))

    def test_missing_file_and_foreign_prefix(self):
        async def scenario(server, client):
            missing = await client.get(f"{server.base_url}/assets/videos/20240101/none.mp4")
            directory = await client.get(f"{server.base_url}/assets/videos")
            foreign = await client.get(f"{server.base_url}/other/clip.mp4")
            return missing, directory, foreign

        missing, directory, foreign = self._run(scenario)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(directory.status_code, 404)
        self.assertEqual(foreign.status_code, 404)

    def test_special_characters_round_trip(self):
        async def scenario(server, client):
            url = server.to_local_url(self.spaced)
            return url, await client.get(url)

        url, response = self._run(scenario)
        self.assertTrue(url.endswith("/assets/images/hello%20world%231.png"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"png")

    def test_concurrent_start_binds_once(self):
        async def scenario():
            server = EphemeralStaticServer(self.root)
            try:
                ports = await asyncio.gather(*(server.ensure_started() for _ in range(5)))
                return ports, server.port
            finally:
                await server.stop()

        ports, port = asyncio.run(scenario())
        self.assertEqual(len(set(ports)), 1)
        self.assertEqual(ports[0], port)
        self.assertGreater(port, 0)

    def test_to_local_url_before_start(self):
        server = EphemeralStaticServer(self.root)
        self.assertFalse(server.is_ready)
        with self.assertRaises(ServerNotReadyError):
            server.to_local_url(self.video)

    def test_start_creates_missing_root(self):
        fresh_root = self.root / "not-yet"

        async def scenario():
            server = EphemeralStaticServer(fresh_root)
            try:
                await server.ensure_started()
                return fresh_root.is_dir()
            finally:
                await server.stop()

        self.assertTrue(asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()

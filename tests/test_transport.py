"""Tests for dialspeed.transport and dialspeed.catalog -- session handling and probe choice."""

import asyncio
import unittest
from unittest import mock

from dialspeed.catalog import CatalogAPI, ClientInfo
from dialspeed.servers import FALLBACK_SERVERS, Server
from dialspeed.transport import HttpLatencyProbe, HttpTransport, WebSocketLatencyProbe, _FallbackLatencyProbe


class TestClientInfo(unittest.TestCase):
    def test_location(self):
        info = ClientInfo(ip="1.2.3.4", isp="ISP", lat=52.5, lon=13.4, country="DE")
        self.assertEqual(info.location, (52.5, 13.4))

    def test_unknown_location(self):
        info = ClientInfo(ip="", isp="", lat=0.0, lon=0.0, country="")
        self.assertIsNone(info.location)

    def test_from_html(self):
        html = (
            '{"ipAddress":"198.51.100.4","ispName":"Example ISP",'
            '"latitude":"52.52","longitude":13.405,"countryCode":"DE"}'
        )
        info = ClientInfo.from_html(html)
        self.assertEqual(info.ip, "198.51.100.4")
        self.assertEqual(info.isp, "Example ISP")
        self.assertEqual(info.location, (52.52, 13.405))
        self.assertEqual(info.country, "DE")

    def test_from_html_missing_fields(self):
        info = ClientInfo.from_html("<html></html>")
        self.assertEqual(info.ip, "")
        self.assertIsNone(info.location)

    def test_to_dict(self):
        d = ClientInfo(ip="1.2.3.4", isp="ISP", lat=1.0, lon=2.0, country="DE").to_dict()
        self.assertEqual(d["ip"], "1.2.3.4")
        self.assertEqual(d["country"], "DE")


class TestSessionRequired(unittest.IsolatedAsyncioTestCase):
    async def test_catalog_outside_context(self):
        with self.assertRaises(RuntimeError):
            await CatalogAPI().fetch_records()

    async def test_transport_outside_context(self):
        with self.assertRaises(RuntimeError):
            await HttpTransport().download(FALLBACK_SERVERS[0], 1)


class TestProbeChoice(unittest.IsolatedAsyncioTestCase):
    async def test_http_for_plain_servers(self):
        async with HttpTransport() as transport:
            probe = transport.latency_probe(FALLBACK_SERVERS[0])
        self.assertIsInstance(probe, HttpLatencyProbe)
        self.assertEqual(probe.url, "https://speed.cloudflare.com/")

    async def test_websocket_with_fallback_for_ookla_servers(self):
        server = Server.from_catalog({"id": "1", "host": "speed.example.net:8080", "sponsor": "X"})
        async with HttpTransport() as transport:
            probe = transport.latency_probe(server)
        self.assertIsInstance(probe, _FallbackLatencyProbe)


class _BinarySocket:
    """Sends every control message as a binary frame."""

    def __init__(self):
        self.inbox = asyncio.Queue()
        for line in (b"HELLO 2.11 (2.11.0)", b"YOURIP 198.51.100.23", b"CAPABILITIES SERVER_HOST_AUTH"):
            self.inbox.put_nowait(line)

    async def send(self, message):
        self.inbox.put_nowait(b"PONG 1700000000000")

    async def recv(self):
        return await self.inbox.get()


class _Connection:
    def __init__(self, socket):
        self.socket = socket

    async def __aenter__(self):
        return self.socket

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


class TestWebSocketLatencyProbe(unittest.IsolatedAsyncioTestCase):
    async def test_binary_frames(self):
        server = Server.from_catalog({"id": "1", "host": "speed.example.net:8080", "sponsor": "X"})
        with mock.patch(
            "dialspeed.transport.websockets.connect",
            return_value=_Connection(_BinarySocket()),
        ):
            async with WebSocketLatencyProbe(server, timeout=1.0) as probe:
                rtt = await probe.ping()

        self.assertEqual(probe.server_version, "2.11")
        self.assertEqual(probe.external_ip, "198.51.100.23")
        self.assertGreaterEqual(rtt, 0.0)


if __name__ == "__main__":
    unittest.main()

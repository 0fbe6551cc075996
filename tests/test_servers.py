"""Tests for dialspeed.servers -- server model, ranking and directory."""

import asyncio
import math
import unittest

import aiohttp

from dialspeed.servers import (
    FALLBACK_SERVERS,
    Server,
    ServerDirectory,
    haversine_km,
    parse_number,
    rank_servers,
)


MINSK = (53.9, 27.5667)
BERLIN = (52.52, 13.405)


def _record(**overrides):
    record = {
        "id": "12345",
        "name": "Berlin",
        "sponsor": "Test ISP",
        "host": "speed.test.com:8080",
        "country": "Germany",
        "cc": "DE",
        "lat": "52.52",
        "lon": "13.405",
    }
    record.update(overrides)
    return record


class TestParseNumber(unittest.TestCase):
    def test_numbers(self):
        self.assertEqual(parse_number(12), 12.0)
        self.assertEqual(parse_number(-3.5), -3.5)

    def test_numeric_strings(self):
        self.assertEqual(parse_number("52.52"), 52.52)
        self.assertEqual(parse_number(" -13.4 "), -13.4)

    def test_garbage_uses_default(self):
        self.assertEqual(parse_number("abc"), 0.0)
        self.assertEqual(parse_number(None, default=7.0), 7.0)
        self.assertEqual(parse_number(True), 0.0)
        self.assertEqual(parse_number("nan"), 0.0)
        self.assertEqual(parse_number(float("inf"), default=1.0), 1.0)


class TestHaversine(unittest.TestCase):
    def test_zero(self):
        self.assertEqual(haversine_km(*BERLIN, *BERLIN), 0.0)

    def test_symmetric(self):
        there = haversine_km(*BERLIN, *MINSK)
        back = haversine_km(*MINSK, *BERLIN)
        self.assertAlmostEqual(there, back)

    def test_known_distance(self):
        # Berlin -> Minsk is roughly 950 km
        self.assertTrue(900 < haversine_km(*BERLIN, *MINSK) < 1000)

    def test_antipodes(self):
        self.assertAlmostEqual(haversine_km(0, 0, 0, 180), math.pi * 6371.0, places=3)


class TestServer(unittest.TestCase):
    def test_from_catalog(self):
        s = Server.from_catalog(_record())
        self.assertEqual(s.id, "12345")
        self.assertEqual(s.name, "Test ISP")
        self.assertEqual(s.provider, "Test ISP")
        self.assertEqual(s.city, "Berlin")
        self.assertEqual(s.host, "speed.test.com")
        self.assertEqual(s.port, 8080)
        self.assertEqual(s.lat, 52.52)
        self.assertTrue(s.supports_websocket)

    def test_from_catalog_tolerates_bad_fields(self):
        s = Server.from_catalog(_record(lat="n/a", lon=None, host="bare.example.com"))
        self.assertEqual((s.lat, s.lon), (0.0, 0.0))
        self.assertEqual(s.port, 8080)

    def test_urls(self):
        s = Server.from_catalog(_record())
        self.assertEqual(s.ping_url, "https://speed.test.com:8080/hello")
        self.assertEqual(s.download_url(1000), "https://speed.test.com:8080/download?size=1000")
        self.assertEqual(s.upload_url, "https://speed.test.com:8080/upload")
        self.assertEqual(s.ws_url, "wss://speed.test.com:8080/ws?")

    def test_fallback_urls(self):
        cloudflare = FALLBACK_SERVERS[0]
        self.assertTrue(cloudflare.is_default)
        self.assertEqual(cloudflare.download_url(5), "https://speed.cloudflare.com/__down?bytes=5")
        self.assertFalse(cloudflare.supports_websocket)

    def test_location(self):
        self.assertEqual(Server.from_catalog(_record()).location, "Berlin, Germany")

    def test_to_dict(self):
        d = Server.from_catalog(_record()).with_distance(12.345).to_dict()
        self.assertEqual(d["distance_km"], 12.3)
        self.assertEqual(d["status"], "active")


class TestRankServers(unittest.TestCase):
    def test_sorted_nearest_first(self):
        berlin = Server.from_catalog(_record())
        minsk = Server.from_catalog(_record(id="2", name="Minsk", lat=53.9, lon=27.5667))
        ranked = rank_servers([berlin, minsk], MINSK)
        self.assertEqual([s.id for s in ranked], ["2", "12345"])
        self.assertLess(ranked[0].distance_km, 1.0)

    def test_no_location(self):
        ranked = rank_servers([Server.from_catalog(_record())], None)
        self.assertEqual(ranked[0].distance_km, 0.0)


class TestServerDirectory(unittest.IsolatedAsyncioTestCase):
    async def test_starts_with_fallback(self):
        directory = ServerDirectory()
        self.assertEqual(len(directory.servers), len(FALLBACK_SERVERS))
        self.assertEqual(directory.selected.id, "cloudflare")

    async def test_search_is_case_insensitive(self):
        byfly = Server(id="by", name="ByFly", host="speedtest.byfly.by", city="Minsk", country="Belarus")
        directory = ServerDirectory(fallback=(FALLBACK_SERVERS[0], byfly))
        matches = directory.search("CLOUD")
        self.assertEqual([s.name for s in matches], ["Cloudflare"])
        self.assertEqual([s.name for s in directory.search("minsk")], ["ByFly"])

    async def test_search_empty_query_returns_all(self):
        directory = ServerDirectory()
        self.assertEqual(len(directory.search("  ")), len(FALLBACK_SERVERS))

    async def test_fetch_ranks_catalog(self):
        async def fetch():
            return [
                _record(),
                _record(id="2", name="Minsk", lat=53.9, lon=27.5667),
                "not a record",
            ]

        directory = ServerDirectory(fetch_catalog=fetch)
        servers = await directory.fetch_servers(MINSK)
        self.assertEqual([s.id for s in servers], ["2", "12345"])
        self.assertEqual(directory.location, MINSK)
        # previous selection (cloudflare) is gone -> head of the list
        self.assertEqual(directory.selected.id, "2")

    async def test_fetch_falls_back_on_timeout(self):
        async def fetch():
            raise asyncio.TimeoutError()

        directory = ServerDirectory(fetch_catalog=fetch)
        with self.assertLogs("dialspeed.servers", level="WARNING"):
            servers = await directory.fetch_servers()
        self.assertEqual([s.id for s in servers], [s.id for s in FALLBACK_SERVERS])
        self.assertEqual(directory.selected.id, "cloudflare")

    async def test_fetch_falls_back_on_http_error(self):
        async def fetch():
            raise aiohttp.ClientConnectionError("refused")

        directory = ServerDirectory(fetch_catalog=fetch)
        with self.assertLogs("dialspeed.servers", level="WARNING"):
            servers = await directory.fetch_servers()
        self.assertTrue(servers)

    async def test_fetch_falls_back_on_empty(self):
        async def fetch():
            return []

        directory = ServerDirectory(fetch_catalog=fetch)
        with self.assertLogs("dialspeed.servers", level="WARNING"):
            servers = await directory.fetch_servers()
        self.assertEqual(len(servers), len(FALLBACK_SERVERS))

    async def test_selection_survives_refresh(self):
        async def fetch():
            return [_record(), _record(id="2", name="Minsk", lat=53.9, lon=27.5667)]

        directory = ServerDirectory(fetch_catalog=fetch)
        await directory.fetch_servers(MINSK)
        directory.select(directory.find("12345"))
        await directory.fetch_servers(MINSK)
        self.assertEqual(directory.selected.id, "12345")

    async def test_select_closest(self):
        async def fetch():
            return [_record(), _record(id="2", name="Minsk", lat=53.9, lon=27.5667)]

        directory = ServerDirectory(fetch_catalog=fetch)
        await directory.fetch_servers()
        directory.update_distances(BERLIN)
        self.assertEqual(directory.select_closest().id, "12345")

    async def test_changes_published(self):
        directory = ServerDirectory()
        seen = []
        directory.changes.subscribe(seen.append)
        directory.select(FALLBACK_SERVERS[1])
        self.assertEqual(len(seen), 1)
        self.assertEqual(directory.selected.id, "fast.com")

    async def test_empty_fallback_rejected(self):
        with self.assertRaises(ValueError):
            ServerDirectory(fallback=())


if __name__ == "__main__":
    unittest.main()

"""Tests for dialspeed.results -- ratings, the result record and assembly."""

import dataclasses
import unittest

from dialspeed.connectivity import ConnectivityMonitor, ConnectivityState, InterfaceType
from dialspeed.results import (
    MeasurementResult,
    ResultAssembler,
    gaming_rating,
    streaming_rating,
    uploading_rating,
)
from dialspeed.servers import FALLBACK_SERVERS
from dialspeed.stats import LatencyStats, PhaseResult, SpeedSample


def _result(**overrides):
    fields = dict(
        download_mbps=95.456,
        upload_mbps=20.0,
        ping_ms=18,
        jitter_ms=2,
        packet_loss=0,
        server_name="Cloudflare",
        server_location="Global, Worldwide",
    )
    fields.update(overrides)
    return MeasurementResult(**fields)


class TestRatings(unittest.TestCase):
    def test_streaming(self):
        self.assertEqual(streaming_rating(30.0), 5)
        self.assertEqual(streaming_rating(25.0), 5)
        self.assertEqual(streaming_rating(12.0), 3)
        self.assertEqual(streaming_rating(1.0), 1)

    def test_uploading(self):
        self.assertEqual(uploading_rating(10.0), 5)
        self.assertEqual(uploading_rating(6.0), 3)
        self.assertEqual(uploading_rating(0.5), 1)

    def test_gaming_needs_both(self):
        self.assertEqual(gaming_rating(20, 50.0), 5)
        self.assertEqual(gaming_rating(20, 12.0), 3)
        self.assertEqual(gaming_rating(90, 100.0), 2)
        self.assertEqual(gaming_rating(150, 100.0), 1)


class TestMeasurementResult(unittest.TestCase):
    def test_frozen(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            _result().download_mbps = 1.0

    def test_bandwidth(self):
        self.assertAlmostEqual(_result(download_mbps=100.0, upload_mbps=50.0).bandwidth_mbps, 75.0)

    def test_to_dict(self):
        r = _result(download_history=(SpeedSample(0, 90.0, 0.5),))
        d = r.to_dict()
        self.assertEqual(d["download_mbps"], 95.46)
        self.assertEqual(d["ping_ms"], 18)
        self.assertEqual(d["ratings"], {"streaming": 5, "gaming": 5, "uploading": 5})
        self.assertEqual(d["download_history"], [{"index": 0, "speed_mbps": 90.0, "elapsed": 0.5}])
        self.assertIn("timestamp", d)

    def test_defaults(self):
        r = _result()
        self.assertEqual(r.connection_type, "unknown")
        self.assertEqual(r.internal_ip, "N/A")
        self.assertEqual(r.external_ip, "N/A")


class _Store:
    def __init__(self, error=None):
        self.saved = []
        self.error = error

    def save(self, result):
        if self.error:
            raise self.error
        self.saved.append(result)


def _monitor():
    async def provider(interface):
        return None

    return ConnectivityMonitor(
        provider_resolver=provider,
        initial=ConnectivityState(True, InterfaceType.CELLULAR),
    )


def _phases():
    latency = LatencyStats()
    for rtt in (20.5, 22.0):
        latency.record(rtt)
    latency.record_failure()
    latency.finalize()
    download = PhaseResult(speed_mbps=80.0, samples=(SpeedSample(0, 80.0, 1.0),))
    upload = PhaseResult(speed_mbps=8.0)
    return latency, download, upload


class TestResultAssembler(unittest.IsolatedAsyncioTestCase):
    async def test_assemble(self):
        store = _Store()

        async def lookup():
            return "198.51.100.7"

        assembler = ResultAssembler(
            _monitor(),
            store=store,
            external_ip_lookup=lookup,
            internal_ip_lookup=lambda: "10.0.0.2",
        )
        result = await assembler.assemble(FALLBACK_SERVERS[0], *_phases())

        self.assertEqual(result.ping_ms, 21)
        self.assertEqual(result.jitter_ms, 1)
        self.assertEqual(result.packet_loss, 33)
        self.assertEqual(result.connection_type, "cellular")
        self.assertEqual(result.provider_name, "Unknown Carrier")
        self.assertEqual(result.internal_ip, "10.0.0.2")
        self.assertEqual(result.external_ip, "198.51.100.7")
        self.assertEqual(result.server_location, "Global, Worldwide")
        self.assertEqual(len(result.download_history), 1)
        self.assertEqual(store.saved, [result])

    async def test_external_ip_failure_is_not_fatal(self):
        async def lookup():
            raise OSError("offline")

        assembler = ResultAssembler(
            _monitor(), external_ip_lookup=lookup, internal_ip_lookup=lambda: "10.0.0.2"
        )
        result = await assembler.assemble(FALLBACK_SERVERS[0], *_phases())
        self.assertEqual(result.external_ip, "N/A")

    async def test_store_failure_is_logged(self):
        assembler = ResultAssembler(
            _monitor(), store=_Store(error=OSError("disk full")), internal_ip_lookup=lambda: "N/A"
        )
        with self.assertLogs("dialspeed.results", level="ERROR"):
            result = await assembler.assemble(FALLBACK_SERVERS[0], *_phases())
        self.assertEqual(result.upload_mbps, 8.0)

    async def test_any_store_error_keeps_result(self):
        assembler = ResultAssembler(
            _monitor(), store=_Store(error=RuntimeError("db locked")), internal_ip_lookup=lambda: "N/A"
        )
        with self.assertLogs("dialspeed.results", level="ERROR"):
            result = await assembler.assemble(FALLBACK_SERVERS[0], *_phases())
        self.assertEqual(result.download_mbps, 80.0)


if __name__ == "__main__":
    unittest.main()

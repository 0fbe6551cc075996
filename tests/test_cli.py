"""Tests for the command-line entry point -- validation and argument merging."""

import argparse
import unittest

from dialspeed.config import DEFAULTS
from dialspeed.servers import ServerDirectory
from speedtest import _choose_server, _merge_args, _validate


def _args(**overrides):
    values = dict(
        server=None,
        unit=None,
        scale=None,
        ping_count=None,
        download_duration=None,
        upload_duration=None,
        concurrency=None,
        verbose=False,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


class TestValidate(unittest.TestCase):
    def test_valid(self):
        _validate(ping_count=10, download_duration=10, upload_duration=10, concurrency=3)

    def test_bounds_inclusive(self):
        _validate(ping_count=1, download_duration=1, upload_duration=300, concurrency=3)

    def test_ping_count(self):
        with self.assertRaises(ValueError):
            _validate(ping_count=0, download_duration=10, upload_duration=10, concurrency=3)
        with self.assertRaises(ValueError):
            _validate(ping_count=101, download_duration=10, upload_duration=10, concurrency=3)

    def test_durations(self):
        with self.assertRaises(ValueError):
            _validate(ping_count=10, download_duration=0.5, upload_duration=10, concurrency=3)
        with self.assertRaises(ValueError):
            _validate(ping_count=10, download_duration=10, upload_duration=301, concurrency=3)

    def test_concurrency(self):
        with self.assertRaises(ValueError):
            _validate(ping_count=10, download_duration=10, upload_duration=10, concurrency=0)
        with self.assertRaises(ValueError):
            _validate(ping_count=10, download_duration=10, upload_duration=10, concurrency=4)


class TestMergeArgs(unittest.TestCase):
    def test_config_used_when_flag_missing(self):
        merged = _merge_args(_args(), dict(DEFAULTS, unit="KB/s"))
        self.assertEqual(merged["unit"], "KB/s")

    def test_flags_win(self):
        merged = _merge_args(_args(unit="MB/s", scale=100, concurrency=2), dict(DEFAULTS))
        self.assertEqual(merged["unit"], "MB/s")
        self.assertEqual(merged["dial_scale"], 100)
        self.assertEqual(merged["download_concurrency"], 2)

    def test_verbose(self):
        merged = _merge_args(_args(verbose=True), dict(DEFAULTS))
        self.assertEqual(merged["log_level"], "DEBUG")


class TestChooseServer(unittest.TestCase):
    def test_default(self):
        self.assertEqual(_choose_server(ServerDirectory(), None, None).id, "cloudflare")

    def test_by_id(self):
        self.assertEqual(_choose_server(ServerDirectory(), "fast.com", None).id, "fast.com")

    def test_by_search(self):
        self.assertEqual(_choose_server(ServerDirectory(), None, "netflix").id, "fast.com")

    def test_unknown_id(self):
        with self.assertRaises(ValueError):
            _choose_server(ServerDirectory(), "nope", None)

    def test_no_match(self):
        with self.assertRaises(ValueError):
            _choose_server(ServerDirectory(), None, "zzz")


if __name__ == "__main__":
    unittest.main()

"""
Ping phase.

Issues a fixed number of round-trips against the server, one at a time,
with a fixed pause between attempts.  The running mean and jitter are
recomputed from the full sample history after every success so a UI can
show them live; packet loss is evaluated once, after the last attempt.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .constants import DEFAULT_PING_COUNT, PING_INTERVAL, PING_TIMEOUT
from .errors import ServerUnreachable, TransientProbeFailure
from .servers import Server
from .stats import LatencyStats

logger = logging.getLogger(__name__)


class LatencyTester:
    """Measure ping, jitter and packet loss to one server."""

    def __init__(
        self,
        transport,  # noqa: ANN001 (HttpTransport or compatible)
        ping_count: int = DEFAULT_PING_COUNT,
        timeout: float = PING_TIMEOUT,
        interval: float = PING_INTERVAL,
    ) -> None:
        self.transport = transport
        self.ping_count = ping_count
        self.timeout = timeout
        self.interval = interval
        self.on_progress: Optional[Callable[[LatencyStats], None]] = None

    async def test(self, server: Server) -> LatencyStats:
        stats = LatencyStats()
        started = time.perf_counter()

        try:
            async with self.transport.latency_probe(server) as probe:
                for attempt in range(self.ping_count):
                    if attempt:
                        await asyncio.sleep(self.interval)
                    try:
                        rtt = await asyncio.wait_for(probe.ping(), timeout=self.timeout)
                    except (TransientProbeFailure, asyncio.TimeoutError) as exc:
                        logger.debug("Ping %d to %s failed: %s", attempt + 1, server.host, exc or "timeout")
                        stats.record_failure()
                        continue

                    stats.record(rtt)
                    if self.on_progress:
                        self.on_progress(stats)

                stats.external_ip = getattr(probe, "external_ip", "") or ""
        except TransientProbeFailure as exc:
            logger.debug("Latency probe for %s could not start: %s", server.host, exc)

        stats.finalize()
        logger.debug(
            "Ping to %s: %d/%d ok in %.1fs",
            server.host, stats.successes, self.ping_count, time.perf_counter() - started,
        )

        if not stats.samples:
            raise ServerUnreachable(f"{server.name or server.host} did not answer any ping")
        return stats

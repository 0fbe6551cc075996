"""
Download phase.

Keeps up to ``concurrency`` chunk downloads in flight for a fixed wall-clock
budget.  Every completed chunk adds its bytes to a running total and the
phase throughput is recomputed from that total and the elapsed time.  When
the budget runs out no new chunks are issued and in-flight ones are
drained before the final figure is taken.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, List, Optional, Sequence, Set

from .constants import (
    CANCEL_GRACE,
    DEFAULT_CONCURRENCY,
    DEFAULT_DURATION,
    DOWNLOAD_CHUNK_SIZES,
    HISTORY_LENGTH,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
)
from .errors import TransientProbeFailure
from .servers import Server
from .stats import PhaseResult, SampleHistory, SpeedSample, throughput_mbps

logger = logging.getLogger(__name__)


class DownloadTester:
    """Concurrent chunked download speed tester."""

    def __init__(
        self,
        transport,  # noqa: ANN001 (HttpTransport or compatible)
        duration_seconds: float = DEFAULT_DURATION,
        concurrency: int = DEFAULT_CONCURRENCY,
        chunk_sizes: Sequence[int] = DOWNLOAD_CHUNK_SIZES,
        history_length: int = HISTORY_LENGTH,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.transport = transport
        self.duration_seconds = duration_seconds
        self.concurrency = max(MIN_CONCURRENCY, min(concurrency, MAX_CONCURRENCY))
        self.chunk_sizes = tuple(chunk_sizes)
        self.history_length = history_length
        self._rng = rng or random.Random()
        self.on_progress: Optional[Callable[[SpeedSample], None]] = None

    async def test(self, server: Server) -> PhaseResult:
        result = PhaseResult()
        history = SampleHistory(self.history_length)
        total_bytes = 0

        start_time = time.perf_counter()
        end_time = start_time + self.duration_seconds
        pending: Set[asyncio.Task] = set()

        def _collect(done: Set[asyncio.Task]) -> None:
            nonlocal total_bytes
            for task in done:
                try:
                    received = task.result()
                except TransientProbeFailure as exc:
                    result.failures += 1
                    logger.debug("Download chunk dropped: %s", exc)
                    continue

                total_bytes += received
                elapsed = time.perf_counter() - start_time
                sample = history.append(throughput_mbps(total_bytes, elapsed), elapsed)
                if self.on_progress:
                    self.on_progress(sample)

        try:
            while time.perf_counter() < end_time:
                while len(pending) < self.concurrency:
                    size = self._rng.choice(self.chunk_sizes)
                    pending.add(asyncio.create_task(self.transport.download(server, size)))

                done, pending = await asyncio.wait(
                    pending,
                    timeout=max(end_time - time.perf_counter(), 0),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                _collect(done)

            if pending:
                done, pending = await asyncio.wait(pending)
                _collect(done)
        finally:
            await _abandon(pending)

        result.duration_s = time.perf_counter() - start_time
        result.bytes_total = total_bytes
        result.samples = history.snapshot()
        result.calculate()
        return result


async def _abandon(tasks: Set[asyncio.Task]) -> None:
    """Cancel stragglers and give them a short grace period to unwind."""
    live: List[asyncio.Task] = [t for t in tasks if not t.done()]
    if not live:
        return
    for task in live:
        task.cancel()
    await asyncio.wait(live, timeout=CANCEL_GRACE)

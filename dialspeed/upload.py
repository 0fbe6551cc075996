"""
Upload phase.

Posts a fixed-size pre-generated payload back to back for a fixed
wall-clock budget.  Individual failures are dropped; a run of consecutive
failures means the link is gone and aborts the phase.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Callable, Optional

from .constants import (
    DEFAULT_DURATION,
    DEFAULT_UPLOAD_FAILURE_LIMIT,
    HISTORY_LENGTH,
    UPLOAD_PAYLOAD_SIZE,
)
from .errors import ConnectionLost, TransientProbeFailure
from .servers import Server
from .stats import PhaseResult, SampleHistory, SpeedSample, throughput_mbps

logger = logging.getLogger(__name__)

_RETRY_PAUSE = 0.1  # seconds between a failed post and the next attempt


class UploadTester:
    """Sequential upload speed tester."""

    def __init__(
        self,
        transport,  # noqa: ANN001 (HttpTransport or compatible)
        duration_seconds: float = DEFAULT_DURATION,
        payload_size: int = UPLOAD_PAYLOAD_SIZE,
        failure_limit: int = DEFAULT_UPLOAD_FAILURE_LIMIT,
        history_length: int = HISTORY_LENGTH,
    ) -> None:
        self.transport = transport
        self.duration_seconds = duration_seconds
        self.failure_limit = max(1, failure_limit)
        self.history_length = history_length
        # Random bytes so nothing on the path can compress the body.
        self._payload = os.urandom(payload_size)
        self.on_progress: Optional[Callable[[SpeedSample], None]] = None

    async def test(self, server: Server) -> PhaseResult:
        result = PhaseResult()
        history = SampleHistory(self.history_length)
        total_bytes = 0
        consecutive_failures = 0

        start_time = time.perf_counter()
        end_time = start_time + self.duration_seconds

        while time.perf_counter() < end_time:
            try:
                sent = await self.transport.upload(server, self._payload)
            except TransientProbeFailure as exc:
                result.failures += 1
                consecutive_failures += 1
                logger.debug("Upload chunk dropped (%d in a row): %s", consecutive_failures, exc)
                if consecutive_failures >= self.failure_limit:
                    raise ConnectionLost(
                        f"Upload failed {consecutive_failures} times in a row"
                    ) from exc
                await asyncio.sleep(_RETRY_PAUSE)
                continue

            consecutive_failures = 0
            total_bytes += sent
            elapsed = time.perf_counter() - start_time
            sample = history.append(throughput_mbps(total_bytes, elapsed), elapsed)
            if self.on_progress:
                self.on_progress(sample)

        result.duration_s = time.perf_counter() - start_time
        result.bytes_total = total_bytes
        result.samples = history.snapshot()
        result.calculate()
        return result

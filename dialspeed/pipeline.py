"""
Measurement pipeline.

Runs one measurement at a time against a server::

    idle -> connecting -> ping -> download -> upload -> complete
                 \\___________ any failure ___________/ -> failed -> idle

Everything the caller needs goes out through ``pipeline.events`` (phase
changes, progress samples, the final result, or a single error).  Errors
never escape a run: they are published, stored on ``state.error``, and
the pipeline drops back to ``idle``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .connectivity import ConnectivityMonitor, ConnectivityState
from .constants import (
    CONNECT_DELAY,
    DECAY_DURATION,
    DECAY_STEPS,
    DEFAULT_CONCURRENCY,
    DEFAULT_DURATION,
    DEFAULT_PING_COUNT,
    DEFAULT_UPLOAD_FAILURE_LIMIT,
    DOWNLOAD_CHUNK_SIZES,
    HISTORY_LENGTH,
    PING_INTERVAL,
    PING_TIMEOUT,
    UPLOAD_PAYLOAD_SIZE,
)
from .download import DownloadTester
from .errors import (
    Aborted,
    ConnectionLost,
    MeasurementInProgress,
    NoConnectivity,
    NoServerSelected,
    SpeedtestError,
)
from .events import EventChannel
from .latency import LatencyTester
from .results import MeasurementResult, ResultAssembler
from .servers import Server, ServerDirectory
from .stats import LatencyStats, PhaseResult, SpeedSample
from .upload import UploadTester

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Phases, state, events
# ---------------------------------------------------------------------------

class MeasurementPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    COMPLETE = "complete"
    FAILED = "failed"


class EventKind(str, Enum):
    PHASE = "phase"
    PROGRESS = "progress"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineEvent:
    kind: EventKind
    phase: MeasurementPhase
    elapsed: float = 0.0
    sample: Optional[SpeedSample] = None
    latency: Optional[LatencyStats] = None
    result: Optional[MeasurementResult] = None
    error: Optional[SpeedtestError] = None

    @property
    def message(self) -> str:
        return self.error.reason if self.error else ""

    @property
    def speed_mbps(self) -> Optional[float]:
        return self.sample.speed_mbps if self.sample else None


@dataclass(frozen=True)
class PipelineState:
    """Everything a UI renders, in one value."""

    phase: MeasurementPhase = MeasurementPhase.IDLE
    speed_mbps: float = 0.0
    ping_ms: int = 0
    jitter_ms: int = 0
    packet_loss: int = 0
    error: Optional[SpeedtestError] = None


@dataclass(frozen=True)
class PipelineSettings:
    ping_count: int = DEFAULT_PING_COUNT
    ping_timeout: float = PING_TIMEOUT
    ping_interval: float = PING_INTERVAL
    connect_delay: float = CONNECT_DELAY
    download_duration: float = DEFAULT_DURATION
    download_concurrency: int = DEFAULT_CONCURRENCY
    download_chunk_sizes: tuple = DOWNLOAD_CHUNK_SIZES
    upload_duration: float = DEFAULT_DURATION
    upload_payload_size: int = UPLOAD_PAYLOAD_SIZE
    upload_failure_limit: int = DEFAULT_UPLOAD_FAILURE_LIMIT
    decay_duration: float = DECAY_DURATION
    decay_steps: int = DECAY_STEPS
    history_length: int = HISTORY_LENGTH

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> PipelineSettings:
        """Pick the known keys out of a ``dialspeed.config`` dict."""
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in config.items() if k in known and v is not None})


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class MeasurementPipeline:
    """Orchestrates the four measurement phases for one run at a time."""

    def __init__(
        self,
        directory: ServerDirectory,
        monitor: ConnectivityMonitor,
        transport,  # noqa: ANN001 (HttpTransport or compatible)
        assembler: Optional[ResultAssembler] = None,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.directory = directory
        self.monitor = monitor
        self.transport = transport
        self.assembler = assembler or ResultAssembler(monitor)
        self.settings = settings or PipelineSettings()
        self.events: EventChannel[PipelineEvent] = EventChannel("pipeline")

        self._state = PipelineState()
        self._task: Optional[asyncio.Task] = None
        self._connection_lost = False
        self._started_at = 0.0

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def phase(self) -> MeasurementPhase:
        return self._state.phase

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, server: Optional[Server] = None) -> asyncio.Task:
        """
        Launch a run and return its task.

        A second start while a run is active is rejected with
        ``MeasurementInProgress``; the active run is left untouched.
        """
        if self.is_running:
            raise MeasurementInProgress()
        self._connection_lost = False
        self._task = asyncio.create_task(self._run(server))
        self._task.add_done_callback(self._on_task_done)
        return self._task

    async def run(self, server: Optional[Server] = None) -> Optional[MeasurementResult]:
        """Start a run and wait for it; ``None`` when the run failed."""
        task = self.start(server)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return None
        return task.result()

    def cancel(self) -> bool:
        if not self.is_running:
            return False
        self._task.cancel()
        return True

    # -- Run ----------------------------------------------------------------

    async def _run(self, server: Optional[Server]) -> Optional[MeasurementResult]:
        self._connection_lost = False
        self._started_at = time.perf_counter()
        self._state = PipelineState()
        unsubscribe = self.monitor.subscribe(self._on_connectivity, weak=True)

        try:
            target = self._preflight(server)
            logger.info("Starting speed test against %s (%s)", target.name, target.host)

            self._enter(MeasurementPhase.CONNECTING)
            await asyncio.sleep(self.settings.connect_delay)

            self._enter(MeasurementPhase.PING)
            latency = await self._ping_phase(target)

            self._enter(MeasurementPhase.DOWNLOAD)
            download = await self._download_phase(target)

            self._enter(MeasurementPhase.UPLOAD)
            upload = await self._upload_phase(target)

            await self._decay(upload)
            result = await self.assembler.assemble(target, latency, download, upload)
        except asyncio.CancelledError:
            error: SpeedtestError = ConnectionLost() if self._connection_lost else Aborted()
            self._fail(error)
            return None
        except SpeedtestError as exc:
            self._fail(exc)
            return None
        except Exception as exc:
            logger.exception("Speed test crashed")
            self._fail(SpeedtestError(f"Unexpected error: {exc}"))
            return None
        finally:
            unsubscribe()

        self._state = PipelineState(
            phase=MeasurementPhase.COMPLETE,
            speed_mbps=0.0,
            ping_ms=result.ping_ms,
            jitter_ms=result.jitter_ms,
            packet_loss=result.packet_loss,
        )
        logger.info(
            "Speed test complete: %.2f down / %.2f up Mbit/s, ping %d ms",
            result.download_mbps, result.upload_mbps, result.ping_ms,
        )
        self._publish(EventKind.COMPLETE, result=result)
        return result

    def _preflight(self, server: Optional[Server]) -> Server:
        if not self.monitor.state.connected:
            raise NoConnectivity()
        target = server or self.directory.selected
        if target is None:
            raise NoServerSelected()
        return target

    # -- Phases -------------------------------------------------------------

    async def _ping_phase(self, server: Server) -> LatencyStats:
        s = self.settings
        tester = LatencyTester(
            self.transport,
            ping_count=s.ping_count,
            timeout=s.ping_timeout,
            interval=s.ping_interval,
        )
        tester.on_progress = self._on_latency
        latency = await tester.test(server)
        self._on_latency(latency)
        return latency

    async def _download_phase(self, server: Server) -> PhaseResult:
        s = self.settings
        tester = DownloadTester(
            self.transport,
            duration_seconds=s.download_duration,
            concurrency=s.download_concurrency,
            chunk_sizes=s.download_chunk_sizes,
            history_length=s.history_length,
        )
        tester.on_progress = self._on_sample
        download = await tester.test(server)
        logger.info("Download: %.2f Mbit/s (%d failed chunks)", download.speed_mbps, download.failures)
        return download

    async def _upload_phase(self, server: Server) -> PhaseResult:
        s = self.settings
        tester = UploadTester(
            self.transport,
            duration_seconds=s.upload_duration,
            payload_size=s.upload_payload_size,
            failure_limit=s.upload_failure_limit,
            history_length=s.history_length,
        )
        tester.on_progress = self._on_sample
        upload = await tester.test(server)
        logger.info("Upload: %.2f Mbit/s (%d failed posts)", upload.speed_mbps, upload.failures)
        return upload

    async def _decay(self, upload: PhaseResult) -> None:
        """Wind the last speed down to zero for presentation continuity."""
        steps = max(1, self.settings.decay_steps)
        pause = self.settings.decay_duration / steps
        last_index = upload.samples[-1].index if upload.samples else -1
        for step in range(1, steps + 1):
            await asyncio.sleep(pause)
            value = upload.speed_mbps * (1 - step / steps)
            self._on_sample(
                SpeedSample(index=last_index + step, speed_mbps=value, elapsed=self._elapsed())
            )

    # -- State updates ------------------------------------------------------

    def _elapsed(self) -> float:
        return time.perf_counter() - self._started_at

    def _enter(self, phase: MeasurementPhase) -> None:
        logger.debug("Phase -> %s", phase.value)
        self._state = PipelineState(
            phase=phase,
            ping_ms=self._state.ping_ms,
            jitter_ms=self._state.jitter_ms,
            packet_loss=self._state.packet_loss,
        )
        self._publish(EventKind.PHASE)

    def _on_latency(self, latency: LatencyStats) -> None:
        self._state = PipelineState(
            phase=self._state.phase,
            ping_ms=int(latency.ping_ms),
            jitter_ms=int(latency.jitter_ms),
            packet_loss=int(latency.packet_loss),
        )
        self._publish(EventKind.PROGRESS, latency=latency)

    def _on_sample(self, sample: SpeedSample) -> None:
        st = self._state
        self._state = PipelineState(
            phase=st.phase,
            speed_mbps=sample.speed_mbps,
            ping_ms=st.ping_ms,
            jitter_ms=st.jitter_ms,
            packet_loss=st.packet_loss,
        )
        self._publish(EventKind.PROGRESS, sample=sample)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Cancelled before _run got its first step: nothing reported the failure yet.
        if task.cancelled():
            self._fail(ConnectionLost() if self._connection_lost else Aborted())

    def _fail(self, error: SpeedtestError) -> None:
        logger.warning("Speed test failed during %s: %s", self._state.phase.value, error.reason)
        self._state = PipelineState(phase=MeasurementPhase.IDLE, error=error)
        self._publish(EventKind.FAILED, error=error)

    def _publish(self, kind: EventKind, **fields: Any) -> None:
        if kind is EventKind.COMPLETE:
            phase = MeasurementPhase.COMPLETE
        elif kind is EventKind.FAILED:
            phase = MeasurementPhase.FAILED
        else:
            phase = self._state.phase
        self.events.publish(PipelineEvent(kind=kind, phase=phase, elapsed=self._elapsed(), **fields))

    # -- Connectivity -------------------------------------------------------

    def _on_connectivity(self, state: ConnectivityState) -> None:
        if state.connected or not self.is_running:
            return
        logger.warning("Connectivity lost; stopping speed test")
        self._connection_lost = True
        self._task.cancel()

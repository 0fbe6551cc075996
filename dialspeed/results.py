"""
Final measurement record, usage ratings, and result assembly.

``MeasurementResult`` is frozen: a retry produces a new record, never an
update of an old one.  The assembler gathers device and connection
metadata, builds the record, and hands it to the persistence collaborator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from .connectivity import ConnectivityMonitor, local_ip
from .servers import Server
from .stats import LatencyStats, PhaseResult, SpeedSample

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------

_STREAMING_THRESHOLDS = [(25.0, 5), (15.0, 4), (10.0, 3), (5.0, 2)]
_UPLOADING_THRESHOLDS = [(10.0, 5), (7.0, 4), (5.0, 3), (3.0, 2)]
# (ping below, download at least, rating)
_GAMING_THRESHOLDS = [(30, 20.0, 5), (50, 15.0, 4), (80, 10.0, 3), (100, 0.0, 2)]


def _rate(speed_mbps: float, thresholds) -> int:  # noqa: ANN001
    for minimum, score in thresholds:
        if speed_mbps >= minimum:
            return score
    return 1


def streaming_rating(download_mbps: float) -> int:
    return _rate(download_mbps, _STREAMING_THRESHOLDS)


def uploading_rating(upload_mbps: float) -> int:
    return _rate(upload_mbps, _UPLOADING_THRESHOLDS)


def gaming_rating(ping_ms: float, download_mbps: float) -> int:
    for max_ping, min_download, score in _GAMING_THRESHOLDS:
        if ping_ms < max_ping and download_mbps >= min_download:
            return score
    return 1


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MeasurementResult:
    """Immutable snapshot of one completed run."""

    download_mbps: float
    upload_mbps: float
    ping_ms: int
    jitter_ms: int
    packet_loss: int
    server_name: str
    server_location: str
    connection_type: str = "unknown"
    provider_name: str = "Unknown"
    internal_ip: str = "N/A"
    external_ip: str = "N/A"
    download_history: Tuple[SpeedSample, ...] = ()
    upload_history: Tuple[SpeedSample, ...] = ()
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def bandwidth_mbps(self) -> float:
        return (self.download_mbps + self.upload_mbps) / 2

    @property
    def streaming_rating(self) -> int:
        return streaming_rating(self.download_mbps)

    @property
    def gaming_rating(self) -> int:
        return gaming_rating(self.ping_ms, self.download_mbps)

    @property
    def uploading_rating(self) -> int:
        return uploading_rating(self.upload_mbps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.completed_at.isoformat(),
            "download_mbps": round(self.download_mbps, 2),
            "upload_mbps": round(self.upload_mbps, 2),
            "ping_ms": self.ping_ms,
            "jitter_ms": self.jitter_ms,
            "packet_loss": self.packet_loss,
            "server_name": self.server_name,
            "server_location": self.server_location,
            "connection_type": self.connection_type,
            "provider_name": self.provider_name,
            "internal_ip": self.internal_ip,
            "external_ip": self.external_ip,
            "download_history": [s.to_dict() for s in self.download_history],
            "upload_history": [s.to_dict() for s in self.upload_history],
            "ratings": {
                "streaming": self.streaming_rating,
                "gaming": self.gaming_rating,
                "uploading": self.uploading_rating,
            },
            "bandwidth_mbps": round(self.bandwidth_mbps, 2),
        }


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

class ResultStore(Protocol):
    """Durable storage for finished results (lives outside the core)."""

    def save(self, result: MeasurementResult) -> Any: ...


ExternalIpLookup = Callable[[], Awaitable[str]]


class ResultAssembler:
    """Build a :class:`MeasurementResult` and pass it to the store."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        store: Optional[ResultStore] = None,
        external_ip_lookup: Optional[ExternalIpLookup] = None,
        internal_ip_lookup: Callable[[], str] = local_ip,
    ) -> None:
        self.monitor = monitor
        self.store = store
        self._external_ip_lookup = external_ip_lookup
        self._internal_ip_lookup = internal_ip_lookup

    async def assemble(
        self,
        server: Server,
        latency: LatencyStats,
        download: PhaseResult,
        upload: PhaseResult,
    ) -> MeasurementResult:
        result = MeasurementResult(
            download_mbps=download.speed_mbps,
            upload_mbps=upload.speed_mbps,
            ping_ms=int(latency.ping_ms),
            jitter_ms=int(latency.jitter_ms),
            packet_loss=int(latency.packet_loss),
            server_name=server.name,
            server_location=server.location,
            connection_type=self.monitor.state.interface.value,
            provider_name=await self.monitor.provider_name(),
            internal_ip=self._internal_ip_lookup(),
            external_ip=latency.external_ip or await self._external_ip(),
            download_history=tuple(download.samples),
            upload_history=tuple(upload.samples),
        )
        self._persist(result)
        return result

    async def _external_ip(self) -> str:
        if self._external_ip_lookup is None:
            return "N/A"
        try:
            return await self._external_ip_lookup() or "N/A"
        except Exception as exc:
            logger.debug("External IP lookup failed: %s", exc)
            return "N/A"

    def _persist(self, result: MeasurementResult) -> None:
        if self.store is None:
            return
        try:
            self.store.save(result)
        except Exception:
            logger.exception("Could not store result from %s", result.server_name)

"""
Error taxonomy surfaced by the measurement pipeline.

Every fatal error carries a human-readable ``reason`` so a UI can render a
single consistent message.  ``TransientProbeFailure`` is the only non-fatal
member: phases log and drop it.
"""
from __future__ import annotations

from typing import Optional


class SpeedtestError(Exception):
    """Base class for all measurement errors."""

    default_reason = "Speed test failed"

    def __init__(self, reason: Optional[str] = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class NoConnectivity(SpeedtestError):
    default_reason = "No internet connection"


class ConnectionLost(NoConnectivity):
    default_reason = "Connection lost during the test"


class NoServerSelected(SpeedtestError):
    default_reason = "No server selected"


class ServerUnreachable(SpeedtestError):
    default_reason = "Server is unreachable"


class TransientProbeFailure(SpeedtestError):
    default_reason = "Probe failed"


class Aborted(SpeedtestError):
    default_reason = "Test cancelled"


class MeasurementInProgress(SpeedtestError):
    default_reason = "A speed test is already running"

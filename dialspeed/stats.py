"""
Network measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import statistics
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Iterator, List, Optional

from .constants import HISTORY_LENGTH


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def calculate_jitter(samples: List[float]) -> float:
    """Mean absolute difference between consecutive samples (Ookla method)."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


def calculate_mean(samples: List[float]) -> float:
    if not samples:
        return 0.0
    return statistics.mean(samples)


def calculate_packet_loss(attempts: int, successes: int) -> float:
    """Percentage of *attempts* that did not succeed, clamped to [0, 100]."""
    if attempts <= 0:
        return 0.0
    lost = (attempts - successes) / attempts * 100
    return min(max(lost, 0.0), 100.0)


def throughput_mbps(total_bytes: int, elapsed_seconds: float) -> float:
    """``(bytes * 8) / (seconds * 1e6)``; zero before any time has passed."""
    if elapsed_seconds <= 0:
        return 0.0
    return (total_bytes * 8) / (elapsed_seconds * 1_000_000)


# ---------------------------------------------------------------------------
# Speed samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpeedSample:
    """One instantaneous throughput reading taken during a phase."""

    index: int
    speed_mbps: float
    elapsed: float = 0.0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "speed_mbps": round(self.speed_mbps, 3),
            "elapsed": round(self.elapsed, 3),
        }


class SampleHistory:
    """
    Bounded, append-only ring of :class:`SpeedSample`.

    The oldest sample is dropped once ``maxlen`` is reached; sequence
    indexes keep counting up so consumers can tell samples apart.
    """

    def __init__(self, maxlen: int = HISTORY_LENGTH) -> None:
        if maxlen < 1:
            raise ValueError("maxlen must be >= 1")
        self._samples: Deque[SpeedSample] = deque(maxlen=maxlen)
        self._next_index = 0

    def append(self, speed_mbps: float, elapsed: float = 0.0) -> SpeedSample:
        sample = SpeedSample(index=self._next_index, speed_mbps=speed_mbps, elapsed=elapsed)
        self._samples.append(sample)
        self._next_index += 1
        return sample

    @property
    def maxlen(self) -> int:
        return self._samples.maxlen or 0

    @property
    def last(self) -> Optional[SpeedSample]:
        return self._samples[-1] if self._samples else None

    def snapshot(self) -> tuple:
        return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[SpeedSample]:
        return iter(tuple(self._samples))


# ---------------------------------------------------------------------------
# Phase aggregates
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Running ping statistics for one ping phase."""

    samples: List[float] = field(default_factory=list)
    attempts: int = 0
    ping_ms: float = 0.0
    jitter_ms: float = 0.0
    packet_loss: float = 0.0
    external_ip: str = ""

    def record(self, rtt_ms: float) -> None:
        """Add a successful round-trip; mean and jitter use the full history."""
        self.attempts += 1
        self.samples.append(rtt_ms)
        self.ping_ms = calculate_mean(self.samples)
        self.jitter_ms = calculate_jitter(self.samples)

    def record_failure(self) -> None:
        self.attempts += 1

    def finalize(self) -> None:
        """Packet loss is only evaluated once every attempt is in."""
        self.packet_loss = calculate_packet_loss(self.attempts, len(self.samples))

    @property
    def successes(self) -> int:
        return len(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 3) for s in self.samples],
            "attempts": self.attempts,
            "ping_ms": round(self.ping_ms, 3),
            "jitter_ms": round(self.jitter_ms, 3),
            "packet_loss": round(self.packet_loss, 2),
        }


@dataclass
class PhaseResult:
    """Outcome of a download or upload phase."""

    speed_mbps: float = 0.0
    bytes_total: int = 0
    duration_s: float = 0.0
    samples: tuple = ()
    failures: int = 0

    def calculate(self) -> None:
        """Derive speed from total bytes and wall-clock duration."""
        self.speed_mbps = throughput_mbps(self.bytes_total, self.duration_s)

    def to_dict(self) -> dict:
        return {
            "speed_mbps": round(self.speed_mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_s": round(self.duration_s, 3),
            "samples": [s.to_dict() for s in self.samples],
            "failures": self.failures,
        }

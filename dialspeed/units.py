"""
Unit and dial-scale conversion.

Pure functions and enums -- no I/O, no state.  The base unit for every
throughput value in dialspeed is Mbit/s; conversion never rounds, and
formatting is a separate presentation step.
"""
from __future__ import annotations

import math
from bisect import bisect_right
from enum import Enum
from typing import Dict, List, Tuple


# ---------------------------------------------------------------------------
# Display units
# ---------------------------------------------------------------------------

class DisplayUnit(Enum):
    """User-selectable throughput unit."""

    MBIT = "Mbit/s"
    MB = "MB/s"
    KB = "KB/s"

    @property
    def per_mbit(self) -> float:
        """How many of this unit make up 1 Mbit/s."""
        return _PER_MBIT[self]

    @property
    def display_name(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> DisplayUnit:
        """Accept ``Mbit/s``, ``mbit``, ``MB/s``, ``mb``, ``KB/s``, ``kb``."""
        key = text.strip().lower().replace("/s", "")
        for unit in cls:
            if unit.value.lower().replace("/s", "") == key:
                return unit
        raise ValueError(f"Unknown unit: {text!r}")


_PER_MBIT: Dict[DisplayUnit, float] = {
    DisplayUnit.MBIT: 1.0,
    DisplayUnit.MB: 1.0 / 8.0,    # 1 MB/s = 8 Mbit/s
    DisplayUnit.KB: 125.0,        # 1 Mbit/s = 125 KB/s
}


def convert(
    value: float,
    to_unit: DisplayUnit,
    from_unit: DisplayUnit = DisplayUnit.MBIT,
) -> float:
    """Convert *value* from *from_unit* to *to_unit*."""
    if from_unit is to_unit:
        return value
    return value / from_unit.per_mbit * to_unit.per_mbit


def format_speed(value: float, unit: DisplayUnit = DisplayUnit.MBIT, decimals: int = 2) -> str:
    """Render a Mbit/s *value* in *unit*; the number itself is not altered."""
    return f"{convert(value, unit):.{decimals}f}"


# ---------------------------------------------------------------------------
# Dial scales
# ---------------------------------------------------------------------------

_START_ANGLE = 150.0
_SWEEP_ANGLE = 240.0


class DialScale(Enum):
    """Gauge range; the value is the maximum speed shown on the dial."""

    SCALE_1000 = 1000
    SCALE_500 = 500
    SCALE_100 = 100

    @property
    def max_value(self) -> int:
        return self.value

    @property
    def display_name(self) -> str:
        return str(self.value)

    @property
    def marks(self) -> List[Tuple[int, float]]:
        """(value, angle) reference marks drawn around the dial."""
        return list(_MARKS[self])

    @property
    def breakpoints(self) -> List[Tuple[float, float]]:
        """(speed, fraction) pairs; strictly increasing in both columns."""
        return list(_BREAKPOINTS[self])

    @classmethod
    def parse(cls, value: int) -> DialScale:
        for scale in cls:
            if scale.value == int(value):
                return scale
        raise ValueError(f"Unknown dial scale: {value!r}")

    def progress(self, speed: float) -> float:
        """Map *speed* to a needle position in ``[0, 1]``; NaN reads as zero."""
        if math.isnan(speed):
            speed = 0.0
        clamped = min(max(speed, 0.0), float(self.max_value))
        points = _BREAKPOINTS[self]
        values = [v for v, _ in points]

        if clamped <= values[0]:
            return points[0][1]
        if clamped >= values[-1]:
            return 1.0

        i = bisect_right(values, clamped)
        (x0, y0), (x1, y1) = points[i - 1], points[i]
        return y0 + (clamped - x0) / (x1 - x0) * (y1 - y0)

    def needle_angle(self, speed: float) -> float:
        return _START_ANGLE + self.progress(speed) * _SWEEP_ANGLE


_BREAKPOINTS: Dict[DialScale, Tuple[Tuple[float, float], ...]] = {
    DialScale.SCALE_1000: (
        (0, 0.0), (10, 0.10), (50, 0.30), (100, 0.50), (300, 0.75), (1000, 1.0),
    ),
    DialScale.SCALE_500: (
        (0, 0.0), (10, 0.12), (20, 0.24), (50, 0.42), (100, 0.63), (200, 0.84),
        (300, 1.0),
    ),
    DialScale.SCALE_100: (
        (0, 0.0), (1, 0.08), (5, 0.23), (10, 0.38), (20, 0.55), (30, 0.70),
        (50, 0.87), (75, 0.95), (100, 1.0),
    ),
}

_MARKS: Dict[DialScale, Tuple[Tuple[int, float], ...]] = {
    DialScale.SCALE_1000: (
        (0, 150.0), (10, 170.0), (20, 190.0), (50, 220.0), (100, 260.0),
        (200, 300.0), (300, 330.0), (600, 360.0), (1000, 390.0),
    ),
    DialScale.SCALE_500: (
        (0, 150.0), (10, 175.0), (20, 200.0), (50, 235.0), (100, 280.0),
        (200, 325.0), (300, 360.0), (600, 390.0),
    ),
    DialScale.SCALE_100: (
        (0, 150.0), (1, 165.0), (5, 195.0), (10, 225.0), (20, 265.0),
        (30, 295.0), (50, 335.0), (75, 365.0), (100, 390.0),
    ),
}


def dial_speed(speed_mbit: float, unit: DisplayUnit, scale: DialScale) -> float:
    """Speed in *unit*, clamped to the dial maximum (for needle placement)."""
    return min(convert(speed_mbit, unit), float(scale.max_value))

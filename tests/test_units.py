"""Unit tests for dialspeed.units -- unit conversion and dial mapping."""

import unittest

from dialspeed.units import DialScale, DisplayUnit, convert, dial_speed, format_speed


class TestConvert(unittest.TestCase):
    def test_identity(self):
        self.assertEqual(convert(42.0, DisplayUnit.MBIT), 42.0)

    def test_megabytes(self):
        self.assertAlmostEqual(convert(8.0, DisplayUnit.MB), 1.0)

    def test_kilobytes(self):
        self.assertAlmostEqual(convert(1.0, DisplayUnit.KB), 125.0)

    def test_between_non_base_units(self):
        # 1 MB/s = 8 Mbit/s = 1000 KB/s
        self.assertAlmostEqual(convert(1.0, DisplayUnit.KB, DisplayUnit.MB), 1000.0)

    def test_round_trip_does_not_drift(self):
        for value in (0.0, 0.3, 12.345, 999.9):
            for unit in DisplayUnit:
                back = convert(convert(value, unit), DisplayUnit.MBIT, unit)
                self.assertAlmostEqual(back, value, places=9)

    def test_no_rounding(self):
        self.assertAlmostEqual(convert(0.001, DisplayUnit.MB), 0.000125)


class TestFormatSpeed(unittest.TestCase):
    def test_default(self):
        self.assertEqual(format_speed(95.456), "95.46")

    def test_in_megabytes(self):
        self.assertEqual(format_speed(100.0, DisplayUnit.MB), "12.50")

    def test_decimals(self):
        self.assertEqual(format_speed(1.0, DisplayUnit.KB, decimals=0), "125")


class TestDisplayUnitParse(unittest.TestCase):
    def test_aliases(self):
        self.assertIs(DisplayUnit.parse("Mbit/s"), DisplayUnit.MBIT)
        self.assertIs(DisplayUnit.parse("mb/s"), DisplayUnit.MB)
        self.assertIs(DisplayUnit.parse(" KB "), DisplayUnit.KB)

    def test_unknown(self):
        with self.assertRaises(ValueError):
            DisplayUnit.parse("Gbit/s")


class TestDialScale(unittest.TestCase):
    def test_max_values(self):
        self.assertEqual(DialScale.SCALE_1000.max_value, 1000)
        self.assertEqual(DialScale.SCALE_500.max_value, 500)
        self.assertEqual(DialScale.SCALE_100.max_value, 100)

    def test_parse(self):
        self.assertIs(DialScale.parse(500), DialScale.SCALE_500)
        with self.assertRaises(ValueError):
            DialScale.parse(250)

    def test_endpoints(self):
        for scale in DialScale:
            self.assertEqual(scale.progress(0), 0.0)
            self.assertEqual(scale.progress(scale.max_value), 1.0)

    def test_clamped(self):
        for scale in DialScale:
            self.assertEqual(scale.progress(-10), 0.0)
            self.assertEqual(scale.progress(scale.max_value * 10), 1.0)

    def test_non_finite_speed(self):
        for scale in DialScale:
            self.assertEqual(scale.progress(float("nan")), 0.0)
            self.assertEqual(scale.progress(float("inf")), 1.0)
            self.assertAlmostEqual(scale.needle_angle(float("nan")), 150.0)

    def test_breakpoint_values(self):
        self.assertAlmostEqual(DialScale.SCALE_1000.progress(50), 0.30)
        self.assertAlmostEqual(DialScale.SCALE_1000.progress(100), 0.50)
        self.assertAlmostEqual(DialScale.SCALE_100.progress(10), 0.38)

    def test_interpolates_between_breakpoints(self):
        # halfway between (100, 0.50) and (300, 0.75)
        self.assertAlmostEqual(DialScale.SCALE_1000.progress(200), 0.625)

    def test_500_tops_out_at_300(self):
        self.assertEqual(DialScale.SCALE_500.progress(300), 1.0)
        self.assertEqual(DialScale.SCALE_500.progress(450), 1.0)

    def test_monotonic(self):
        for scale in DialScale:
            previous = -1.0
            steps = 500
            for i in range(steps + 1):
                value = scale.progress(scale.max_value * i / steps)
                self.assertGreaterEqual(value, previous)
                previous = value

    def test_needle_angle(self):
        scale = DialScale.SCALE_1000
        self.assertAlmostEqual(scale.needle_angle(0), 150.0)
        self.assertAlmostEqual(scale.needle_angle(1000), 390.0)
        self.assertAlmostEqual(scale.needle_angle(100), 270.0)

    def test_marks_span_the_dial(self):
        for scale in DialScale:
            marks = scale.marks
            self.assertEqual(marks[0], (0, 150.0))
            self.assertEqual(marks[-1][1], 390.0)


class TestDialSpeed(unittest.TestCase):
    def test_clamps_to_scale(self):
        self.assertEqual(dial_speed(2000.0, DisplayUnit.MBIT, DialScale.SCALE_100), 100.0)

    def test_converts_first(self):
        self.assertAlmostEqual(dial_speed(80.0, DisplayUnit.MB, DialScale.SCALE_100), 10.0)


if __name__ == "__main__":
    unittest.main()

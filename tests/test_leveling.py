from __future__ import annotations

import unittest

from arise.leveling import level_for_xp, level_info, scaled_value, xp_for_level


class LevelingTests(unittest.TestCase):
    def test_zero_xp_is_level_one(self) -> None:
        info = level_info(0)
        self.assertEqual(info.level, 1)
        self.assertEqual(info.progress, 0.0)
        self.assertEqual(info.xp_for_next, 100)

    def test_thresholds(self) -> None:
        self.assertEqual(xp_for_level(1), 0)
        self.assertEqual(xp_for_level(2), 100)
        self.assertEqual(xp_for_level(3), 300)
        self.assertEqual(xp_for_level(4), 600)
        self.assertEqual(level_for_xp(99), 1)
        self.assertEqual(level_for_xp(100), 2)
        self.assertEqual(level_for_xp(299), 2)
        self.assertEqual(level_for_xp(300), 3)

    def test_progress_within_level(self) -> None:
        info = level_info(200)
        self.assertEqual(info.level, 2)
        self.assertAlmostEqual(info.progress, 0.5)
        self.assertEqual(info.xp_into_level, 100)

    def test_monotonic_and_bounded(self) -> None:
        previous = 1
        for xp in range(0, 20000, 7):
            info = level_info(xp)
            self.assertGreaterEqual(info.level, previous)
            self.assertGreaterEqual(info.progress, 0.0)
            self.assertLess(info.progress, 1.0)
            previous = info.level

    def test_negative_xp_is_clamped(self) -> None:
        self.assertEqual(level_info(-50).level, 1)

    def test_scaled_value(self) -> None:
        self.assertEqual(scaled_value(20, 1), 20)
        self.assertEqual(scaled_value(20, 3), 24)
        self.assertEqual(scaled_value(15, 2), 17)
        self.assertEqual(scaled_value(5, 6), 8)


if __name__ == "__main__":
    unittest.main()

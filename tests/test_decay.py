from __future__ import annotations

import math
import unittest

from memory.decay import age_in_days
from memory.decay import filter_by_decay
from memory.decay import include_item
from memory.decay import relevance
from memory.models import MemoryConfig
from memory.models import MemoryEntry

DAY = 86400


def _decay_config(**overrides) -> MemoryConfig:
    values = {
        "decay_enabled": True,
        "decay_factor": 0.5,
        "decay_threshold": 0.1,
        "decay_max_days": 30,
    }
    values.update(overrides)
    return MemoryConfig(**values)


class RelevanceTests(unittest.TestCase):
    def test_zero_age_returns_base_importance_exactly(self):
        self.assertEqual(relevance(8, 0, 0.5), 8.0)

    def test_one_week_decay(self):
        self.assertAlmostEqual(relevance(8, 7, 0.5), 8 * math.exp(-3.5), places=9)
        self.assertAlmostEqual(relevance(8, 7, 0.5), 0.243, places=3)

    def test_thirty_days_is_negligible(self):
        self.assertLess(relevance(8, 30, 0.5), 0.0001)

    def test_zero_factor_never_decays(self):
        self.assertEqual(relevance(0.8, 365, 0.0), 0.8)

    def test_negative_age_is_clamped(self):
        self.assertEqual(relevance(0.8, -3, 0.5), 0.8)

    def test_age_in_days_clamps_clock_skew(self):
        self.assertEqual(age_in_days(1_000 + DAY, now_ts=1_000), 0.0)
        self.assertAlmostEqual(age_in_days(0, now_ts=2 * DAY), 2.0)


class IncludeItemTests(unittest.TestCase):
    def test_decay_disabled_always_includes(self):
        cfg = MemoryConfig(decay_enabled=False, decay_max_days=1)
        self.assertTrue(include_item(0.0, 1000, cfg))

    def test_max_age_cutoff_wins_even_without_decay(self):
        cfg = _decay_config(decay_factor=0.0, decay_threshold=0.0, decay_max_days=30)
        self.assertTrue(include_item(1.0, 30, cfg))
        self.assertFalse(include_item(1.0, 30.01, cfg))

    def test_threshold_is_inclusive(self):
        cfg = _decay_config(decay_factor=0.0, decay_threshold=0.5)
        self.assertTrue(include_item(0.5, 1, cfg))
        self.assertFalse(include_item(0.49, 1, cfg))

    def test_missing_importance_uses_neutral_value(self):
        cfg = _decay_config(decay_factor=0.5, decay_threshold=0.1)
        # 1.0 * e^-2 ~= 0.135
        self.assertTrue(include_item(None, 4, cfg))
        # 0.5 * e^-2 ~= 0.068
        self.assertFalse(include_item(0.5, 4, cfg))

    def test_filter_by_decay_keeps_order(self):
        now = 100 * DAY
        entries = [
            MemoryEntry(id=i, user_id="1", channel_id="2", guild_id="3", user_message=f"m{i}",
                        bot_response="r", user_name="u", created_ts=now - age * DAY, importance=1.0)
            for i, age in enumerate([40, 1, 0, 10])
        ]
        kept = filter_by_decay(entries, _decay_config(), importance_of=lambda e: e.importance, now_ts=now)
        self.assertEqual([e.id for e in kept], [1, 2])


if __name__ == "__main__":
    unittest.main()

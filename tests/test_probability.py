import sys
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.probability import (  # noqa: E402
    calculate_probability,
    calculate_probability_with_max,
    from_percentage,
    process_probability,
    roll_probability,
    to_description,
    to_percentage,
)
from engine.state import new_game_state  # noqa: E402


class TestCalculateProbability(unittest.TestCase):
    def setUp(self):
        self.state = new_game_state(
            strength=4,
            buffs=["blessed"],
            items=[{"id": "torch", "quantity": 3}],
            variables={"karma": 2},
            levels={"lockpicking": 1},
        )

    def test_no_modifiers(self):
        self.assertEqual(calculate_probability(0.5, None, self.state), 0.5)

    def test_categories_sum(self):
        modifiers = {
            "stats": {"strength": {"per_unit": 0.05}},
            "buffs": {"blessed": {"per_unit": 0.1}},
            "flags": {"door_opened": {"per_unit": 0.5}},
            "items": {"torch": {"per_unit": 0.01}},
            "variables": {"karma": {"per_unit": 0.02}},
            "skills": {"lockpicking": {"per_unit": 0.1}},
        }
        # 0.1 + 0.2 + 0.1 + 0 + 0.03 + 0.04 + 0.1
        self.assertAlmostEqual(calculate_probability(0.1, modifiers, self.state), 0.57)

    def test_max_caps_each_bonus(self):
        modifiers = {
            "stats": {"strength": {"per_unit": 0.1, "max": 0.2}},
            "items": {"torch": {"per_unit": 0.1, "max": 0.2}},
        }
        self.assertAlmostEqual(calculate_probability(0.1, modifiers, self.state), 0.5)

    def test_clamped_to_unit_interval(self):
        high = {"stats": {"strength": {"per_unit": 10}}}
        low = {"stats": {"strength": {"per_unit": -10}}}
        self.assertEqual(calculate_probability(0.5, high, self.state), 1.0)
        self.assertEqual(calculate_probability(0.5, low, self.state), 0.0)

    def test_monotonic_in_per_unit(self):
        last = -1
        for per_unit in (0, 0.01, 0.05, 0.1, 0.5, 1):
            rate = calculate_probability(0.2, {"stats": {"strength": {"per_unit": per_unit}}}, self.state)
            self.assertGreaterEqual(rate, last)
            last = rate

    def test_max_rate(self):
        modifiers = {"stats": {"strength": {"per_unit": 0.2}}}
        self.assertEqual(calculate_probability_with_max(0.5, 0.8, modifiers, self.state), 0.8)
        self.assertEqual(calculate_probability_with_max(0.5, None, modifiers, self.state), 1.0)


class TestRolls(unittest.TestCase):
    def setUp(self):
        self.spec = {
            "base_rate": 0.5,
            "success_next": {"scene_id": "S"},
            "failure_next": {"scene_id": "F"},
        }

    def test_roll_uses_injected_source(self):
        self.assertTrue(roll_probability(0.5, lambda: 0.49))
        self.assertFalse(roll_probability(0.5, lambda: 0.5))

    def test_process_probability_branches(self):
        state = new_game_state()
        self.assertEqual(process_probability(self.spec, state, lambda: 0.4), {"scene_id": "S"})
        self.assertEqual(process_probability(self.spec, state, lambda: 0.6), {"scene_id": "F"})


class TestDisplayHelpers(unittest.TestCase):
    def test_percentages(self):
        self.assertEqual(to_percentage(0.555), 56)
        self.assertEqual(from_percentage(150), 1.0)
        self.assertEqual(from_percentage(25), 0.25)

    def test_description_bands(self):
        self.assertEqual(to_description(0.1), "매우 낮음")
        self.assertEqual(to_description(0.5), "보통")
        self.assertEqual(to_description(0.95), "매우 높음")


if __name__ == "__main__":
    unittest.main()

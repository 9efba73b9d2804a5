import sys
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.state import new_game_state  # noqa: E402
from script.conditions import ConditionEvaluator, check_condition, check_numeric  # noqa: E402
from script.scene_loader import GameData  # noqa: E402


class TestCombinators(unittest.TestCase):
    def setUp(self):
        self.state = new_game_state()

    def test_empty_and_is_true(self):
        self.assertTrue(check_condition({"$and": []}, self.state))

    def test_empty_or_is_false(self):
        self.assertFalse(check_condition({"$or": []}, self.state))

    def test_missing_condition_is_true(self):
        self.assertTrue(check_condition(None, self.state))
        self.assertTrue(check_condition({}, self.state))

    def test_nested(self):
        cond = {
            "$and": [
                {"health": {"min": 1}},
                {"$or": [
                    {"buffs": {"in": ["blessed"]}},
                    {"strength": {"min": 1}},
                ]},
            ]
        }
        self.assertTrue(check_condition(cond, self.state))
        self.state["strength"] = 0
        self.assertFalse(check_condition(cond, self.state))

    def test_combinator_ignores_sibling_keys(self):
        cond = {"$and": [], "health": {"min": 99}}
        self.assertTrue(check_condition(cond, self.state))


class TestAtomicConditions(unittest.TestCase):
    def setUp(self):
        self.state = new_game_state(
            strength=5,
            buffs=["blessed"],
            flags=["door_opened"],
            items=[{"id": "torch", "quantity": 2}],
            variables={"karma": 3},
            levels={"lockpicking": 2},
            current_floor=2,
            death_count=1,
            death_count_by_floor={"2": 1},
            completed_scenes=["scn_a"],
            scene_count=4,
        )

    def test_numeric_exact_and_range(self):
        self.assertTrue(check_numeric(5, 5))
        self.assertFalse(check_numeric(5, 4))
        self.assertTrue(check_numeric(5, {"min": 5}))
        self.assertTrue(check_numeric(5, {"max": 5}))
        self.assertFalse(check_numeric(5, {"min": 1, "max": 4}))

    def test_keys_are_anded(self):
        self.assertTrue(check_condition({"strength": {"min": 3}, "health": 3}, self.state))
        self.assertFalse(check_condition({"strength": {"min": 3}, "health": 2}, self.state))

    def test_buffs_and_flags_membership(self):
        self.assertTrue(check_condition({"buffs": {"in": ["blessed"]}}, self.state))
        self.assertFalse(check_condition({"buffs": {"not_in": ["blessed"]}}, self.state))
        self.assertTrue(check_condition({"flags": {"in": ["door_opened"], "not_in": ["met_merchant"]}}, self.state))

    def test_bare_list_membership_fails(self):
        self.assertFalse(check_condition({"buffs": ["blessed"]}, self.state))
        self.assertFalse(check_condition({"flags": []}, self.state))

    def test_items(self):
        self.assertTrue(check_condition({"items": {"torch": 2}}, self.state))
        self.assertTrue(check_condition({"items": {"torch": {"min": 1, "max": 3}}}, self.state))
        self.assertTrue(check_condition({"items": {"rusty_key": 0}}, self.state))
        self.assertFalse(check_condition({"items": {"rusty_key": {"min": 1}}}, self.state))

    def test_variables_and_skills(self):
        self.assertTrue(check_condition({"variables": {"karma": {"min": 3}}}, self.state))
        self.assertTrue(check_condition({"skills": {"lockpicking": 2}}, self.state))
        self.assertFalse(check_condition({"skills": {"perception": {"min": 1}}}, self.state))

    def test_progress_keys(self):
        self.assertTrue(check_condition({"current_floor": 2}, self.state))
        self.assertFalse(check_condition({"current_floor": 1}, self.state))
        self.assertTrue(check_condition({"death_count": {"min": 1}}, self.state))
        self.assertTrue(check_condition({"death_count_by_floor": {"2": 1}}, self.state))
        self.assertTrue(check_condition({"current_floor_death_count": 1}, self.state))
        self.assertTrue(check_condition({"completed_scenes": {"in": ["scn_a"], "not_in": ["scn_b"]}}, self.state))
        self.assertTrue(check_condition({"scene_count": {"min": 4}}, self.state))

    def test_can_level_up(self):
        self.assertFalse(check_condition({"can_level_up": "strength"}, self.state))
        self.state["experience"]["strength"] = 10
        self.assertTrue(check_condition({"can_level_up": "strength"}, self.state))

    def test_unknown_key_ignored(self):
        self.assertTrue(check_condition({"weather": "rain"}, self.state))

    def test_unknown_ids_skipped_with_game_data(self):
        evaluator = ConditionEvaluator(GameData(buffs={"blessed": {}}))
        self.assertTrue(evaluator.evaluate({"buffs": {"in": ["not_a_buff"]}}, self.state))
        self.assertFalse(evaluator.evaluate({"buffs": {"not_in": ["blessed"]}}, self.state))

    def test_duplicate_registration_rejected(self):
        evaluator = ConditionEvaluator()
        with self.assertRaises(ValueError):
            evaluator.register("buffs", lambda expected, state: True)

    def test_custom_key(self):
        evaluator = ConditionEvaluator()
        evaluator.register("weather", lambda expected, state: state.get("weather") == expected)
        self.assertFalse(evaluator({"weather": "rain"}, self.state))


if __name__ == "__main__":
    unittest.main()

from typing import Dict, Any, Callable, List, Optional

from engine.config import RESOURCE_KEYS, STAT_KEYS
from engine.experience import can_level_up
from engine.state import floor_death_count, item_quantity


AtomicFn = Callable[[Any, Dict[str, Any]], bool]


def check_numeric(current: Any, expected: Any) -> bool:
    """
    expected is either an exact number or a { "min": .., "max": .. } range
    with either bound optional.
    """
    if isinstance(expected, bool):
        return False
    if isinstance(expected, (int, float)):
        return current == expected
    if isinstance(expected, dict):
        lo = expected.get("min")
        hi = expected.get("max")
        if lo is not None and current < lo:
            return False
        if hi is not None and current > hi:
            return False
        return True
    return False


class ConditionEvaluator:
    """
    Evaluates scene / choice conditions against a player state.

    condition is either a combinator
      { "$and": [ ... ] }   every child true (empty list is true)
      { "$or":  [ ... ] }   any child true (empty list is false)
    or an atomic condition whose keys are all ANDed:
      { "health": { "min": 1 }, "buffs": { "in": ["blessed"] }, "items": { "key": 1 } }

    Evaluation assumes validated content and never raises on well-formed input.
    Unknown atomic keys are ignored.

    game_data is optional; when given, buff / flag / variable / skill ids it does
    not define are skipped instead of failing the test.
    """

    def __init__(self, game_data=None):
        self.game_data = game_data
        self._atomics: Dict[str, AtomicFn] = {}

        # register built-ins
        for key in STAT_KEYS + RESOURCE_KEYS:
            self.register(key, self._numeric_field(key))
        self.register("buffs", self._buffs)
        self.register("flags", self._flags)
        self.register("items", self._items)
        self.register("variables", self._variables)
        self.register("skills", self._skills)
        self.register("can_level_up", self._can_level_up)
        self.register("current_floor", self._current_floor)
        self.register("death_count", self._numeric_field("death_count"))
        self.register("death_count_by_floor", self._death_count_by_floor)
        self.register("current_floor_death_count", self._current_floor_death_count)
        self.register("completed_scenes", self._completed_scenes)
        self.register("scene_count", self._numeric_field("scene_count"))

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    def register(self, key: str, fn: AtomicFn):
        if key in self._atomics:
            raise ValueError(f"Condition key already registered: {key}")
        self._atomics[key] = fn

    def atomic_keys(self) -> List[str]:
        return list(self._atomics)

    def evaluate(self, condition: Optional[Dict[str, Any]], state: Dict[str, Any]) -> bool:
        if condition is None:
            return True

        if condition.get("$and") is not None:
            return all(self.evaluate(child, state) for child in condition["$and"])

        if condition.get("$or") is not None:
            return any(self.evaluate(child, state) for child in condition["$or"])

        return self._evaluate_atomic(condition, state)

    __call__ = evaluate

    def _evaluate_atomic(self, condition: Dict[str, Any], state: Dict[str, Any]) -> bool:
        for key, expected in condition.items():
            fn = self._atomics.get(key)
            if fn is None:
                continue
            if not fn(expected, state):
                return False
        return True

    def _is_known(self, category: str, key: str) -> bool:
        if self.game_data is None:
            return True
        return self.game_data.is_key(category, key)

    # ──────────────────────────────────────────────
    # Built-in atomic keys
    # ──────────────────────────────────────────────

    def _numeric_field(self, field: str) -> AtomicFn:
        def check(expected, state) -> bool:
            current = state.get(field, 0)
            if not isinstance(current, (int, float)):
                return True
            return check_numeric(current, expected)
        return check

    def _membership(self, category: str, expected, current) -> bool:
        """
        expected: { "in": [...], "not_in": [...] }
        The legacy bare-list form always fails.
        """
        if isinstance(expected, list):
            return False
        if not expected:
            return True
        if not isinstance(expected, dict):
            return False
        for key in expected.get("in") or []:
            if self._is_known(category, key) and key not in current:
                return False
        for key in expected.get("not_in") or []:
            if self._is_known(category, key) and key in current:
                return False
        return True

    def _buffs(self, expected, state) -> bool:
        return self._membership("buffs", expected, set(state.get("buffs") or []))

    def _flags(self, expected, state) -> bool:
        return self._membership("flags", expected, set(state.get("flags") or []))

    def _items(self, expected, state) -> bool:
        for item_id, wanted in (expected or {}).items():
            if not check_numeric(item_quantity(state, item_id), wanted):
                return False
        return True

    def _variables(self, expected, state) -> bool:
        values = state.get("variables") or {}
        for var_id, wanted in (expected or {}).items():
            if not self._is_known("variables", var_id):
                continue
            if not check_numeric(values.get(var_id, 0), wanted):
                return False
        return True

    def _skills(self, expected, state) -> bool:
        levels = state.get("levels") or {}
        for skill_id, wanted in (expected or {}).items():
            if not self._is_known("skills", skill_id):
                continue
            if not check_numeric(levels.get(skill_id, 0) or 0, wanted):
                return False
        return True

    def _can_level_up(self, exp_type, state) -> bool:
        if not exp_type:
            return True
        return can_level_up(exp_type, state, self.game_data)

    def _current_floor(self, expected, state) -> bool:
        if expected is None:
            return True
        return state.get("current_floor", 0) == expected

    def _death_count_by_floor(self, expected, state) -> bool:
        for floor, wanted in (expected or {}).items():
            if not check_numeric(floor_death_count(state, int(floor)), wanted):
                return False
        return True

    def _current_floor_death_count(self, expected, state) -> bool:
        return check_numeric(floor_death_count(state), expected)

    def _completed_scenes(self, expected, state) -> bool:
        """
        cond: { "completed_scenes": { "in": ["scn_a"], "not_in": ["scn_b"] } }
        """
        if not isinstance(expected, dict):
            return True
        completed = set(state.get("completed_scenes") or [])
        for scene_id in expected.get("in") or []:
            if scene_id not in completed:
                return False
        for scene_id in expected.get("not_in") or []:
            if scene_id in completed:
                return False
        return True


_default = ConditionEvaluator()


def check_condition(condition: Optional[Dict[str, Any]], state: Dict[str, Any]) -> bool:
    """
    Module-level shortcut using an evaluator with no game data.
    """
    return _default.evaluate(condition, state)

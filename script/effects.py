import logging
import math
from typing import Dict, Any, Callable, List, Optional

from engine.config import (
    FORCE_GAMEOVER_FLAG,
    RESOURCE_KEYS,
    RESOURCES,
    STAT_KEYS,
    STATS,
)
from engine.experience import apply_experience
from engine.state import copy_state, floor_death_count, new_game_state, without_values


logger = logging.getLogger(__name__)

SpecialFn = Callable[[Any, Dict[str, Any]], Dict[str, Any]]

VARIABLE_OPERATORS = ("add", "subtract", "set", "multiply")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _clamp(value, lo, hi):
    return max(lo, min(hi, value))


class EffectApplier:
    """
    Applies a scene's Effects object to a player state and returns the new state.

    effects:
      {
        "strength": 1, "health": -1,
        "add_buffs": ["blessed"], "remove_buffs": [...],
        "set_flags": [...], "unset_flags": [...],
        "items": { "rusty_key": 1, "torch": -1 },
        "variables": [ { "id": "karma", "operator": "add", "value": 2 } ],
        "exp": { "strength": 5, "skills": { "lockpicking": 10 } },
        "special_effects": { "rest_room_cleanup": true, "set_floor": 2 }
      }

    The input state is never mutated. Special effects run last, in the
    order they appear.
    """

    def __init__(self, game_data=None):
        self.game_data = game_data
        self._special: Dict[str, SpecialFn] = {}

        # register built-ins
        self.register("force_gameover", self._force_gameover)
        self.register("rest_room_cleanup", self._rest_room_cleanup)
        self.register("reset_game", self._reset_game)
        self.register("reset_health", self._reset_resource("health"))
        self.register("reset_mind", self._reset_resource("mind"))
        self.register("increment_death_count", self._increment_death_count)
        self.register("complete_scene", self._complete_scene)
        self.register("set_floor", self._set_floor)
        self.register("clear_visited_scenes", self._clear_visited_scenes)

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    def register(self, name: str, fn: SpecialFn):
        if name in self._special:
            raise ValueError(f"Special effect already registered: {name}")
        self._special[name] = fn

    def special_effect_names(self) -> List[str]:
        return list(self._special.keys())

    def apply(self, effects: Optional[Dict[str, Any]], state: Dict[str, Any]) -> Dict[str, Any]:
        new_state = copy_state(state)
        if not effects:
            return new_state

        for key in STAT_KEYS:
            delta = effects.get(key)
            if _is_number(delta):
                new_state[key] = _clamp(new_state.get(key, 0) + delta, 0, STATS[key]["max_value"])

        for key in RESOURCE_KEYS:
            delta = effects.get(key)
            if _is_number(delta):
                new_state[key] = _clamp(new_state.get(key, 0) + delta, 0, RESOURCES[key]["max_value"])

        new_state["buffs"] = self._add_known("buffs", new_state.get("buffs") or [], effects.get("add_buffs"))
        if effects.get("remove_buffs"):
            new_state["buffs"] = without_values(new_state["buffs"], effects["remove_buffs"])

        new_state["flags"] = self._add_known("flags", new_state.get("flags") or [], effects.get("set_flags"))
        if effects.get("unset_flags"):
            new_state["flags"] = without_values(new_state["flags"], effects["unset_flags"])

        if isinstance(effects.get("items"), dict):
            new_state["items"] = self._apply_items(new_state.get("items") or [], effects["items"])

        if isinstance(effects.get("variables"), list):
            new_state["variables"] = self._apply_variables(new_state.get("variables") or {}, effects["variables"])

        if isinstance(effects.get("exp"), dict):
            new_state = apply_experience(new_state, self._flatten_exp(effects["exp"]), self.game_data)

        if _is_number(effects.get("current_floor")):
            new_state["current_floor"] = effects["current_floor"]
        if _is_number(effects.get("death_count")):
            new_state["death_count"] = effects["death_count"]
        if isinstance(effects.get("death_count_by_floor"), dict):
            by_floor = dict(new_state.get("death_count_by_floor") or {})
            by_floor.update(effects["death_count_by_floor"])
            new_state["death_count_by_floor"] = by_floor
        if isinstance(effects.get("completed_scenes"), list):
            completed = list(new_state.get("completed_scenes") or [])
            for scene_id in effects["completed_scenes"]:
                if scene_id not in completed:
                    completed.append(scene_id)
            new_state["completed_scenes"] = completed

        special = effects.get("special_effects")
        if isinstance(special, dict):
            new_state = self.apply_special_effects(special, new_state)

        return new_state

    __call__ = apply

    def apply_special_effects(self, special: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
        for name, value in special.items():
            if not value:
                continue
            fn = self._special.get(name)
            if fn is None:
                logger.warning("Unknown special effect: %s", name)
                continue
            try:
                state = fn(value, state)
            except (TypeError, ValueError, KeyError) as e:
                logger.error("Special effect %s failed: %s", name, e)
        return state

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    def _is_known(self, category: str, key: str) -> bool:
        if self.game_data is None:
            return True
        return self.game_data.is_key(category, key)

    def _add_known(self, category: str, current: List[str], added) -> List[str]:
        out = list(current)
        for key in added or []:
            if not self._is_known(category, key):
                logger.warning("Unknown %s id: %s", category, key)
                continue
            if key not in out:
                out.append(key)
        return out

    def _item_record(self, item_id: str) -> Optional[Dict[str, Any]]:
        if self.game_data is None:
            return {"name": item_id, "description": "", "persist": False}
        return self.game_data.get("items", item_id)

    def _apply_items(self, items: List[Dict[str, Any]], deltas: Dict[str, Any]) -> List[Dict[str, Any]]:
        out = [dict(i) for i in items]
        for item_id, delta in deltas.items():
            if not _is_number(delta) or delta == 0:
                continue
            existing = next((i for i in out if i.get("id") == item_id), None)

            if delta > 0:
                if existing is not None:
                    existing["quantity"] = existing.get("quantity", 0) + delta
                    continue
                record = self._item_record(item_id)
                if record is None:
                    logger.warning("Unknown item id: %s", item_id)
                    continue
                out.append({
                    "id": item_id,
                    "name": record.get("name", item_id),
                    "description": record.get("description", ""),
                    "quantity": delta,
                    "persist": bool(record.get("persist", False)),
                })
            elif existing is not None:
                existing["quantity"] = existing.get("quantity", 0) + delta
                if existing["quantity"] <= 0:
                    out.remove(existing)
        return out

    def _apply_variables(self, variables: Dict[str, Any], changes: List[Dict[str, Any]]) -> Dict[str, Any]:
        out = dict(variables)
        defs = getattr(self.game_data, "variables", None) or {}
        for change in changes:
            var_id = change.get("id")
            operator = change.get("operator")
            value = change.get("value", 0)

            if self.game_data is not None and var_id not in defs:
                logger.warning("Unknown variable id: %s", var_id)
                continue
            if operator not in VARIABLE_OPERATORS:
                logger.warning("Unknown variable operator %s for %s", operator, var_id)
                continue
            if not _is_number(value):
                logger.warning("Non-numeric value for variable %s: %r", var_id, value)
                continue

            definition = defs.get(var_id) or {}
            current = out.get(var_id, definition.get("default_value", 0))

            if operator == "add":
                result = current + value
            elif operator == "subtract":
                result = current - value
            elif operator == "set":
                result = value
            else:
                result = math.floor(current * value)

            lo = definition.get("min_value")
            hi = definition.get("max_value")
            if lo is not None:
                result = max(lo, result)
            if hi is not None:
                result = min(hi, result)
            out[var_id] = result
        return out

    @staticmethod
    def _flatten_exp(exp: Dict[str, Any]) -> Dict[str, Any]:
        deltas = {k: v for k, v in exp.items() if _is_number(v)}
        skills = exp.get("skills")
        if isinstance(skills, dict):
            deltas.update({k: v for k, v in skills.items() if _is_number(v)})
        return deltas

    # ──────────────────────────────────────────────
    # Built-in special effects
    # ──────────────────────────────────────────────

    def _force_gameover(self, value, state):
        new_state = dict(state)
        flags = list(state.get("flags") or [])
        if FORCE_GAMEOVER_FLAG not in flags:
            flags.append(FORCE_GAMEOVER_FLAG)
        new_state["flags"] = flags
        new_state["death_count"] = state.get("death_count", 0) + 1

        floor = state.get("current_floor", 0)
        by_floor = dict(state.get("death_count_by_floor") or {})
        count = floor_death_count(state, floor)
        by_floor.pop(str(floor), None)
        by_floor[floor] = count + 1
        new_state["death_count_by_floor"] = by_floor
        logger.info("Forced game over on floor %s", floor)
        return new_state

    def _rest_room_cleanup(self, value, state):
        """
        Drops temporary or unknown buffs and non-persistent items, resets
        non-persistent variables and skills, and clears scene progress.
        """
        new_state = dict(state)
        gd = self.game_data

        new_state["buffs"] = [b for b in state.get("buffs") or [] if self._keeps_buff(b)]
        new_state["items"] = [i for i in state.get("items") or [] if i.get("persist")]

        variables = dict(state.get("variables") or {})
        for var_id, definition in (getattr(gd, "variables", None) or {}).items():
            definition = definition or {}
            if not definition.get("persist", False):
                variables[var_id] = definition.get("default_value", 0)
        new_state["variables"] = variables

        levels = dict(state.get("levels") or {})
        experience = dict(state.get("experience") or {})
        for skill_id, definition in (getattr(gd, "skills", None) or {}).items():
            if not (definition or {}).get("persist", False):
                levels[skill_id] = 0
                experience[skill_id] = 0
        new_state["levels"] = levels
        new_state["experience"] = experience
        new_state["completed_scenes"] = []
        new_state["scene_count"] = 0

        logger.info("Rest room cleanup applied")
        return new_state

    def _keeps_buff(self, buff_id: str) -> bool:
        # without game data every buff survives
        if self.game_data is None:
            return True
        record = self.game_data.get("buffs", buff_id)
        return record is not None and not record.get("temporary", False)

    def _reset_game(self, value, state):
        logger.info("Game state reset")
        return new_game_state()

    def _reset_resource(self, key: str) -> SpecialFn:
        def reset(value, state):
            return {**state, key: RESOURCES[key]["max_value"]}
        return reset

    def _increment_death_count(self, value, state):
        return {**state, "death_count": state.get("death_count", 0) + 1}

    def _complete_scene(self, value, state):
        if not isinstance(value, str):
            return state
        completed = list(state.get("completed_scenes") or [])
        if value not in completed:
            completed.append(value)
        return {**state, "completed_scenes": completed}

    def _set_floor(self, value, state):
        if not _is_number(value):
            return state
        return {**state, "current_floor": value}

    def _clear_visited_scenes(self, value, state):
        return {**state, "visited_scenes": []}


def apply_effects(effects: Optional[Dict[str, Any]], state: Dict[str, Any], game_data=None) -> Dict[str, Any]:
    return EffectApplier(game_data).apply(effects, state)

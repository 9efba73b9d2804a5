from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

from engine.config import RESOURCES, STAT_KEYS, STATS


logger = logging.getLogger(__name__)


def _stat_exp_to_level(level: int) -> float:
    return max(10, min(100, level * 10))


def _level_exp_to_level(level: int) -> float:
    return 200 + level * 100


def _level_up_bonus(state: Dict[str, Any]) -> Dict[str, Any]:
    new_state = dict(state)
    new_state["health"] = min(RESOURCES["health"]["max_value"], new_state.get("health", 0) + 1)
    new_state["mind"] = min(RESOURCES["mind"]["max_value"], new_state.get("mind", 0) + 1)
    return new_state


def experience_configs(game_data=None) -> Dict[str, Dict[str, Any]]:
    """
    All experience types keyed by id:
      - one per stat (manual level-up, raises the stat itself)
      - "level" (automatic, heals 1 health / 1 mind per level)
      - one per skill in game data (automatic, costs from skill ranks)
    """
    configs: Dict[str, Dict[str, Any]] = {}
    for stat_key in STAT_KEYS:
        configs[stat_key] = {
            "id": stat_key,
            "display_name": STATS[stat_key]["display_name"],
            "auto_level_up": False,
            "exp_to_level": _stat_exp_to_level,
            "max_level": STATS[stat_key]["max_value"],
            "category": "stat",
        }

    configs["level"] = {
        "id": "level",
        "display_name": "레벨",
        "auto_level_up": True,
        "exp_to_level": _level_exp_to_level,
        "max_level": None,
        "category": "level",
        "on_level_up": _level_up_bonus,
    }

    skills = getattr(game_data, "skills", None) or {}
    for skill_id, skill in skills.items():
        ranks = (skill or {}).get("ranks") or []
        configs[skill_id] = {
            "id": skill_id,
            "display_name": (skill or {}).get("display_name") or skill_id,
            "auto_level_up": True,
            "exp_to_level": _rank_cost(ranks),
            "max_level": len(ranks),
            "category": "skill",
        }
    return configs


def _rank_cost(ranks):
    def exp_to_level(level: int) -> float:
        if level < 0 or level >= len(ranks):
            return math.inf
        cost = (ranks[level] or {}).get("exp")
        if not isinstance(cost, (int, float)) or cost <= 0:
            return math.inf
        return cost
    return exp_to_level


def can_level_up(exp_type: str, state: Dict[str, Any], game_data=None) -> bool:
    config = experience_configs(game_data).get(exp_type)
    if not config:
        logger.warning("Unknown experience type: %s", exp_type)
        return False

    level = (state.get("levels") or {}).get(exp_type, 0)
    exp = (state.get("experience") or {}).get(exp_type, 0)
    if config["max_level"] and level >= config["max_level"]:
        return False
    return exp >= config["exp_to_level"](level)


def level_up(exp_type: str, state: Dict[str, Any], game_data=None) -> Dict[str, Any]:
    config = experience_configs(game_data).get(exp_type)
    if not config or not can_level_up(exp_type, state, game_data):
        return state

    levels = dict(state.get("levels") or {})
    experience = dict(state.get("experience") or {})
    level = levels.get(exp_type, 0)
    cost = config["exp_to_level"](level)

    levels[exp_type] = level + 1
    experience[exp_type] = experience.get(exp_type, 0) - cost
    new_state = {**state, "levels": levels, "experience": experience}

    if exp_type in STAT_KEYS:
        new_state[exp_type] = min(STATS[exp_type]["max_value"], new_state.get(exp_type, 0) + 1)

    on_level_up = config.get("on_level_up")
    if on_level_up:
        new_state = on_level_up(new_state)

    logger.info("%s level up: Lv.%s", config["display_name"], levels[exp_type])
    return new_state


def apply_experience(
    state: Dict[str, Any],
    deltas: Dict[str, Any],
    game_data=None,
) -> Dict[str, Any]:
    """
    Add (positive) or remove (negative) experience per type, then run
    chained automatic level-ups for every auto type that received experience.
    Experience may go negative; levels are never lost.
    """
    configs = experience_configs(game_data)
    experience = dict(state.get("experience") or {})
    gained = []

    for exp_type, amount in deltas.items():
        if not isinstance(amount, (int, float)) or isinstance(amount, bool) or amount == 0:
            continue
        if exp_type not in configs:
            logger.warning("Unknown experience type: %s", exp_type)
            continue
        experience[exp_type] = experience.get(exp_type, 0) + amount
        if amount > 0:
            gained.append(exp_type)

    new_state = {**state, "experience": experience}

    for exp_type in gained:
        if not configs[exp_type]["auto_level_up"]:
            continue
        while can_level_up(exp_type, new_state, game_data):
            new_state = level_up(exp_type, new_state, game_data)
    return new_state

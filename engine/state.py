from copy import deepcopy
from typing import Any, Dict, Iterable, List, Optional

from engine.config import FORCE_GAMEOVER_FLAG, INITIAL_GAME_STATE


def new_game_state(**overrides) -> Dict[str, Any]:
    """
    Fresh player state built from INITIAL_GAME_STATE.
    Keyword overrides replace top-level fields.
    """
    state = deepcopy(INITIAL_GAME_STATE)
    state.update(deepcopy(overrides))
    return state


def copy_state(state: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(state, dict):
        return new_game_state()
    return deepcopy(state)


def item_quantity(state: Dict[str, Any], item_id: str) -> int:
    for item in state.get("items") or []:
        if isinstance(item, dict) and item.get("id") == item_id:
            return int(item.get("quantity", 1) or 0)
    return 0


def has_flag(state: Dict[str, Any], flag: str) -> bool:
    return flag in (state.get("flags") or [])


def without_values(values: Iterable[str], removed: Iterable[str]) -> List[str]:
    removed = set(removed)
    return [v for v in values if v not in removed]


def remove_game_over_flags(state: Dict[str, Any]) -> Dict[str, Any]:
    new_state = dict(state)
    new_state["flags"] = without_values(state.get("flags") or [], [FORCE_GAMEOVER_FLAG])
    return new_state


def floor_death_count(state: Dict[str, Any], floor: Optional[int] = None) -> int:
    """
    death_count_by_floor keys may be ints or strings once a state has been
    through JSON, so both spellings are checked.
    """
    if floor is None:
        floor = state.get("current_floor", 0)
    by_floor = state.get("death_count_by_floor") or {}
    if floor in by_floor:
        return int(by_floor[floor] or 0)
    return int(by_floor.get(str(floor), 0) or 0)

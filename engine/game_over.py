from typing import Any, Dict, Optional

from engine.config import FORCE_GAMEOVER_FLAG
from engine.state import has_flag

REASON_FORCED = "강제 게임오버"
REASON_HEALTH = "체력 부족"
REASON_MIND = "정신력 부족"


def get_game_over_reason(state: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Forced game over wins over resource exhaustion; health is checked before mind.
    """
    if not state:
        return None
    if has_flag(state, FORCE_GAMEOVER_FLAG):
        return REASON_FORCED
    if state.get("health", 0) <= 0:
        return REASON_HEALTH
    if state.get("mind", 0) <= 0:
        return REASON_MIND
    return None


def is_game_over(state: Optional[Dict[str, Any]]) -> bool:
    return get_game_over_reason(state) is not None


def check_game_over_with_reason(state: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    reason = get_game_over_reason(state)
    return {"is_game_over": reason is not None, "reason": reason}


def get_game_over_message(state: Dict[str, Any]) -> str:
    reason = get_game_over_reason(state)
    if reason is None:
        return ""
    return f"게임 오버 - {reason}\n사망 횟수: {state.get('death_count', 0)}회"

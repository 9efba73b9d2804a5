from __future__ import annotations

import random
from typing import Any, Callable, Dict, Optional

from engine.state import item_quantity


RandomSource = Callable[[], float]

MODIFIER_CATEGORIES = ("stats", "buffs", "flags", "items", "variables", "skills")


def _quantity(category: str, key: str, state: Dict[str, Any]) -> float:
    """
    How much of `key` the player has, per modifier category:
      - stats: the raw stat value
      - variables: variables[key], default 0
      - skills: levels[key], default 0
      - buffs / flags: 1 when present, else 0
      - items: held quantity, default 0
    """
    if category == "stats":
        value = state.get(key, 0)
        return value if isinstance(value, (int, float)) else 0
    if category == "variables":
        return (state.get("variables") or {}).get(key, 0) or 0
    if category == "skills":
        return (state.get("levels") or {}).get(key, 0) or 0
    if category == "buffs":
        return 1 if key in (state.get("buffs") or []) else 0
    if category == "flags":
        return 1 if key in (state.get("flags") or []) else 0
    if category == "items":
        return item_quantity(state, key)
    return 0


def modifier_bonus(category: str, key: str, spec: Dict[str, Any], state: Dict[str, Any]) -> float:
    per_unit = spec.get("per_unit")
    if not isinstance(per_unit, (int, float)):
        per_unit = 0
    bonus = _quantity(category, key, state) * per_unit
    # a zero / missing max means "uncapped"
    cap = spec.get("max")
    if cap:
        bonus = min(bonus, cap)
    return bonus


def calculate_probability(
    base_rate: float,
    modifiers: Optional[Dict[str, Dict[str, Dict[str, Any]]]],
    state: Dict[str, Any],
    game_data=None,
) -> float:
    """
    base_rate plus every modifier's capped bonus, clamped to [0, 1].
    Pure: no randomness.

    modifiers example:
      { "stats": { "strength": { "per_unit": 0.05, "max": 0.3 } },
        "buffs": { "blessed": { "per_unit": 0.1 } } }
    """
    final_rate = base_rate
    for category in MODIFIER_CATEGORIES:
        for key, spec in ((modifiers or {}).get(category) or {}).items():
            if not spec:
                continue
            if game_data is not None and category != "stats" and not game_data.is_key(category, key):
                continue
            final_rate += modifier_bonus(category, key, spec, state)
    return max(0.0, min(1.0, final_rate))


def calculate_probability_with_max(
    base_rate: float,
    max_rate: Optional[float],
    modifiers: Optional[Dict[str, Any]],
    state: Dict[str, Any],
    game_data=None,
) -> float:
    rate = calculate_probability(base_rate, modifiers, state, game_data)
    if max_rate is not None:
        return max(0.0, min(max_rate, rate))
    return rate


def roll_probability(probability: float, rng: Optional[RandomSource] = None) -> bool:
    draw = (rng or random.random)()
    return draw < probability


def process_probability(
    spec: Dict[str, Any],
    state: Dict[str, Any],
    rng: Optional[RandomSource] = None,
    game_data=None,
) -> Optional[Dict[str, Any]]:
    """
    spec = { "base_rate": 0.5, "max_rate": 0.9, "modifier": {...},
             "success_next": {...}, "failure_next": {...} }
    Returns success_next or failure_next from a single roll.
    """
    rate = calculate_probability_with_max(
        spec.get("base_rate", 0),
        spec.get("max_rate"),
        spec.get("modifier"),
        state,
        game_data,
    )
    if roll_probability(rate, rng):
        return spec.get("success_next")
    return spec.get("failure_next")


# ──────────────────────────────────────────────
# Display helpers
# ──────────────────────────────────────────────

def to_percentage(probability: float) -> int:
    # round half up
    return int(probability * 100 + 0.5)


def from_percentage(percentage: float) -> float:
    return max(0.0, min(1.0, percentage / 100))


def to_description(probability: float) -> str:
    pct = to_percentage(probability)
    if pct <= 10:
        return "매우 낮음"
    if pct <= 25:
        return "낮음"
    if pct <= 40:
        return "보통 이하"
    if pct <= 60:
        return "보통"
    if pct <= 75:
        return "보통 이상"
    if pct <= 90:
        return "높음"
    return "매우 높음"

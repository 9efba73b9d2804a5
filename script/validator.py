from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engine.config import RESOURCE_KEYS, SCENE_CONFIG, STAT_KEYS
from engine.probability import MODIFIER_CATEGORIES
from script.conditions import ConditionEvaluator

NUMERIC_CONDITION_KEYS = STAT_KEYS + RESOURCE_KEYS + ["death_count", "scene_count", "current_floor_death_count"]


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_range(value: Any) -> bool:
    return isinstance(value, dict) and set(value.keys()) <= {"min", "max"}


class SceneValidator:
    """
    Authoring-time checks for scenes, conditions, effects and choices.

    game_data supplies the known buff / flag / item / variable / skill ids.
    An id missing from game data is an error; an id present with an empty
    record is a warning. Without game_data, id checks are skipped.
    Condition keys are checked against the evaluator's atomic table.
    Never raises.
    """

    def __init__(self, game_data=None, evaluator: Optional[ConditionEvaluator] = None):
        self.game_data = game_data
        self.evaluator = evaluator or ConditionEvaluator(game_data)

    def _check_id(self, category: str, key: Any, context: str, result: ValidationResult, label: Optional[str] = None):
        if self.game_data is None:
            return
        label = label or category
        if not isinstance(key, str) or not self.game_data.is_key(category, key):
            result.errors.append(f"{context}: unknown {label} id '{key}'")
            return
        if self.game_data.get(category, key) is None:
            result.warnings.append(f"{context}: no data record for {label} '{key}'")

    # ──────────────────────────────────────────────
    # Scenes
    # ──────────────────────────────────────────────

    def validate_scene(self, scene: Dict[str, Any]) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(scene, dict):
            result.errors.append(f"Scene is not an object: {scene!r}")
            return result

        scene_id = scene.get("id")
        prefix = SCENE_CONFIG["scene_id_prefix"]
        if not isinstance(scene_id, str) or not scene_id.startswith(prefix):
            result.errors.append(f"Scene id must start with '{prefix}': {scene_id}")

        text = scene.get("text")
        if not isinstance(text, str) or not text.strip():
            result.errors.append(f"Scene {scene_id}: text is empty")

        choices = scene.get("choices")
        if not isinstance(choices, list) or not choices:
            result.errors.append(f"Scene {scene_id}: no choices")
            choices = []

        context = f"Scene {scene_id}"
        for key in ("condition", "priority_condition"):
            if scene.get(key) is not None:
                result.merge(self.validate_condition(scene[key], context))
        for key in ("effects", "initial_effects"):
            if scene.get(key) is not None:
                result.merge(self.validate_effects(scene[key], context))

        for n, choice in enumerate(choices):
            result.merge(self.validate_choice(choice, f"{context} choice {n + 1}"))
        return result

    def validate_scenes(self, scenes: List[Dict[str, Any]]) -> ValidationResult:
        result = ValidationResult()
        seen = set()
        for scene in scenes or []:
            scene_id = scene.get("id") if isinstance(scene, dict) else None
            if scene_id in seen:
                result.errors.append(f"Duplicate scene id: {scene_id}")
            else:
                seen.add(scene_id)
            result.merge(self.validate_scene(scene))
        return result

    # ──────────────────────────────────────────────
    # Conditions
    # ──────────────────────────────────────────────

    def validate_condition(self, condition: Any, context: str) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(condition, dict):
            result.errors.append(f"{context}: condition must be an object")
            return result

        for combinator in ("$and", "$or"):
            if combinator in condition:
                children = condition[combinator]
                if not isinstance(children, list):
                    result.errors.append(f"{context}: {combinator} must be a list")
                    return result
                for child in children:
                    result.merge(self.validate_condition(child, context))
                return result

        for category in ("buffs", "flags"):
            if category in condition:
                self._validate_membership(category, condition[category], context, result)

        items = condition.get("items")
        if items is not None:
            if not isinstance(items, dict):
                result.errors.append(f"{context}: items condition must be an object")
            else:
                for item_id, wanted in items.items():
                    self._check_id("items", item_id, context, result, "item")
                    self._validate_count(f"item '{item_id}'", wanted, context, result)

        for category in ("variables", "skills"):
            entries = condition.get(category)
            if entries is None:
                continue
            if not isinstance(entries, dict):
                result.errors.append(f"{context}: {category} condition must be an object")
                continue
            for key, wanted in entries.items():
                self._check_id(category, key, context, result)
                self._validate_range(f"{category}.{key}", wanted, context, result)

        for key in NUMERIC_CONDITION_KEYS:
            wanted = condition.get(key)
            if wanted is not None:
                self._validate_range(key, wanted, context, result)

        known = set(self.evaluator.atomic_keys())
        for key in condition:
            if key not in known:
                result.errors.append(f"{context}: unknown condition key '{key}'")
        return result

    def _validate_membership(self, category: str, spec: Any, context: str, result: ValidationResult):
        if not isinstance(spec, dict):
            result.errors.append(f"{context}: {category} must be {{in?: [...], not_in?: [...]}}")
            return
        for key in spec:
            if key not in ("in", "not_in"):
                result.errors.append(f"{context}: {category} only allows 'in' and 'not_in' (found '{key}')")
        for label in ("in", "not_in"):
            ids = spec.get(label)
            if ids is None:
                continue
            if not isinstance(ids, list):
                result.errors.append(f"{context}: {category}.{label} must be a list")
                continue
            for key in ids:
                self._check_id(category, key, context, result)

    def _validate_range(self, label: str, wanted: Any, context: str, result: ValidationResult) -> bool:
        if _is_number(wanted):
            return True
        if not _is_range(wanted):
            result.errors.append(f"{context}: {label} must be a number or a min/max range")
            return False
        lo, hi = wanted.get("min"), wanted.get("max")
        if any(bound is not None and not _is_number(bound) for bound in (lo, hi)):
            result.errors.append(f"{context}: {label} range bounds must be numbers")
            return False
        if lo is not None and hi is not None and lo > hi:
            result.errors.append(f"{context}: {label} min is greater than max")
            return False
        return True

    def _validate_count(self, label: str, wanted: Any, context: str, result: ValidationResult):
        if not self._validate_range(label, wanted, context, result):
            return
        if _is_number(wanted):
            if wanted < 0:
                result.errors.append(f"{context}: {label} count must be >= 0")
            return
        for bound in ("min", "max"):
            if wanted.get(bound) is not None and wanted[bound] < 0:
                result.errors.append(f"{context}: {label} {bound} must be >= 0")

    # ──────────────────────────────────────────────
    # Effects
    # ──────────────────────────────────────────────

    def validate_effects(self, effects: Any, context: str) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(effects, dict):
            result.errors.append(f"{context}: effects must be an object")
            return result

        for key, category in (("add_buffs", "buffs"), ("remove_buffs", "buffs"), ("set_flags", "flags"), ("unset_flags", "flags")):
            ids = effects.get(key)
            if ids is None:
                continue
            if not isinstance(ids, list):
                result.errors.append(f"{context}: {key} must be a list")
                continue
            for item in ids:
                self._check_id(category, item, f"{context} {key}", result)

        items = effects.get("items")
        if items is not None:
            if not isinstance(items, dict):
                result.errors.append(f"{context}: items effect must be an object")
            else:
                for item_id, delta in items.items():
                    self._check_id("items", item_id, context, result, "item")
                    if not _is_number(delta):
                        result.errors.append(f"{context}: item '{item_id}' delta is not a number")
                        continue
                    if delta == 0:
                        result.warnings.append(f"{context}: item '{item_id}' delta is 0 and has no effect")
                    if delta < -1000:
                        result.warnings.append(f"{context}: item '{item_id}' delta is a very large negative ({delta})")

        variables = effects.get("variables")
        if variables is not None:
            if not isinstance(variables, list):
                result.errors.append(f"{context}: variables effect must be a list")
            else:
                for change in variables:
                    if not isinstance(change, dict):
                        result.errors.append(f"{context}: variable change must be an object")
                        continue
                    self._check_id("variables", change.get("id"), context, result, "variable")
                    if change.get("operator") not in ("add", "subtract", "set", "multiply"):
                        result.errors.append(f"{context}: unknown variable operator '{change.get('operator')}'")
                    if not _is_number(change.get("value")):
                        result.errors.append(f"{context}: variable '{change.get('id')}' value is not a number")

        exp = effects.get("exp")
        if exp is not None:
            if not isinstance(exp, dict):
                result.errors.append(f"{context}: exp must be an object (e.g. {{\"strength\": 10}})")
            else:
                for exp_type, amount in exp.items():
                    if not isinstance(exp_type, str) or not exp_type.strip():
                        result.errors.append(f"{context}: exp has an empty experience type")
                    if exp_type == "skills" and isinstance(amount, dict):
                        for skill_id, skill_amount in amount.items():
                            self._check_id("skills", skill_id, context, result, "skill")
                            if not _is_number(skill_amount):
                                result.errors.append(f"{context}: exp.skills['{skill_id}'] must be a number")
                    elif not _is_number(amount):
                        result.errors.append(f"{context}: exp['{exp_type}'] must be a number")
        return result

    # ──────────────────────────────────────────────
    # Choices
    # ──────────────────────────────────────────────

    def validate_choice(self, choice: Any, context: str) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(choice, dict):
            result.errors.append(f"{context}: choice must be an object")
            return result

        text = choice.get("text")
        if not isinstance(text, str) or not text.strip():
            result.errors.append(f"{context}: choice text is empty")

        if choice.get("condition") is not None:
            result.merge(self.validate_condition(choice["condition"], context))

        next_target = choice.get("next")
        if next_target is not None and not isinstance(next_target, dict):
            result.errors.append(f"{context}: next must be an object")

        probability = choice.get("probability")
        if probability is not None:
            self._validate_probability(probability, context, result)

        if next_target is None and probability is None:
            result.warnings.append(f"{context}: neither next nor probability; a random scene will be chosen")
        return result

    def _validate_probability(self, probability: Any, context: str, result: ValidationResult):
        if not isinstance(probability, dict):
            result.errors.append(f"{context}: probability must be an object")
            return

        for key in ("base_rate", "max_rate"):
            rate = probability.get(key)
            if rate is None and key == "max_rate":
                continue
            if not _is_number(rate) or not 0 <= rate <= 1:
                result.errors.append(f"{context}: {key} must be between 0 and 1")

        for key in ("success_next", "failure_next"):
            target = probability.get(key)
            if target is not None and not isinstance(target, dict):
                result.errors.append(f"{context}: {key} must be an object")

        modifier = probability.get("modifier")
        if modifier is None:
            return
        if not isinstance(modifier, dict):
            result.errors.append(f"{context}: probability modifier must be an object")
            return
        for category, specs in modifier.items():
            if category not in MODIFIER_CATEGORIES:
                result.errors.append(f"{context}: unknown probability modifier category '{category}'")
                continue
            if not isinstance(specs, dict):
                result.errors.append(f"{context}: modifier.{category} must be an object")
                continue
            for key, spec in specs.items():
                if category == "stats":
                    if key not in STAT_KEYS:
                        result.errors.append(f"{context}: unknown stat '{key}' in probability modifier")
                else:
                    self._check_id(category, key, context, result)
                if not isinstance(spec, dict) or not _is_number(spec.get("per_unit")):
                    result.errors.append(f"{context}: modifier.{category}.{key} needs a numeric per_unit")


# ──────────────────────────────────────────────
# Module-level shortcuts
# ──────────────────────────────────────────────

def validate_scene(scene, game_data=None) -> ValidationResult:
    return SceneValidator(game_data).validate_scene(scene)


def validate_scenes(scenes, game_data=None) -> ValidationResult:
    return SceneValidator(game_data).validate_scenes(scenes)


def validate_condition(condition, context: str = "condition", game_data=None) -> ValidationResult:
    return SceneValidator(game_data).validate_condition(condition, context)


def validate_effects(effects, context: str = "effects", game_data=None) -> ValidationResult:
    return SceneValidator(game_data).validate_effects(effects, context)


def validate_choice(choice, context: str = "choice", game_data=None) -> ValidationResult:
    return SceneValidator(game_data).validate_choice(choice, context)

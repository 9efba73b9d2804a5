import logging
import random
from typing import Any, Dict, List, Optional

from script.conditions import ConditionEvaluator


logger = logging.getLogger(__name__)

SCENE_TYPES = ("random_selectable", "priority", "normal")


class SceneFilter:
    """
    Scene and choice eligibility against a player state.

    completed_scenes may be passed in as a set kept alongside the state;
    otherwise the state's own completed_scenes list is used.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    @staticmethod
    def _completed(state: Dict[str, Any], completed=None) -> set:
        if completed is not None:
            return completed
        return set(state.get("completed_scenes") or [])

    def passes_completion(self, scene: Dict[str, Any], state: Dict[str, Any], completed=None) -> bool:
        if scene.get("repeatable"):
            return True
        return scene.get("id") not in self._completed(state, completed)

    def filter_random_selectable_scenes(self, scenes: List[Dict[str, Any]], state: Dict[str, Any], completed=None) -> List[Dict[str, Any]]:
        completed = self._completed(state, completed)
        return [
            s for s in scenes
            if self.evaluator.evaluate(s.get("condition"), state)
            and self.passes_completion(s, state, completed)
            and s.get("random_selectable") is True
        ]

    def filter_priority_scenes(self, scenes: List[Dict[str, Any]], state: Dict[str, Any], completed=None) -> List[Dict[str, Any]]:
        """
        Scenes whose priority_condition holds and which pass the completion
        gate. condition and random_selectable are not consulted.
        """
        completed = self._completed(state, completed)
        return [
            s for s in scenes
            if s.get("priority_condition") is not None
            and self.evaluator.evaluate(s["priority_condition"], state)
            and self.passes_completion(s, state, completed)
        ]

    def get_available_choices(self, scene: Optional[Dict[str, Any]], state: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        A choice whose condition fails is still listed unless it says
        visible_if_failed_condition: false.
        """
        if not scene:
            return []
        out = []
        for choice in scene.get("choices") or []:
            condition = choice.get("condition")
            if condition is None or self.evaluator.evaluate(condition, state):
                out.append(choice)
            elif choice.get("visible_if_failed_condition") is not False:
                out.append(choice)
        return out

    def filter_choices_by_condition(self, choices: List[Dict[str, Any]], state: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [c for c in choices if self.evaluator.evaluate(c.get("condition"), state)]

    def filter_incomplete_scenes(self, scenes: List[Dict[str, Any]], state: Dict[str, Any], completed=None) -> List[Dict[str, Any]]:
        completed = self._completed(state, completed)
        return [s for s in scenes if self.passes_completion(s, state, completed)]

    def filter_scenes_by_type(self, scenes: List[Dict[str, Any]], scene_type: str) -> List[Dict[str, Any]]:
        if scene_type == "random_selectable":
            return [s for s in scenes if s.get("random_selectable") is True]
        if scene_type == "priority":
            return [s for s in scenes if s.get("priority_condition") is not None]
        if scene_type == "normal":
            return [s for s in scenes if not s.get("random_selectable") and s.get("priority_condition") is None]
        logger.warning("Unknown scene type filter: %s", scene_type)
        return []

    def is_scene_available(self, scene: Dict[str, Any], state: Dict[str, Any], completed=None) -> bool:
        return self.evaluator.evaluate(scene.get("condition"), state) and self.passes_completion(scene, state, completed)


class SceneSelector:
    """
    Two-phase chapter-entry selection:
      1. priority scenes (priority_condition true, completion gate passed)
      2. random-selectable scenes
    Each phase picks uniformly at random; None when both are empty.
    """

    def __init__(self, scene_filter: Optional[SceneFilter] = None, rng: Optional[random.Random] = None):
        self.filter = scene_filter or SceneFilter()
        self.rng = rng or random.Random()

    def select_random_from_scenes(self, scenes: List[Dict[str, Any]], state: Dict[str, Any], completed=None) -> Optional[Dict[str, Any]]:
        priority = self.filter.filter_priority_scenes(scenes, state, completed)
        if priority:
            scene = self.rng.choice(priority)
            logger.debug("Priority scene selected: %s (of %s)", scene.get("id"), len(priority))
            return scene

        eligible = self.filter.filter_random_selectable_scenes(scenes, state, completed)
        if not eligible:
            logger.debug("No selectable scene among %s", len(scenes))
            return None

        scene = self.rng.choice(eligible)
        logger.debug("Random scene selected: %s (of %s)", scene.get("id"), len(eligible))
        return scene

    def select_any(self, scenes: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not scenes:
            return None
        return self.rng.choice(scenes)


# ──────────────────────────────────────────────
# Module-level shortcuts
# ──────────────────────────────────────────────

_default_filter = SceneFilter()


def filter_random_selectable_scenes(scenes, state):
    return _default_filter.filter_random_selectable_scenes(scenes, state)


def get_available_choices(scene, state):
    return _default_filter.get_available_choices(scene, state)


def select_random_from_scenes(scenes, state, rng: Optional[random.Random] = None):
    return SceneSelector(_default_filter, rng).select_random_from_scenes(scenes, state)

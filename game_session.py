import logging
from typing import Dict, Any, List, Optional

from engine.chapters import ChapterManager
from engine.config import SCENE_CONFIG
from engine.game_over import get_game_over_reason
from engine.save_load import AutoSaveManager
from engine.selection import SceneFilter, SceneSelector
from engine.state import copy_state, floor_death_count, new_game_state, without_values
from narration.markup import TextEffectParser
from narration.processor import SceneTextProcessor
from narration.variables import TextVariableParser, VariableRegistry
from script.conditions import ConditionEvaluator
from script.effects import EffectApplier
from script.scene_engine import SceneEngine


logger = logging.getLogger(__name__)


def game_reducer(state: Dict[str, Any], action: Dict[str, Any], applier: EffectApplier) -> Dict[str, Any]:
    """
    State transitions for the actions the session and engine dispatch:

      { "type": "LOAD_SCENE", "scene": {...} }      enter a scene (effects applied)
      { "type": "RESTORE_SCENE", "scene": {...} }   re-enter from a save (no effects)
      { "type": "APPLY_EFFECTS", "effects": {...} }
      { "type": "SET_FLAG", "flag": "..." } / { "type": "UNSET_FLAG", "flag": "..." }
      { "type": "INCREMENT_DEATH_COUNT" }
      { "type": "SET_STATE", "state": {...} }
      { "type": "RESET_GAME" }
    """
    atype = action.get("type")

    if atype in ("LOAD_SCENE", "RESTORE_SCENE"):
        scene = action["scene"]
        scene_id = scene.get("id")
        first_visit = scene_id not in (state.get("visited_scenes") or [])

        new_state = copy_state(state)
        completed = new_state.setdefault("completed_scenes", [])
        if scene_id not in completed:
            completed.append(scene_id)
        if first_visit:
            new_state.setdefault("visited_scenes", []).append(scene_id)
        if atype == "RESTORE_SCENE":
            return new_state

        new_state["scene_count"] = new_state.get("scene_count", 0) + 1
        effects = scene.get("initial_effects") if first_visit and scene.get("initial_effects") else scene.get("effects")
        if effects:
            logger.debug("Scene %s: applying effects (first visit: %s)", scene_id, first_visit)
            new_state = applier.apply(effects, new_state)
        return new_state

    if atype == "APPLY_EFFECTS":
        return applier.apply(action.get("effects"), state)

    if atype == "SET_FLAG":
        flags = list(state.get("flags") or [])
        if action["flag"] not in flags:
            flags.append(action["flag"])
        return {**state, "flags": flags}

    if atype == "UNSET_FLAG":
        return {**state, "flags": without_values(state.get("flags") or [], [action["flag"]])}

    if atype == "INCREMENT_DEATH_COUNT":
        floor = state.get("current_floor", 0)
        by_floor = dict(state.get("death_count_by_floor") or {})
        count = floor_death_count(state, floor)
        by_floor.pop(str(floor), None)
        by_floor[floor] = count + 1
        return {**state, "death_count": state.get("death_count", 0) + 1, "death_count_by_floor": by_floor}

    if atype == "SET_STATE":
        return copy_state(action.get("state"))

    if atype == "RESET_GAME":
        return new_game_state()

    raise KeyError(f"Unknown action type: {atype}")


class GameSession:
    """
    One player's run: owns the authoritative player state and a SceneEngine
    that reads snapshots of it. Every scene the engine resolves is entered
    through the reducer (completion, visit history, scene effects).
    """

    def __init__(self, source, game_data=None, store=None, rng=None, auto_save: bool = True):
        self.game_data = game_data
        self.events: List[Dict[str, Any]] = []
        self.game_state: Dict[str, Any] = new_game_state()

        evaluator = ConditionEvaluator(game_data)
        scene_filter = SceneFilter(evaluator)
        self.applier = EffectApplier(game_data)
        self.chapters = ChapterManager(source, SceneSelector(scene_filter))
        self.engine = SceneEngine(
            self.chapters,
            self.game_state,
            dispatch=self.dispatch,
            scene_filter=scene_filter,
            rng=rng,
            game_data=game_data,
        )
        self.text = SceneTextProcessor(
            TextVariableParser(VariableRegistry(game_data)),
            TextEffectParser(),
            evaluator,
        )
        self.auto_save = AutoSaveManager(store) if (auto_save and store is not None) else None

    def emit(self, event: Dict[str, Any]):
        self.events.append(event)

    def dispatch(self, action: Dict[str, Any]):
        self.game_state = game_reducer(self.game_state, action, self.applier)
        self.engine.update_game_state(self.game_state)
        self.emit({"type": "action", "action": action.get("type")})

    # ──────────────────────────────────────────────
    # Flow
    # ──────────────────────────────────────────────

    async def start(self, chapter_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if self.engine.get_current_scene() is not None:
            return self.view()

        scene = await self.engine.start_game(chapter_id or SCENE_CONFIG["initial_chapter_id"])
        if scene is None:
            return None
        self._enter(scene)
        return self.view()

    async def choose(self, choice_index: int) -> Optional[Dict[str, Any]]:
        self.events = []
        scene = await self.engine.select_choice(choice_index)
        if scene is None:
            return None
        self._enter(scene)
        return self.view()

    def set_state(self, state: Dict[str, Any], effects: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.dispatch({"type": "SET_STATE", "state": state})
        if effects:
            self.dispatch({"type": "APPLY_EFFECTS", "effects": effects})
        return self.view()

    def _enter(self, scene: Dict[str, Any]):
        self.dispatch({"type": "LOAD_SCENE", "scene": scene})
        self.emit({"type": "scene", "scene_id": scene.get("id"), "chapter_id": self.engine.get_current_chapter_id()})
        if self.auto_save is not None:
            self.auto_save.auto_save(self.game_state, scene, self.engine.get_current_chapter_id())

    # ──────────────────────────────────────────────
    # Presentation
    # ──────────────────────────────────────────────

    def view(self) -> Dict[str, Any]:
        scene = self.engine.get_current_scene()
        state = self.game_state
        payload: Dict[str, Any] = {
            "scene_id": scene.get("id") if scene else None,
            "chapter_id": self.engine.get_current_chapter_id(),
            "game_over": get_game_over_reason(state) is not None,
            "game_over_reason": get_game_over_reason(state),
            "state": state,
        }
        if scene is None:
            payload.update({"text": "", "segments": [], "effects": [], "errors": [], "choices": []})
            return payload

        processed = self.text.process_scene_text(self.text.select_text(scene, state), state)
        evaluator = self.engine.filter.evaluator
        payload.update({
            "text": processed["text"],
            "segments": processed["segments"],
            "effects": processed["effects"],
            "errors": processed["errors"],
            "background_effects": list(scene.get("background_effects") or []),
            "choices": [
                {
                    "index": n,
                    "text": self.text.variables.render(choice.get("text", ""), state),
                    "enabled": evaluator.evaluate(choice.get("condition"), state),
                }
                for n, choice in enumerate(self.engine.get_available_choices())
            ],
        })
        return payload

import logging
from typing import Any, Callable, Dict, List, Optional

from engine.chapters import ChapterManager
from engine.config import FORCE_GAMEOVER_FLAG, SCENE_CONFIG
from engine.game_over import REASON_HEALTH, REASON_MIND, get_game_over_reason
from engine.probability import RandomSource, process_probability
from engine.selection import SceneFilter
from engine.state import copy_state, floor_death_count, has_flag, remove_game_over_flags


logger = logging.getLogger(__name__)

Dispatch = Callable[[Dict[str, Any]], None]


class SceneEngine:
    """
    Stateful scene flow over a ChapterManager.

    Holds the current scene / chapter and the latest player-state snapshot.
    The authoritative state lives with the caller: the engine only reads
    snapshots handed to update_game_state, and reaches back through the
    optional dispatch channel for death-count and game-over-flag changes.

    Resolution failures are logged and come back as None.
    """

    def __init__(
        self,
        chapters: ChapterManager,
        game_state: Optional[Dict[str, Any]] = None,
        dispatch: Optional[Dispatch] = None,
        scene_filter: Optional[SceneFilter] = None,
        rng: Optional[RandomSource] = None,
        game_data=None,
    ):
        self.chapters = chapters
        self.dispatch = dispatch
        self.filter = scene_filter or chapters.selector.filter
        self.rng = rng
        self.game_data = game_data

        self.current_scene: Optional[Dict[str, Any]] = None
        self.current_chapter: Optional[Dict[str, Any]] = None
        self.game_state: Dict[str, Any] = copy_state(game_state)
        self._completed = set(self.game_state.get("completed_scenes") or [])

    # ──────────────────────────────────────────────
    # State
    # ──────────────────────────────────────────────

    def set_dispatch(self, dispatch: Optional[Dispatch]):
        self.dispatch = dispatch

    def update_game_state(self, state: Dict[str, Any]):
        self.game_state = state
        self._completed = set(state.get("completed_scenes") or [])

    def get_current_scene(self) -> Optional[Dict[str, Any]]:
        return self.current_scene

    def get_current_chapter(self) -> Optional[Dict[str, Any]]:
        return self.current_chapter

    def get_current_chapter_id(self) -> Optional[str]:
        return self.current_chapter["id"] if self.current_chapter else None

    def get_available_choices(self) -> List[Dict[str, Any]]:
        return self.filter.get_available_choices(self.current_scene, self.game_state)

    def reset(self):
        self.current_scene = None
        self.current_chapter = None
        logger.info("Scene engine reset")

    def _set_current_scene(self, scene: Dict[str, Any], chapter_id: Optional[str] = None):
        self.current_scene = scene
        if chapter_id:
            self.current_chapter = self.chapters.get_chapter(chapter_id)

    # ──────────────────────────────────────────────
    # Game start
    # ──────────────────────────────────────────────

    async def start_game(self, chapter_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if self.current_scene is not None:
            logger.debug("start_game skipped; already at %s", self.current_scene.get("id"))
            return self.current_scene

        logger.info("Starting game (chapter=%s)", chapter_id)

        if chapter_id:
            chapter = await self.chapters.ensure_chapter(chapter_id)
            if chapter is None:
                logger.error("Start chapter %s unavailable", chapter_id)
                return None
            self.current_chapter = chapter
        elif self.current_chapter is None:
            registered = self.chapters.get_all_chapters()
            if registered:
                self.current_chapter = registered[0]

        if self.current_chapter is None:
            logger.error("No chapter to start from; register one or pass a chapter id")
            return None

        chapter_id = self.current_chapter["id"]
        start_id = SCENE_CONFIG["game_start_scene_id"]
        scene = self.chapters.get_scene(chapter_id, start_id)
        if scene is None:
            scene = await self.chapters.transition_to_chapter(chapter_id, state=self.game_state, completed=self._completed)

        if scene is None:
            logger.error("No start scene in chapter %s", chapter_id)
            return None

        self._set_current_scene(scene, chapter_id)
        logger.info("Start scene: %s", scene.get("id"))
        return scene

    # ──────────────────────────────────────────────
    # Choices
    # ──────────────────────────────────────────────

    async def select_choice(self, choice_index: int, current_scene: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        scene = current_scene or self.current_scene
        if scene is None:
            logger.error("select_choice called without a current scene")
            return None

        if scene.get("id") != SCENE_CONFIG["game_over_scene_id"] and self.is_game_over():
            logger.info("Choice attempted during game over; moving to game-over scene")
            return await self.move_to_game_over_scene()

        choices = self.filter.get_available_choices(scene, self.game_state)
        if not 0 <= choice_index < len(choices):
            logger.error(
                "Choice %s out of range: %s available in %s: %s",
                choice_index,
                len(choices),
                scene.get("id"),
                [c.get("text") for c in choices],
            )
            return None

        choice = choices[choice_index]
        logger.debug("Choice selected: %s", choice.get("text"))

        if choice.get("probability"):
            target = process_probability(choice["probability"], self.game_state, self.rng, self.game_data)
            if target is None:
                logger.error("Probability branch on %s has no outcome target", scene.get("id"))
                return None
            return await self._move_to_target(target)

        return await self._move_to_target(choice.get("next"))

    async def _move_to_target(self, target: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        chapter + scene  -> explicit move, chapter loaded on demand
        chapter only     -> chapter entry through selection
        scene only       -> current chapter only
        neither          -> random scene in the current chapter, else game over
        """
        target = target or {}
        chapter_id = target.get("chapter_id")
        scene_id = target.get("scene_id")

        if chapter_id and scene_id:
            return await self.move_to_chapter(chapter_id, scene_id)
        if chapter_id:
            return await self.move_to_chapter(chapter_id)
        if scene_id:
            return self.move_to_scene(scene_id)

        if self.current_chapter is not None:
            scene = self.chapters.selector.select_random_from_scenes(
                self.current_chapter.get("scenes") or [], self.game_state, self._completed
            )
            if scene is not None:
                self._set_current_scene(scene, self.current_chapter["id"])
                return scene

        logger.warning("Random scene selection failed; falling back to game over")
        return await self.move_to_chapter(SCENE_CONFIG["game_over_chapter_id"], SCENE_CONFIG["game_over_scene_id"])

    # ──────────────────────────────────────────────
    # Moves
    # ──────────────────────────────────────────────

    async def move_to_chapter(self, chapter_id: str, scene_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if not self.chapters.is_chapter_registered(chapter_id):
            logger.info("Loading chapter %s on demand", chapter_id)

        scene = await self.chapters.transition_to_chapter(
            chapter_id,
            target_scene_id=scene_id,
            state=self.game_state,
            completed=self._completed,
        )
        if scene is not None:
            self._set_current_scene(scene, chapter_id)
        return scene

    def move_to_scene(self, scene_id: str) -> Optional[Dict[str, Any]]:
        chapter_id = self.get_current_chapter_id()
        if chapter_id is None:
            logger.error("Cannot move to %s without a current chapter", scene_id)
            return None

        scene = self.chapters.get_scene(chapter_id, scene_id)
        if scene is None:
            logger.warning("Scene %s not found in current chapter %s", scene_id, chapter_id)
            return None
        self._set_current_scene(scene, chapter_id)
        return scene

    # ──────────────────────────────────────────────
    # Game over
    # ──────────────────────────────────────────────

    def get_game_over_reason(self) -> Optional[str]:
        return get_game_over_reason(self.game_state)

    def is_game_over(self) -> bool:
        return self.get_game_over_reason() is not None

    async def move_to_game_over_scene(self) -> Optional[Dict[str, Any]]:
        self._increment_death_count()
        self._clear_game_over_flag()
        return await self.move_to_chapter(SCENE_CONFIG["game_over_chapter_id"], SCENE_CONFIG["game_over_scene_id"])

    def _increment_death_count(self):
        # force_gameover already counted the death when it was applied
        if has_flag(self.game_state, FORCE_GAMEOVER_FLAG):
            logger.info("Forced game over already counted")
            return

        reason = self.get_game_over_reason()
        if reason not in (REASON_HEALTH, REASON_MIND):
            return

        floor = self.game_state.get("current_floor", 0)
        logger.info(
            "Death (%s): total %s, floor %s: %s",
            reason,
            self.game_state.get("death_count", 0) + 1,
            floor,
            floor_death_count(self.game_state) + 1,
        )

        if self.dispatch is not None:
            self.dispatch({"type": "INCREMENT_DEATH_COUNT"})
            return

        state = dict(self.game_state)
        by_floor = dict(state.get("death_count_by_floor") or {})
        count = floor_death_count(state, floor)
        by_floor.pop(str(floor), None)
        by_floor[floor] = count + 1
        state["death_count"] = state.get("death_count", 0) + 1
        state["death_count_by_floor"] = by_floor
        self.update_game_state(state)

    def _clear_game_over_flag(self):
        if not has_flag(self.game_state, FORCE_GAMEOVER_FLAG):
            return
        if self.dispatch is not None:
            self.dispatch({"type": "UNSET_FLAG", "flag": FORCE_GAMEOVER_FLAG})
            return
        logger.warning("No dispatch set; clearing %s on the local snapshot", FORCE_GAMEOVER_FLAG)
        self.update_game_state(remove_game_over_flags(self.game_state))

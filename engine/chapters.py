import asyncio
import logging
from typing import Any, Dict, List, Optional

from engine.selection import SceneSelector
from script.scene_loader import ChapterLoadError, ChapterNotFoundError, ChapterSource


logger = logging.getLogger(__name__)


class ChapterManager:
    """
    Chapter registry with chapter-scoped scene lookup.

    Scenes are only reachable through their chapter: there is no global
    scene-id index, so the same scene id may appear in several chapters.
    Registered chapters are never mutated.
    """

    def __init__(self, source: ChapterSource, selector: Optional[SceneSelector] = None):
        self.source = source
        self.selector = selector or SceneSelector()

        self._chapters: Dict[str, Dict[str, Any]] = {}
        self._scene_index: Dict[str, Dict[str, int]] = {}
        self._preloads: set = set()

    # ──────────────────────────────────────────────
    # Registration
    # ──────────────────────────────────────────────

    def register_chapter(self, chapter: Dict[str, Any]):
        chapter_id = chapter["id"]
        if chapter_id in self._chapters:
            logger.info("Chapter %s re-registered; overwriting.", chapter_id)

        index: Dict[str, int] = {}
        for i, scene in enumerate(chapter.get("scenes") or []):
            scene_id = scene.get("id")
            if scene_id in index:
                logger.warning("Duplicate scene id %s in chapter %s; first one wins.", scene_id, chapter_id)
                continue
            index[scene_id] = i

        self._chapters[chapter_id] = chapter
        self._scene_index[chapter_id] = index
        logger.debug("Registered chapter %s (%s scenes)", chapter_id, len(index))

    async def load_and_register_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        try:
            chapter = await self.source.load_chapter(chapter_id)
        except (ChapterNotFoundError, ChapterLoadError) as e:
            logger.error("Failed to load chapter %s: %s", chapter_id, e)
            return None

        self.register_chapter(chapter)

        next_id = chapter.get("next_chapter_id")
        if next_id and next_id not in self._chapters:
            self._preload(next_id)
        return chapter

    def _preload(self, chapter_id: str):
        task = asyncio.ensure_future(self.source.preload_chapter(chapter_id))
        self._preloads.add(task)

        def done(t: asyncio.Task):
            self._preloads.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning("Preload of chapter %s failed: %s", chapter_id, t.exception())

        task.add_done_callback(done)

    async def ensure_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        chapter = self._chapters.get(chapter_id)
        if chapter is not None:
            return chapter
        return await self.load_and_register_chapter(chapter_id)

    # ──────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────

    async def transition_to_chapter(
        self,
        chapter_id: str,
        target_scene_id: Optional[str] = None,
        state: Optional[Dict[str, Any]] = None,
        completed=None,
    ) -> Optional[Dict[str, Any]]:
        """
        Scene to enter in chapter_id:
          - target_scene_id given: that scene, or None when the chapter lacks it
          - state given: priority / random selection, else any scene
          - neither: any scene
        """
        chapter = await self.ensure_chapter(chapter_id)
        if chapter is None:
            return None

        if target_scene_id:
            scene = self.get_scene(chapter_id, target_scene_id)
            if scene is None:
                logger.warning("Scene %s not found in chapter %s", target_scene_id, chapter_id)
            return scene

        scenes = chapter.get("scenes") or []
        if state is not None:
            scene = self.selector.select_random_from_scenes(scenes, state, completed)
            if scene is not None:
                return scene
            logger.debug("No eligible scene in %s; picking from all %s", chapter_id, len(scenes))

        return self.selector.select_any(scenes)

    # ──────────────────────────────────────────────
    # Lookups
    # ──────────────────────────────────────────────

    def get_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        return self._chapters.get(chapter_id)

    def get_scene(self, chapter_id: Optional[str], scene_id: str) -> Optional[Dict[str, Any]]:
        if not chapter_id:
            logger.error("Scene lookup for %s without a chapter", scene_id)
            return None
        chapter = self._chapters.get(chapter_id)
        if chapter is None:
            return None
        idx = self._scene_index[chapter_id].get(scene_id)
        if idx is None:
            return None
        return chapter["scenes"][idx]

    def get_chapter_scenes(self, chapter_id: str) -> List[Dict[str, Any]]:
        chapter = self._chapters.get(chapter_id)
        return list(chapter.get("scenes") or []) if chapter else []

    def get_all_chapters(self) -> List[Dict[str, Any]]:
        return list(self._chapters.values())

    def get_chapter_ids(self) -> List[str]:
        return list(self._chapters.keys())

    def is_chapter_registered(self, chapter_id: str) -> bool:
        return chapter_id in self._chapters

    def get_cache_stats(self) -> Dict[str, int]:
        return {
            "total_chapters": len(self._chapters),
            "total_scenes": sum(len(i) for i in self._scene_index.values()),
        }

    def clear(self):
        self._chapters.clear()
        self._scene_index.clear()
        logger.info("Chapter registry cleared")

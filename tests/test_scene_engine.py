import sys
import random
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.chapters import ChapterManager  # noqa: E402
from engine.config import FORCE_GAMEOVER_FLAG  # noqa: E402
from engine.selection import SceneSelector  # noqa: E402
from engine.state import new_game_state  # noqa: E402
from script.scene_engine import SceneEngine  # noqa: E402
from script.scene_loader import ChapterNotFoundError  # noqa: E402


def scene(scene_id, choices=None, **kwargs):
    return {"id": scene_id, "text": scene_id, "choices": choices or [], **kwargs}


CHAPTERS = {
    "c_main": {
        "id": "c_main",
        "name": "Main",
        "type": "story",
        "floor": 1,
        "scenes": [
            scene("scn_a", [
                {"text": "to b", "next": {"scene_id": "scn_b"}},
                {
                    "text": "roll",
                    "probability": {
                        "base_rate": 0.5,
                        "success_next": {"scene_id": "scn_s"},
                        "failure_next": {"scene_id": "scn_f"},
                    },
                },
                {"text": "elsewhere", "next": {"chapter_id": "c_other"}},
                {"text": "wander"},
                {"text": "cross", "next": {"chapter_id": "c_other", "scene_id": "scn_o2"}},
                {"text": "nowhere", "next": {"scene_id": "scn_missing"}},
            ]),
            scene("scn_b"),
            scene("scn_s"),
            scene("scn_f"),
        ],
    },
    "c_other": {
        "id": "c_other",
        "name": "Other",
        "type": "story",
        "floor": 2,
        "scenes": [
            scene("scn_o1", random_selectable=True),
            scene("scn_o2"),
        ],
    },
    "chapter_common": {
        "id": "chapter_common",
        "name": "Common",
        "type": "rest",
        "floor": 0,
        "scenes": [
            scene("scn_camp", random_selectable=True),
            scene("scn_game_start", [{"text": "go", "next": {"chapter_id": "c_main", "scene_id": "scn_a"}}]),
            scene("scn_game_over", [{"text": "again", "next": {"scene_id": "scn_game_over"}}]),
        ],
    },
}


class DictSource:
    def __init__(self, chapters):
        self.chapters = chapters

    async def load_chapter(self, chapter_id):
        if chapter_id not in self.chapters:
            raise ChapterNotFoundError(chapter_id)
        return self.chapters[chapter_id]

    async def load_all_chapters(self):
        return list(self.chapters.values())

    async def preload_chapter(self, chapter_id):
        pass

    def get_cached_chapter(self, chapter_id):
        return self.chapters.get(chapter_id)

    async def clear_cache(self):
        pass


class EngineTestCase(unittest.IsolatedAsyncioTestCase):
    def make_engine(self, state=None, dispatch=None, roll=0.4):
        chapters = ChapterManager(DictSource(CHAPTERS), SceneSelector(rng=random.Random(0)))
        return SceneEngine(chapters, state or new_game_state(), dispatch=dispatch, rng=lambda: roll)

    async def at_scene_a(self, **kwargs):
        engine = self.make_engine(**kwargs)
        scene = await engine.move_to_chapter("c_main", "scn_a")
        self.assertEqual(scene["id"], "scn_a")
        return engine


class TestChoices(EngineTestCase):
    async def test_direct_move_ignores_random_selectable(self):
        engine = await self.at_scene_a()
        scene = await engine.select_choice(0)
        self.assertEqual(scene["id"], "scn_b")
        self.assertIs(engine.get_current_scene(), scene)
        self.assertEqual(engine.get_current_chapter_id(), "c_main")

    async def test_probability_success(self):
        engine = await self.at_scene_a(roll=0.4)
        self.assertEqual((await engine.select_choice(1))["id"], "scn_s")

    async def test_probability_failure(self):
        engine = await self.at_scene_a(roll=0.6)
        self.assertEqual((await engine.select_choice(1))["id"], "scn_f")

    async def test_chapter_only_target_uses_selection(self):
        engine = await self.at_scene_a()
        scene = await engine.select_choice(2)
        self.assertEqual(scene["id"], "scn_o1")
        self.assertEqual(engine.get_current_chapter_id(), "c_other")

    async def test_cross_chapter_target(self):
        engine = await self.at_scene_a()
        self.assertFalse(engine.chapters.is_chapter_registered("c_other"))
        scene = await engine.select_choice(4)
        self.assertEqual(scene["id"], "scn_o2")
        self.assertEqual(engine.get_current_chapter_id(), "c_other")

    async def test_no_target_falls_back_to_game_over(self):
        engine = await self.at_scene_a()
        with self.assertLogs("script.scene_engine", level="WARNING"):
            scene = await engine.select_choice(3)
        self.assertEqual(scene["id"], "scn_game_over")
        self.assertEqual(engine.get_current_chapter_id(), "chapter_common")

    async def test_missing_scene_in_current_chapter(self):
        engine = await self.at_scene_a()
        self.assertIsNone(await engine.select_choice(5))
        self.assertEqual(engine.get_current_scene()["id"], "scn_a")

    async def test_out_of_range_choice(self):
        engine = await self.at_scene_a()
        with self.assertLogs("script.scene_engine", level="ERROR"):
            self.assertIsNone(await engine.select_choice(99))
        self.assertEqual(engine.get_current_scene()["id"], "scn_a")

    async def test_no_current_scene(self):
        engine = self.make_engine()
        self.assertIsNone(await engine.select_choice(0))

    async def test_move_to_scene_requires_chapter(self):
        engine = self.make_engine()
        self.assertIsNone(engine.move_to_scene("scn_b"))


class TestStartGame(EngineTestCase):
    async def test_prefers_game_start_scene(self):
        engine = self.make_engine()
        scene = await engine.start_game("chapter_common")
        self.assertEqual(scene["id"], "scn_game_start")

    async def test_idempotent(self):
        engine = self.make_engine()
        first = await engine.start_game("chapter_common")
        second = await engine.start_game("c_main")
        self.assertIs(first, second)
        self.assertEqual(engine.get_current_chapter_id(), "chapter_common")

    async def test_selection_without_start_scene(self):
        engine = self.make_engine()
        scene = await engine.start_game("c_other")
        self.assertEqual(scene["id"], "scn_o1")

    async def test_nothing_registered(self):
        engine = self.make_engine()
        self.assertIsNone(await engine.start_game())
        self.assertIsNone(await engine.start_game("c_missing"))

    async def test_first_registered_chapter(self):
        engine = self.make_engine()
        engine.chapters.register_chapter(CHAPTERS["chapter_common"])
        self.assertEqual((await engine.start_game())["id"], "scn_game_start")

    async def test_reset(self):
        engine = self.make_engine()
        await engine.start_game("chapter_common")
        engine.reset()
        self.assertIsNone(engine.get_current_scene())
        self.assertIsNone(engine.get_current_chapter())


class TestGameOver(EngineTestCase):
    async def test_health_death_counted_once_locally(self):
        engine = await self.at_scene_a()
        engine.update_game_state(new_game_state(health=0, current_floor=1))
        self.assertEqual(engine.get_game_over_reason(), "체력 부족")

        scene = await engine.select_choice(0)
        self.assertEqual(scene["id"], "scn_game_over")
        self.assertEqual(engine.game_state["death_count"], 1)
        self.assertEqual(engine.game_state["death_count_by_floor"], {1: 1})

        # choices on the game-over scene do not count another death
        scene = await engine.select_choice(0)
        self.assertEqual(scene["id"], "scn_game_over")
        self.assertEqual(engine.game_state["death_count"], 1)

    async def test_mind_death_dispatched(self):
        actions = []
        engine = await self.at_scene_a()
        engine.set_dispatch(actions.append)
        engine.update_game_state(new_game_state(mind=0))
        self.assertEqual(engine.get_game_over_reason(), "정신력 부족")

        await engine.select_choice(0)
        self.assertEqual(actions, [{"type": "INCREMENT_DEATH_COUNT"}])

    async def test_forced_game_over_not_counted_again(self):
        actions = []
        engine = await self.at_scene_a(dispatch=actions.append)
        engine.update_game_state(new_game_state(flags=[FORCE_GAMEOVER_FLAG], death_count=1))

        scene = await engine.select_choice(0)
        self.assertEqual(scene["id"], "scn_game_over")
        self.assertEqual(actions, [{"type": "UNSET_FLAG", "flag": FORCE_GAMEOVER_FLAG}])

    async def test_forced_flag_cleared_locally_without_dispatch(self):
        engine = await self.at_scene_a()
        engine.update_game_state(new_game_state(flags=[FORCE_GAMEOVER_FLAG], death_count=1))

        with self.assertLogs("script.scene_engine", level="WARNING"):
            await engine.select_choice(0)
        self.assertNotIn(FORCE_GAMEOVER_FLAG, engine.game_state["flags"])
        self.assertEqual(engine.game_state["death_count"], 1)
        self.assertFalse(engine.is_game_over())

    async def test_string_floor_key_merged(self):
        engine = await self.at_scene_a()
        engine.update_game_state(new_game_state(health=0, current_floor=2, death_count_by_floor={"2": 3}))
        await engine.select_choice(0)
        self.assertEqual(engine.game_state["death_count_by_floor"], {2: 4})


if __name__ == "__main__":
    unittest.main()

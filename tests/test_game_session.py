import sys
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.config import FORCE_GAMEOVER_FLAG  # noqa: E402
from engine.save_load import AutoSaveManager, MemoryStore  # noqa: E402
from engine.state import new_game_state  # noqa: E402
from game_session import GameSession, game_reducer  # noqa: E402
from script.effects import EffectApplier  # noqa: E402
from script.scene_loader import GameData, LocalChapterSource  # noqa: E402

DATA_ROOT = ROOT / "game-data"


class TestReducer(unittest.TestCase):
    def setUp(self):
        self.applier = EffectApplier()
        self.scene = {
            "id": "scn_x",
            "text": "x",
            "choices": [],
            "initial_effects": {"gold": 2},
            "effects": {"gold": 1},
        }

    def test_initial_effects_on_first_visit_only(self):
        state = game_reducer(new_game_state(), {"type": "LOAD_SCENE", "scene": self.scene}, self.applier)
        self.assertEqual(state["gold"], 2)
        self.assertEqual(state["completed_scenes"], ["scn_x"])
        self.assertEqual(state["visited_scenes"], ["scn_x"])
        self.assertEqual(state["scene_count"], 1)

        state = game_reducer(state, {"type": "LOAD_SCENE", "scene": self.scene}, self.applier)
        self.assertEqual(state["gold"], 3)
        self.assertEqual(state["visited_scenes"], ["scn_x"])
        self.assertEqual(state["scene_count"], 2)

    def test_restore_applies_nothing(self):
        state = game_reducer(new_game_state(), {"type": "RESTORE_SCENE", "scene": self.scene}, self.applier)
        self.assertEqual(state["gold"], 0)
        self.assertEqual(state["scene_count"], 0)
        self.assertEqual(state["completed_scenes"], ["scn_x"])

    def test_flags_and_deaths(self):
        state = game_reducer(new_game_state(), {"type": "SET_FLAG", "flag": FORCE_GAMEOVER_FLAG}, self.applier)
        self.assertEqual(state["flags"], [FORCE_GAMEOVER_FLAG])
        state = game_reducer(state, {"type": "UNSET_FLAG", "flag": FORCE_GAMEOVER_FLAG}, self.applier)
        self.assertEqual(state["flags"], [])

        state = game_reducer(state, {"type": "INCREMENT_DEATH_COUNT"}, self.applier)
        self.assertEqual(state["death_count"], 1)
        self.assertEqual(state["death_count_by_floor"], {1: 1})

    def test_unknown_action(self):
        with self.assertRaises(KeyError):
            game_reducer(new_game_state(), {"type": "TELEPORT"}, self.applier)


class TestGameSession(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.session = GameSession(
            LocalChapterSource(DATA_ROOT, store=self.store),
            game_data=GameData.load(DATA_ROOT),
            store=self.store,
            rng=lambda: 0.0,
        )

    async def test_start_renders_first_scene(self):
        view = await self.session.start()
        self.assertEqual(view["scene_id"], "scn_game_start")
        self.assertEqual(view["chapter_id"], "chapter_common")
        self.assertIn("3/3", view["text"])
        self.assertNotIn("{{", view["text"])
        self.assertEqual(view["effects"][0]["type"], "glow")
        self.assertEqual([c["index"] for c in view["choices"]], [0, 1])
        self.assertEqual(view["state"]["scene_count"], 1)

        again = await self.session.start("chapter_floor_1")
        self.assertEqual(again["scene_id"], "scn_game_start")
        self.assertEqual(again["state"]["scene_count"], 1)

    async def test_auto_save_after_each_scene(self):
        await self.session.start()
        await self.session.choose(1)
        saved = AutoSaveManager(self.store).load_auto_save()
        self.assertEqual(saved["currentScene"]["id"], "scn_camp")
        self.assertEqual(saved["currentChapterId"], "chapter_common")

    async def test_enter_story_chapter(self):
        await self.session.start()
        view = await self.session.choose(0)
        self.assertEqual(view["chapter_id"], "chapter_floor_1")
        self.assertIn(view["scene_id"], {"scn_f1_hall", "scn_f1_cellar"})

    async def test_probability_choice_follows_roll(self):
        await self.session.start("chapter_floor_1")
        hall = self.session.engine.move_to_scene("scn_f1_hall")
        self.session._enter(hall)

        view = self.session.view()
        self.assertEqual(view["scene_id"], "scn_f1_hall")
        self.assertEqual(len(view["choices"]), 3)

        view = await self.session.choose(1)
        self.assertEqual(view["scene_id"], "scn_f1_door")

    async def test_health_game_over_counts_one_death(self):
        await self.session.start()
        self.session.set_state(new_game_state(health=0))
        self.assertTrue(self.session.view()["game_over"])
        self.assertEqual(self.session.view()["game_over_reason"], "체력 부족")

        view = await self.session.choose(0)
        self.assertEqual(view["scene_id"], "scn_game_over")
        self.assertEqual(view["state"]["death_count"], 1)
        self.assertEqual(view["state"]["health"], 3)
        self.assertFalse(view["game_over"])
        self.assertIn("INCREMENT_DEATH_COUNT", [e.get("action") for e in self.session.events])

    async def test_forced_game_over_counts_one_death(self):
        view = await self.session.start("chapter_floor_2")
        self.assertEqual(view["scene_id"], "scn_f2_landing")
        self.assertEqual(view["state"]["current_floor"], 2)

        view = await self.session.choose(0)
        self.assertEqual(view["scene_id"], "scn_f2_abyss")
        self.assertTrue(view["game_over"])
        self.assertEqual(view["game_over_reason"], "강제 게임오버")
        self.assertEqual(view["state"]["death_count"], 1)

        view = await self.session.choose(0)
        self.assertEqual(view["scene_id"], "scn_game_over")
        self.assertEqual(view["state"]["death_count"], 1)
        self.assertEqual(view["state"]["death_count_by_floor"], {2: 1})
        self.assertNotIn(FORCE_GAMEOVER_FLAG, view["state"]["flags"])

    async def test_bad_choice(self):
        await self.session.start()
        self.assertIsNone(await self.session.choose(7))
        self.assertEqual(self.session.view()["scene_id"], "scn_game_start")

    async def test_set_state_with_effects(self):
        await self.session.start()
        view = self.session.set_state(new_game_state(gold=1), {"gold": 2, "add_buffs": ["blessed"]})
        self.assertEqual(view["state"]["gold"], 3)
        self.assertEqual(view["state"]["buffs"], ["blessed"])


if __name__ == "__main__":
    unittest.main()

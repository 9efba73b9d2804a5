import os
from pathlib import Path
from typing import Any, Dict


_BASE_DIR = Path(__file__).resolve().parents[1]

GAME_VERSION = "1.0.0"

# ──────────────────────────────────────────────
# Stats / resources
# ──────────────────────────────────────────────

STATS: Dict[str, Dict[str, Any]] = {
    "strength": {"display_name": "힘", "max_value": 100, "color": "#ff6b6b"},
    "agility": {"display_name": "민첩", "max_value": 100, "color": "#4ecdc4"},
    "wisdom": {"display_name": "지혜", "max_value": 100, "color": "#45b7d1"},
    "charisma": {"display_name": "매력", "max_value": 100, "color": "#f7b731"},
}

RESOURCES: Dict[str, Dict[str, Any]] = {
    "health": {"display_name": "체력", "max_value": 3},
    "mind": {"display_name": "정신력", "max_value": 3},
    "gold": {"display_name": "골드", "max_value": 4},
}

STAT_KEYS = list(STATS.keys())
RESOURCE_KEYS = list(RESOURCES.keys())

SYSTEM_FLAGS = {
    "FORCE_GAMEOVER": "force_gameover",
    "FIRST_VISIT": "first_visit",
    "CHAPTER_COMPLETE": "chapter_complete",
    "FLOOR_COMPLETE": "floor_complete",
    "READY_TO_EXPLORE": "ready_to_explore",
}

FORCE_GAMEOVER_FLAG = SYSTEM_FLAGS["FORCE_GAMEOVER"]

SCENE_CONFIG = {
    "game_start_scene_id": "scn_game_start",
    "game_over_scene_id": "scn_game_over",
    "game_over_chapter_id": "chapter_common",
    "initial_chapter_id": "chapter_common",
    "max_floors": 10,
    "scene_id_prefix": "scn_",
}

INITIAL_GAME_STATE: Dict[str, Any] = {
    "health": 3,
    "mind": 3,
    "gold": 0,
    "strength": 1,
    "agility": 1,
    "wisdom": 1,
    "charisma": 1,
    "buffs": [],
    "flags": [],
    "items": [],
    "levels": {"strength": 1, "agility": 1, "wisdom": 1, "charisma": 1, "level": 1},
    "experience": {"strength": 0, "agility": 0, "wisdom": 0, "charisma": 0, "level": 0},
    "variables": {},
    "completed_scenes": [],
    "visited_scenes": [],
    "current_floor": 1,
    "death_count": 0,
    "death_count_by_floor": {},
    "scene_count": 0,
}

# ──────────────────────────────────────────────
# Runtime settings (environment overrides)
# ──────────────────────────────────────────────

DATA_DIR = Path(os.environ.get("SCENE_ENGINE_DATA_DIR") or (_BASE_DIR / "game-data"))
SAVE_DIR = Path(os.environ.get("SCENE_ENGINE_SAVE_DIR") or (_BASE_DIR / "saves"))
CHAPTER_URL = os.environ.get("SCENE_ENGINE_CHAPTER_URL") or None
SECURE_KEY = os.environ.get("SCENE_ENGINE_SECURE_KEY") or None
LOG_LEVEL = os.environ.get("SCENE_ENGINE_LOG_LEVEL", "INFO").upper()

TEXT_CACHE = {
    "enabled": True,
    "max_size": 100,
    "expiry_seconds": 300,
}

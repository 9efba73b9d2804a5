import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from engine.config import GAME_VERSION, SAVE_DIR, SECURE_KEY


logger = logging.getLogger(__name__)

_BASE_DIR = Path(__file__).resolve().parents[1]

SECURE_KEY_PATTERNS = (
    "token",
    "credential",
    "password",
    "api_key",
    "private_key",
    "session_id",
)


def _resolve_path(dirname: str | Path) -> Path:
    p = dirname if isinstance(dirname, Path) else Path(str(dirname))
    return p if p.is_absolute() else (_BASE_DIR / p)


def is_secure_key(key: str) -> bool:
    return (
        any(pattern in key for pattern in SECURE_KEY_PATTERNS)
        or key.startswith("secure_")
        or key.endswith("_secure")
    )


# ──────────────────────────────────────────────
# General storage
# ──────────────────────────────────────────────

class JsonFileStore:
    """
    One JSON document per key under `root`.
    """

    def __init__(self, root: str | Path = SAVE_DIR):
        self.root = _resolve_path(root)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.root / f"{safe}.json"

    def store(self, key: str, value: Any) -> bool:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to store %s: %s", key, e)
            return False

    def retrieve(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read %s: %s", key, e)
            return default

    def remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.error("Failed to remove %s: %s", key, e)
            return False

    def exists(self, key: str) -> bool:
        return self._path(key).exists()


class SecureStore(JsonFileStore):
    """
    Same layout as JsonFileStore but every value is Fernet-encrypted.
    Without a configured key a fresh one is generated, so values only
    survive for the lifetime of this instance.
    """

    def __init__(self, root: str | Path = SAVE_DIR, key: Optional[str | bytes] = SECURE_KEY):
        super().__init__(_resolve_path(root) / "secure")
        if key is None:
            logger.warning("No secure storage key configured; using an ephemeral key.")
            key = Fernet.generate_key()
        self._fernet = Fernet(key)

    def store(self, key: str, value: Any) -> bool:
        try:
            token = self._fernet.encrypt(json.dumps(value).encode("utf-8")).decode("ascii")
        except (TypeError, ValueError) as e:
            logger.error("Failed to encrypt %s: %s", key, e)
            return False
        return super().store(key, {"enc": token})

    def retrieve(self, key: str, default: Any = None) -> Any:
        wrapped = super().retrieve(key)
        if not isinstance(wrapped, dict) or "enc" not in wrapped:
            return default
        try:
            return json.loads(self._fernet.decrypt(wrapped["enc"].encode("ascii")))
        except (InvalidToken, ValueError) as e:
            logger.error("Failed to decrypt %s: %s", key, e)
            return default


class RoutedStore:
    """
    store / retrieve / remove / exists routed by key name:
    credential-like keys go to the secure store, the rest to general storage.
    """

    def __init__(self, general: Optional[JsonFileStore] = None, secure: Optional[JsonFileStore] = None):
        self.general = general or JsonFileStore()
        self.secure = secure or SecureStore(self.general.root)

    def _backend(self, key: str) -> JsonFileStore:
        return self.secure if is_secure_key(key) else self.general

    def store(self, key: str, value: Any) -> bool:
        return self._backend(key).store(key, value)

    def retrieve(self, key: str, default: Any = None) -> Any:
        return self._backend(key).retrieve(key, default)

    def remove(self, key: str) -> bool:
        return self._backend(key).remove(key)

    def exists(self, key: str) -> bool:
        return self._backend(key).exists(key)


class MemoryStore:
    """
    In-process store with the same interface; used when nothing should hit disk.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    def store(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Failed to store %s: %s", key, e)
            return False
        return True

    def retrieve(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return json.loads(self._data[key])

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def exists(self, key: str) -> bool:
        return key in self._data


# ──────────────────────────────────────────────
# Auto-save
# ──────────────────────────────────────────────

class AutoSaveManager:
    """
    Saves { gameState, currentScene, currentChapterId, savedAt, gameVersion }
    as a single record.
    """

    AUTO_SAVE_KEY = "auto_save_game_state"

    def __init__(self, store=None, game_version: str = GAME_VERSION):
        self.store = store or RoutedStore()
        self.game_version = game_version

    def auto_save(
        self,
        game_state: Dict[str, Any],
        current_scene: Optional[Dict[str, Any]] = None,
        current_chapter_id: Optional[str] = None,
    ) -> bool:
        record = {
            "gameState": game_state,
            "currentScene": current_scene,
            "currentChapterId": current_chapter_id,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "gameVersion": self.game_version,
        }
        ok = self.store.store(self.AUTO_SAVE_KEY, record)
        if not ok:
            logger.warning("Auto-save failed")
        elif current_scene and current_chapter_id:
            logger.info("Auto-saved (scene: %s, chapter: %s)", current_scene.get("id"), current_chapter_id)
        else:
            logger.debug("Auto-saved")
        return ok

    def load_auto_save(self) -> Optional[Dict[str, Any]]:
        record = self.store.retrieve(self.AUTO_SAVE_KEY)
        if not isinstance(record, dict) or not record.get("gameState"):
            logger.debug("No auto-save found")
            return None

        saved_version = record.get("gameVersion")
        if saved_version and saved_version != self.game_version:
            logger.warning(
                "Auto-save version differs (saved: %s, current: %s)", saved_version, self.game_version
            )

        return {
            "gameState": record["gameState"],
            "currentScene": record.get("currentScene") or None,
            "currentChapterId": record.get("currentChapterId") or None,
        }

    def has_auto_save(self) -> bool:
        record = self.store.retrieve(self.AUTO_SAVE_KEY)
        return isinstance(record, dict) and record.get("gameState") is not None

    def clear_auto_save(self) -> bool:
        ok = self.store.remove(self.AUTO_SAVE_KEY)
        if not ok:
            logger.warning("Failed to clear auto-save")
        return ok

    def get_auto_save_info(self) -> Optional[Dict[str, Any]]:
        record = self.store.retrieve(self.AUTO_SAVE_KEY)
        if not isinstance(record, dict):
            return None
        return {k: v for k, v in record.items() if k != "gameState"}

    def test_auto_save(self, test_state: Dict[str, Any]) -> bool:
        """
        Round-trips test_state with a synthetic scene and compares the
        survival fields and scene id.
        """
        test_scene = {"id": "test_scene", "text": "test scene", "choices": []}
        if not self.auto_save(test_state, test_scene):
            logger.error("Auto-save self-test: save failed")
            return False

        loaded = self.load_auto_save()
        if not loaded:
            logger.error("Auto-save self-test: load failed")
            return False

        state = loaded["gameState"]
        matches = (
            state.get("health") == test_state.get("health")
            and state.get("mind") == test_state.get("mind")
            and state.get("gold") == test_state.get("gold")
            and (loaded["currentScene"] or {}).get("id") == test_scene["id"]
        )
        if not matches:
            logger.error("Auto-save self-test: data mismatch")
            return False
        logger.info("Auto-save self-test passed")
        return True

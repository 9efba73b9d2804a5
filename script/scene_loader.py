import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from engine.config import CHAPTER_URL, DATA_DIR


logger = logging.getLogger(__name__)

CHAPTER_CACHE_KEY = "chapter_cache"
CHAPTER_TYPES = ("rest", "story")


class ChapterNotFoundError(KeyError):
    pass


class ChapterLoadError(Exception):
    pass


def is_chapter(obj: Any) -> bool:
    """
    Minimal shape check for chapter payloads: id / name / type / floor / scenes,
    with the first scene carrying id, text and choices.
    """
    if not isinstance(obj, dict):
        return False
    if not isinstance(obj.get("id"), str) or not isinstance(obj.get("name"), str):
        return False
    if obj.get("type") not in CHAPTER_TYPES:
        return False
    floor = obj.get("floor")
    if isinstance(floor, bool) or not isinstance(floor, (int, float)):
        return False
    scenes = obj.get("scenes")
    if not isinstance(scenes, list):
        return False
    if scenes:
        first = scenes[0]
        if not isinstance(first, dict):
            return False
        if not isinstance(first.get("id"), str) or not isinstance(first.get("text"), str):
            return False
        if not isinstance(first.get("choices"), list):
            return False
    return True


def _load_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# ──────────────────────────────────────────────
# Game data definitions
# ──────────────────────────────────────────────

class GameData:
    """
    Id -> record definitions for buffs, flags, items, variables and skills.

    A definition file is either a mapping { id: record } or a list of
    records carrying "id". An id mapped to null is a known key without a
    data record.
    """

    CATEGORIES = ("buffs", "flags", "items", "variables", "skills")

    def __init__(self, **definitions: Dict[str, Any]):
        for category in self.CATEGORIES:
            setattr(self, category, dict(definitions.get(category) or {}))

    @classmethod
    def load(cls, data_root: str | Path = DATA_DIR) -> "GameData":
        data_root = Path(data_root)
        definitions: Dict[str, Dict[str, Any]] = {}
        for category in cls.CATEGORIES:
            path = data_root / f"{category}.json"
            if not path.exists():
                logger.warning("Missing game data file: %s", path)
                continue
            raw = _load_json(path)
            if isinstance(raw, list):
                raw = {entry.get("id"): entry for entry in raw if isinstance(entry, dict)}
            definitions[category] = raw
        return cls(**definitions)

    def is_key(self, category: str, key: str) -> bool:
        return key in (getattr(self, category, None) or {})

    def get(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        record = (getattr(self, category, None) or {}).get(key)
        return record or None


# ──────────────────────────────────────────────
# Chapter sources
# ──────────────────────────────────────────────

class ChapterSource:
    """
    Chapter-loading collaborator.
    load_chapter raises ChapterNotFoundError / ChapterLoadError; preload never raises.
    """

    async def load_chapter(self, chapter_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def load_all_chapters(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def preload_chapter(self, chapter_id: str) -> None:
        raise NotImplementedError

    def get_cached_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def clear_cache(self) -> None:
        raise NotImplementedError


class LocalChapterSource(ChapterSource):
    """
    Chapters bundled under <data_root>/chapters/*.json.

    On first use the persisted chapter cache is read from the key-value store,
    local files are layered on top (later files win) and the merged cache
    is written back.
    """

    def __init__(self, data_root: str | Path = DATA_DIR, store=None):
        self.data_root = Path(data_root)
        self.store = store

        self._cache: Dict[str, Dict[str, Any]] = {}
        self._initialized = False
        self._persistent_cache_loaded = False

    def _local_chapters(self) -> List[Any]:
        chapters_dir = self.data_root / "chapters"
        if not chapters_dir.exists():
            logger.warning("Missing chapters directory: %s", chapters_dir)
            return []
        out = []
        for path in sorted(chapters_dir.glob("*.json")):
            try:
                out.append(_load_json(path))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable chapter file %s: %s", path, e)
        return out

    def initialize(self):
        self._initialized = True
        self._load_persistent_cache()

        local_ids = set()
        for data in self._local_chapters():
            if not is_chapter(data):
                logger.warning("Skipping file with invalid chapter shape: %s", data.get("id") if isinstance(data, dict) else data)
                continue

            chapter_id = data["id"]
            if chapter_id in self._cache:
                if chapter_id in local_ids:
                    logger.warning("Duplicate local chapter %s; later file wins.", chapter_id)
                elif self._persistent_cache_loaded:
                    logger.debug("Local chapter %s replaces cached copy.", chapter_id)
                else:
                    logger.warning("Duplicate chapter id %s; overwriting.", chapter_id)
            self._cache[chapter_id] = data
            local_ids.add(chapter_id)

        self._save_persistent_cache()
        logger.info("Cached %s local chapters.", len(self._cache))

    def _ensure_initialized(self):
        if not self._initialized:
            self.initialize()

    def _load_persistent_cache(self):
        if self.store is None:
            return
        cached = self.store.retrieve(CHAPTER_CACHE_KEY)
        if not isinstance(cached, dict):
            return
        for chapter_id, chapter in cached.items():
            if is_chapter(chapter):
                self._cache[chapter_id] = chapter
        self._persistent_cache_loaded = True
        logger.info("Loaded %s chapters from persisted cache.", len(cached))

    def _save_persistent_cache(self):
        if self.store is None:
            return
        if not self.store.store(CHAPTER_CACHE_KEY, self._cache):
            logger.warning("Failed to persist chapter cache")

    async def load_chapter(self, chapter_id: str) -> Dict[str, Any]:
        self._ensure_initialized()
        chapter = self._cache.get(chapter_id)
        if chapter is None:
            logger.error("Unknown chapter id: %s", chapter_id)
            raise ChapterNotFoundError(chapter_id)
        logger.debug("Chapter %s served from local cache", chapter_id)
        return chapter

    async def load_all_chapters(self) -> List[Dict[str, Any]]:
        self._ensure_initialized()
        return list(self._cache.values())

    async def preload_chapter(self, chapter_id: str) -> None:
        self._ensure_initialized()
        if chapter_id not in self._cache:
            logger.warning("Cannot preload unknown chapter: %s", chapter_id)

    def get_cached_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_initialized()
        return self._cache.get(chapter_id)

    async def clear_cache(self) -> None:
        self._cache.clear()
        self._persistent_cache_loaded = False
        if self.store is not None:
            self.store.remove(CHAPTER_CACHE_KEY)
        self.initialize()
        logger.info("Local chapter cache cleared and rebuilt.")


class RemoteChapterSource(ChapterSource):
    """
    Chapters fetched over HTTP:
      GET {base_url}/all   -> [chapter, ...]
      GET {base_url}/{id}  -> chapter

    Concurrent loads of the same id share one in-flight task.
    """

    def __init__(self, base_url: str = "/api/chapters", client: Optional[httpx.AsyncClient] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

        self._cache: Dict[str, Dict[str, Any]] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._background: set = set()

    async def _get(self, path: str) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            if self._client is not None:
                resp = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.get(url)
        except httpx.HTTPError as e:
            raise ChapterLoadError(f"Request to {url} failed: {e}") from e

        if resp.status_code == 404:
            raise ChapterNotFoundError(path)
        if resp.status_code >= 400:
            raise ChapterLoadError(f"Server returned {resp.status_code} for {url}")
        try:
            return resp.json()
        except ValueError as e:
            raise ChapterLoadError(f"Invalid JSON from {url}") from e

    async def _fetch_chapter(self, chapter_id: str) -> Dict[str, Any]:
        try:
            chapter = await self._get(chapter_id)
            if not is_chapter(chapter):
                raise ChapterLoadError(f"Malformed chapter payload: {chapter_id}")
            self._cache[chapter_id] = chapter
            logger.info("Chapter loaded: %s", chapter_id)
            return chapter
        finally:
            self._in_flight.pop(chapter_id, None)

    async def load_chapter(self, chapter_id: str) -> Dict[str, Any]:
        cached = self._cache.get(chapter_id)
        if cached is not None:
            logger.debug("Chapter %s served from cache", chapter_id)
            return cached

        task = self._in_flight.get(chapter_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_chapter(chapter_id))
            self._in_flight[chapter_id] = task
        else:
            logger.debug("Waiting on in-flight load of %s", chapter_id)
        return await asyncio.shield(task)

    async def load_all_chapters(self) -> List[Dict[str, Any]]:
        chapters = await self._get("all")
        if not isinstance(chapters, list):
            raise ChapterLoadError("Expected a chapter list")
        for chapter in chapters:
            if is_chapter(chapter):
                self._cache[chapter["id"]] = chapter
        logger.info("Loaded %s chapters", len(chapters))
        return chapters

    async def preload_chapter(self, chapter_id: str) -> None:
        if chapter_id in self._cache or chapter_id in self._in_flight:
            return
        logger.debug("Preloading chapter %s", chapter_id)
        task = asyncio.ensure_future(self.load_chapter(chapter_id))
        self._background.add(task)
        task.add_done_callback(self._preload_done(chapter_id))

    def _preload_done(self, chapter_id: str):
        def done(task: asyncio.Task):
            self._background.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Preload of chapter %s failed: %s", chapter_id, task.exception())
        return done

    def get_cached_chapter(self, chapter_id: str) -> Optional[Dict[str, Any]]:
        return self._cache.get(chapter_id)

    async def clear_cache(self) -> None:
        self._cache.clear()
        self._in_flight.clear()
        logger.info("Remote chapter cache cleared")


def build_chapter_source(base_url: Optional[str] = CHAPTER_URL, data_root: str | Path = DATA_DIR, store=None) -> ChapterSource:
    """
    Picks the remote source when a base URL is configured, otherwise the
    bundled one. Call once per session and pass the result down.
    """
    if base_url:
        return RemoteChapterSource(base_url)
    return LocalChapterSource(data_root, store=store)

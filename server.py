import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from engine.config import CHAPTER_URL, DATA_DIR, LOG_LEVEL
from engine.save_load import RoutedStore
from game_session import GameSession
from script.scene_loader import GameData, build_chapter_source
from script.validator import SceneValidator


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


class SessionCreateRequest(BaseModel):
    chapter_id: Optional[str] = None


class ChoiceRequest(BaseModel):
    choice: int


class StateRequest(BaseModel):
    state: Dict[str, Any]
    effects: Optional[Dict[str, Any]] = None


class ValidateRequest(BaseModel):
    scenes: List[Dict[str, Any]]


def create_app(
    data_root: str | Path = DATA_DIR,
    chapter_url: Optional[str] = CHAPTER_URL,
    store=None,
) -> FastAPI:
    app = FastAPI()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    game_data = GameData.load(data_root)
    store = store if store is not None else RoutedStore()
    sessions: Dict[str, GameSession] = {}

    def get_session(session_id: str) -> GameSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    @app.post("/session")
    async def create_session(req: SessionCreateRequest):
        source = build_chapter_source(chapter_url, data_root, store=store)
        session = GameSession(source, game_data=game_data, store=store)
        view = await session.start(req.chapter_id)
        if view is None:
            return {"ok": False, "error": f"Could not start game (chapter: {req.chapter_id})"}

        session_id = uuid.uuid4().hex
        sessions[session_id] = session
        logger.info("Session %s started at %s", session_id, view["scene_id"])
        return {"ok": True, "session_id": session_id, **view}

    @app.get("/session/{session_id}")
    def get_scene(session_id: str):
        return {"ok": True, **get_session(session_id).view()}

    @app.post("/session/{session_id}/choice")
    async def choose(session_id: str, req: ChoiceRequest):
        session = get_session(session_id)
        view = await session.choose(req.choice)
        if view is None:
            return {"ok": False, "error": f"Choice {req.choice} could not be resolved"}
        return {"ok": True, **view}

    @app.post("/session/{session_id}/state")
    def set_state(session_id: str, req: StateRequest):
        session = get_session(session_id)
        return {"ok": True, **session.set_state(req.state, req.effects)}

    @app.post("/validate")
    def validate(req: ValidateRequest):
        return SceneValidator(game_data).validate_scenes(req.scenes).to_dict()

    return app


app = create_app()

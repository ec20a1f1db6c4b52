from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from consult_pipeline import (
    CompletionClient,
    CompletionPipeline,
    PipelineSettings,
    parse_persisted_content,
    schema_from_json_schema,
)
from memory import ConsultationService, EpisodeClosed, EpisodeNotFound, SQLiteMemoryDB

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()
logging.basicConfig(
    level=os.getenv("EASYGP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class EpisodeCreate(BaseModel):
    title: str = "New Consultation"


class EpisodeUpdate(BaseModel):
    title: str | None = None
    closed: bool | None = None


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=8000)


class ProcessRequest(BaseModel):
    content: str = Field(min_length=1, max_length=8000)
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")


class EasyGPApp:
    def __init__(self, settings: PipelineSettings | None = None) -> None:
        self.settings = settings or PipelineSettings.from_env()
        self.db = SQLiteMemoryDB(self.settings.db_path)
        self.client = CompletionClient(self.settings.base_url, timeout_seconds=self.settings.http_timeout_seconds)
        self.pipeline = CompletionPipeline(self.client, self.settings)
        self.consultations = ConsultationService(self.db, self.pipeline, self.settings)

    @property
    def store(self):
        return self.consultations.store


container = EasyGPApp()
app = FastAPI(title="EasyGP Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _emit_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _episode_or_404(episode_id: int) -> dict[str, Any]:
    try:
        return container.store.get_episode(episode_id)
    except EpisodeNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _message_view(message: dict[str, Any]) -> dict[str, Any]:
    view = dict(message)
    structured = parse_persisted_content(message["content"]) if message["role"] == "assistant" else None
    view["structured"] = structured.to_payload() if structured is not None else None
    return view


@app.get("/health")
def health():
    return {"ok": True, "llm_base_url": container.settings.base_url}


@app.post("/episodes")
def create_episode(payload: EpisodeCreate):
    return container.store.create_episode(payload.title)


@app.get("/episodes")
def list_episodes():
    return {"items": container.store.list_episodes()}


@app.get("/episodes/{episode_id}")
def get_episode(episode_id: int):
    return _episode_or_404(episode_id)


@app.patch("/episodes/{episode_id}")
def update_episode(episode_id: int, payload: EpisodeUpdate):
    _episode_or_404(episode_id)
    return container.store.update_episode(episode_id, title=payload.title, closed=payload.closed)


@app.post("/episodes/{episode_id}/close")
def close_episode(episode_id: int):
    _episode_or_404(episode_id)
    return container.store.close_episode(episode_id)


@app.get("/episodes/{episode_id}/messages")
def list_messages(episode_id: int):
    _episode_or_404(episode_id)
    return {"items": [_message_view(message) for message in container.store.get_messages(episode_id)]}


@app.post("/episodes/{episode_id}/messages")
async def send_message(episode_id: int, payload: MessageCreate):
    _episode_or_404(episode_id)
    try:
        turn = await container.consultations.send_message(episode_id, payload.content)
    except EpisodeClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return turn.as_envelope()


@app.post("/episodes/{episode_id}/process")
async def process_message(episode_id: int, payload: ProcessRequest):
    _episode_or_404(episode_id)
    schema = None
    if payload.schema_ is not None:
        try:
            schema = schema_from_json_schema(payload.schema_)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    try:
        turn = await container.consultations.process_message(episode_id, payload.content, schema)
    except EpisodeClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return turn.as_envelope()


@app.get("/episodes/{episode_id}/symptoms")
def list_symptoms(episode_id: int):
    _episode_or_404(episode_id)
    return {"items": container.store.get_symptoms(episode_id)}


@app.post("/episodes/{episode_id}/recommendations")
async def generate_recommendations(episode_id: int):
    _episode_or_404(episode_id)
    turn = await container.consultations.generate_recommendations(episode_id)
    return turn.as_envelope()


def _snapshot_stream(snapshots, limit: int, view=None):
    async def event_stream():
        sent = 0
        try:
            async for snapshot in snapshots:
                items = [view(item) for item in snapshot] if view else snapshot
                yield _emit_sse("snapshot", {"items": items})
                sent += 1
                if sent >= limit:
                    break
        except Exception as exc:
            logger.exception("live query stream failed")
            yield _emit_sse("error", {"message": str(exc)})
        finally:
            await snapshots.aclose()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/episodes/{episode_id}/messages/stream")
def stream_messages(episode_id: int, limit: int = Query(default=100, ge=1, le=10_000)):
    _episode_or_404(episode_id)
    return _snapshot_stream(container.store.message_snapshots(episode_id), limit, _message_view)


@app.get("/episodes/{episode_id}/symptoms/stream")
def stream_symptoms(episode_id: int, limit: int = Query(default=100, ge=1, le=10_000)):
    _episode_or_404(episode_id)
    return _snapshot_stream(container.store.symptom_snapshots(episode_id), limit)

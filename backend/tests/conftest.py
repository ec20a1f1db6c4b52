from __future__ import annotations

import importlib
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from consult_pipeline import CompletionClient, CompletionPipeline, PipelineSettings  # noqa: E402
from memory import ConsultationService, SQLiteMemoryDB  # noqa: E402

from helpers import ScriptedEndpoint  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> PipelineSettings:
    return PipelineSettings(
        base_url="http://llm.test",
        chat_deadline_ms=2_000,
        processing_deadline_ms=2_000,
        db_path=str(tmp_path / "easygp-test.sqlite"),
    )


@pytest.fixture
def make_service(settings) -> Callable[..., ConsultationService]:
    def _make(endpoint: ScriptedEndpoint, **overrides) -> ConsultationService:
        active = replace(settings, **overrides)
        client = CompletionClient(active.base_url, transport=endpoint.transport)
        pipeline = CompletionPipeline(client, active)
        return ConsultationService(SQLiteMemoryDB(active.db_path), pipeline, active)

    return _make


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "easygp-api.sqlite"
    monkeypatch.setenv("EASYGP_DB_PATH", str(db_path))
    monkeypatch.setenv("EASYGP_LLM_BASE_URL", "http://llm.test")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def install_endpoint(backend_module, monkeypatch) -> Callable[[ScriptedEndpoint], ScriptedEndpoint]:
    def _install(endpoint: ScriptedEndpoint) -> ScriptedEndpoint:
        client = CompletionClient("http://llm.test", transport=endpoint.transport)
        monkeypatch.setattr(backend_module.container.pipeline, "client", client)
        return endpoint

    return _install


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client

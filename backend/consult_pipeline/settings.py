from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class PipelineSettings:
    base_url: str = "http://127.0.0.1:8080"
    plain_temperature: float = 0.7
    structured_temperature: float = 0.2
    max_tokens: int = 500
    chat_deadline_ms: int = 60_000
    processing_deadline_ms: int = 15_000
    extra_stop_sequences: tuple[str, ...] = ()
    http_timeout_seconds: float = 120.0
    db_path: str = str(Path(__file__).resolve().parents[1] / "easygp.sqlite")

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        defaults = cls()
        stops = tuple(
            stop for stop in (os.getenv("EASYGP_LLM_STOP") or "").split(",") if stop.strip()
        )
        return cls(
            base_url=(os.getenv("EASYGP_LLM_BASE_URL") or defaults.base_url).strip().rstrip("/"),
            plain_temperature=_env_float("EASYGP_LLM_TEMPERATURE", defaults.plain_temperature),
            structured_temperature=_env_float(
                "EASYGP_LLM_STRUCTURED_TEMPERATURE", defaults.structured_temperature
            ),
            max_tokens=_env_int("EASYGP_LLM_MAX_TOKENS", defaults.max_tokens),
            chat_deadline_ms=_env_int("EASYGP_CHAT_DEADLINE_MS", defaults.chat_deadline_ms),
            processing_deadline_ms=_env_int("EASYGP_PROCESSING_DEADLINE_MS", defaults.processing_deadline_ms),
            extra_stop_sequences=stops,
            http_timeout_seconds=_env_float("EASYGP_LLM_HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds),
            db_path=os.getenv("EASYGP_DB_PATH", defaults.db_path),
        )

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import weakref
from dataclasses import dataclass, field
from typing import Any

from consult_pipeline import (
    CLINICAL_RESPONSE_SCHEMA,
    RECOMMENDATIONS_SCHEMA,
    CompletionOptions,
    CompletionPipeline,
    ConversationTurn,
    PipelineOutcome,
    PipelineSettings,
    SchemaDescription,
    parse_persisted_content,
    with_default_system_prompt,
)

from .database import SQLiteMemoryDB
from .episode_store import EpisodeStore, StoreError

logger = logging.getLogger(__name__)

RECOMMENDATIONS_SYSTEM_PROMPT = (
    "You are a medical assistant generating recommendations based on symptoms and possible conditions."
)


class EpisodeClosed(StoreError):
    def __init__(self, episode_id: int) -> None:
        super().__init__(f"Episode is closed: {episode_id}")
        self.episode_id = episode_id


@dataclass
class TurnResult:
    user_message: dict[str, Any] | None
    assistant_message: dict[str, Any]
    outcome: PipelineOutcome
    symptoms: list[dict[str, Any]] = field(default_factory=list)

    def as_envelope(self) -> dict[str, Any]:
        return {
            "state": self.outcome.state,
            "user_message_id": self.user_message["id"] if self.user_message else None,
            "assistant_message_id": self.assistant_message["id"],
            "response": self.outcome.result.to_payload(),
            "symptom_ids": [symptom["id"] for symptom in self.symptoms],
        }


def _turn_from_message(message: dict[str, Any]) -> ConversationTurn:
    content = message["content"]
    if message["role"] == "assistant":
        decoded = parse_persisted_content(content)
        if decoded is not None:
            content = decoded.response_text
    return ConversationTurn(role=message["role"], content=content)


class ConsultationService:
    """Persists a user turn, runs the pipeline, then persists its reply and symptoms.

    Every user message that reaches the pipeline gets exactly one assistant
    message; pipeline failures arrive here as fallback results, not errors.
    Sends for the same episode run one at a time.
    """

    def __init__(
        self,
        db: SQLiteMemoryDB,
        pipeline: CompletionPipeline,
        settings: PipelineSettings,
    ) -> None:
        self.db = db
        self.store = EpisodeStore(db)
        self.pipeline = pipeline
        self.settings = settings
        # Entries vanish once no send holds or awaits the lock.
        self._episode_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, episode_id: int) -> asyncio.Lock:
        lock = self._episode_locks.get(episode_id)
        if lock is None:
            lock = asyncio.Lock()
            self._episode_locks[episode_id] = lock
        return lock

    def _ensure_open(self, episode_id: int) -> None:
        if self.store.get_episode(episode_id)["closed"]:
            raise EpisodeClosed(episode_id)

    def history_turns(self, episode_id: int) -> list[ConversationTurn]:
        return [_turn_from_message(message) for message in self.store.get_messages(episode_id)]

    async def send_message(self, episode_id: int, content: str) -> TurnResult:
        self._ensure_open(episode_id)
        async with self._lock_for(episode_id):
            user_message = self.store.add_message(episode_id, "user", content)
            conversation = with_default_system_prompt(self.history_turns(episode_id))
            outcome = await self.pipeline.invoke_structured(
                conversation,
                CLINICAL_RESPONSE_SCHEMA,
                CompletionOptions(deadline_ms=self.settings.chat_deadline_ms),
            )
            return self._persist_outcome(episode_id, user_message, outcome)

    async def process_message(
        self,
        episode_id: int,
        content: str,
        schema: SchemaDescription | None = None,
    ) -> TurnResult:
        self._ensure_open(episode_id)
        async with self._lock_for(episode_id):
            conversation = with_default_system_prompt(self.history_turns(episode_id))
            user_message = self.store.add_message(episode_id, "user", content)
            conversation.append(ConversationTurn(role="user", content=content))
            outcome = await self.pipeline.invoke_structured(
                conversation,
                schema or CLINICAL_RESPONSE_SCHEMA,
                CompletionOptions(deadline_ms=self.settings.processing_deadline_ms),
            )
            return self._persist_outcome(episode_id, user_message, outcome)

    async def generate_recommendations(self, episode_id: int) -> TurnResult:
        self.store.get_episode(episode_id)
        async with self._lock_for(episode_id):
            symptoms = [
                {
                    "name": row["name"],
                    "present": row["present"],
                    "confidence": row["confidence"],
                    "severity": row["severity"],
                    "duration": row["duration"],
                }
                for row in self.store.get_symptoms(episode_id)
            ]
            conversation = [
                ConversationTurn(role="system", content=RECOMMENDATIONS_SYSTEM_PROMPT),
                ConversationTurn(role="user", content=json.dumps({"symptoms": symptoms})),
            ]
            outcome = await self.pipeline.invoke_structured(
                conversation,
                RECOMMENDATIONS_SCHEMA,
                CompletionOptions(deadline_ms=self.settings.processing_deadline_ms),
            )
            assistant_message = self.store.add_message(
                episode_id, "assistant", json.dumps(outcome.result.to_payload())
            )
            return TurnResult(user_message=None, assistant_message=assistant_message, outcome=outcome)

    def _persist_outcome(
        self,
        episode_id: int,
        user_message: dict[str, Any],
        outcome: PipelineOutcome,
    ) -> TurnResult:
        assistant_message = self.store.add_message(
            episode_id, "assistant", json.dumps(outcome.result.to_payload())
        )
        if outcome.degraded:
            logger.warning(
                "episode %s turn %s answered with fallback (%s)", episode_id, user_message["id"], outcome.state
            )

        persisted: list[dict[str, Any]] = []
        for candidate in outcome.result.extracted_symptoms:
            try:
                persisted.append(
                    self.store.add_symptom(
                        episode_id,
                        name=candidate.name,
                        present=candidate.present,
                        confidence=candidate.confidence,
                        duration=candidate.duration,
                        severity=candidate.severity,
                        extracted_from=user_message["id"],
                    )
                )
            except sqlite3.Error:
                logger.exception("failed to persist symptom %r for episode %s", candidate.name, episode_id)
        return TurnResult(
            user_message=user_message,
            assistant_message=assistant_message,
            outcome=outcome,
            symptoms=persisted,
        )

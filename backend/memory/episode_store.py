from __future__ import annotations

import re
import sqlite3
from typing import Any

from .database import SQLiteMemoryDB
from .live_query import LiveQueryHub, Listener, Subscription
from .time_utils import next_after, to_iso, utc_now

_CODE_RE = re.compile(r"[^a-z0-9]+")


class StoreError(Exception):
    pass


class EpisodeNotFound(StoreError):
    def __init__(self, episode_id: int) -> None:
        super().__init__(f"Episode not found: {episode_id}")
        self.episode_id = episode_id


def symptom_code(name: str) -> str:
    return _CODE_RE.sub("_", name.strip().lower()).strip("_") or "unknown"


def _episode_row(row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    record["closed"] = bool(record["closed"])
    return record


def _symptom_row(row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    record["present"] = bool(record["present"])
    return record


class EpisodeStore:
    """Episodes, messages and symptoms, with live-query notification on every write."""

    def __init__(self, db: SQLiteMemoryDB, hub: LiveQueryHub | None = None) -> None:
        self._db = db
        self.hub = hub or LiveQueryHub()

    # Episodes

    def create_episode(self, title: str = "New Consultation") -> dict[str, Any]:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO episodes (title, closed, created_at, last_updated_at)
                VALUES (?, 0, ?, ?)
                """,
                (title.strip() or "New Consultation", now, now),
            )
            episode_id = int(cursor.lastrowid)
        return self.get_episode(episode_id)

    def get_episode(self, episode_id: int) -> dict[str, Any]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id, title, closed, created_at, last_updated_at FROM episodes WHERE id = ?",
                (episode_id,),
            ).fetchone()
        if not row:
            raise EpisodeNotFound(episode_id)
        return _episode_row(row)

    def list_episodes(self) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                _episode_row(row)
                for row in conn.execute(
                    """
                    SELECT id, title, closed, created_at, last_updated_at
                    FROM episodes
                    ORDER BY last_updated_at DESC, id DESC
                    """
                ).fetchall()
            ]

    def update_episode(
        self,
        episode_id: int,
        *,
        title: str | None = None,
        closed: bool | None = None,
    ) -> dict[str, Any]:
        self.get_episode(episode_id)
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE episodes
                SET title = COALESCE(?, title),
                    closed = COALESCE(?, closed),
                    last_updated_at = ?
                WHERE id = ?
                """,
                (
                    title.strip() if title and title.strip() else None,
                    int(closed) if closed is not None else None,
                    now,
                    episode_id,
                ),
            )
        return self.get_episode(episode_id)

    def close_episode(self, episode_id: int) -> dict[str, Any]:
        return self.update_episode(episode_id, closed=True)

    # Messages

    def add_message(self, episode_id: int, role: str, content: str) -> dict[str, Any]:
        # The store keeps user/assistant only; system text is shown as the assistant's.
        stored_role = "assistant" if role == "system" else role
        if stored_role not in {"user", "assistant"}:
            raise StoreError(f"Unsupported message role: {role}")
        with self._db.connection() as conn:
            exists = conn.execute("SELECT 1 FROM episodes WHERE id = ?", (episode_id,)).fetchone()
            if not exists:
                raise EpisodeNotFound(episode_id)
            last = conn.execute(
                "SELECT MAX(timestamp) AS last_ts FROM messages WHERE episode_id = ?",
                (episode_id,),
            ).fetchone()
            timestamp = to_iso(next_after(last["last_ts"] if last else None, utc_now()))
            cursor = conn.execute(
                """
                INSERT INTO messages (episode_id, role, content, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (episode_id, stored_role, content, timestamp),
            )
            message_id = int(cursor.lastrowid)
            conn.execute(
                "UPDATE episodes SET last_updated_at = ? WHERE id = ?",
                (timestamp, episode_id),
            )
        self.hub.notify("messages", episode_id)
        return {
            "id": message_id,
            "episode_id": episode_id,
            "role": stored_role,
            "content": content,
            "timestamp": timestamp,
        }

    def get_messages(self, episode_id: int) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT id, episode_id, role, content, timestamp
                    FROM messages
                    WHERE episode_id = ?
                    ORDER BY timestamp ASC, id ASC
                    """,
                    (episode_id,),
                ).fetchall()
            ]

    # Symptoms

    def add_symptom(
        self,
        episode_id: int,
        *,
        name: str,
        present: bool,
        confidence: float,
        duration: str | None = None,
        severity: str | None = None,
        extracted_from: int | None = None,
    ) -> dict[str, Any]:
        timestamp = to_iso(utc_now())
        code = symptom_code(name)
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO symptoms (
                  episode_id, code, name, present, confidence, duration, severity, extracted_from, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (episode_id, code, name, int(present), confidence, duration, severity, extracted_from, timestamp),
            )
            symptom_id = int(cursor.lastrowid)
        self.hub.notify("symptoms", episode_id)
        return {
            "id": symptom_id,
            "episode_id": episode_id,
            "code": code,
            "name": name,
            "present": present,
            "confidence": confidence,
            "duration": duration,
            "severity": severity,
            "extracted_from": extracted_from,
            "timestamp": timestamp,
        }

    def get_symptoms(self, episode_id: int) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                _symptom_row(row)
                for row in conn.execute(
                    """
                    SELECT id, episode_id, code, name, present, confidence, duration, severity,
                           extracted_from, timestamp
                    FROM symptoms
                    WHERE episode_id = ?
                    ORDER BY timestamp ASC, id ASC
                    """,
                    (episode_id,),
                ).fetchall()
            ]

    # Live queries

    def watch_messages(self, episode_id: int, listener: Listener, **kwargs: Any) -> Subscription:
        return self.hub.subscribe("messages", episode_id, lambda: self.get_messages(episode_id), listener, **kwargs)

    def watch_symptoms(self, episode_id: int, listener: Listener, **kwargs: Any) -> Subscription:
        return self.hub.subscribe("symptoms", episode_id, lambda: self.get_symptoms(episode_id), listener, **kwargs)

    def message_snapshots(self, episode_id: int):
        return self.hub.snapshots("messages", episode_id, lambda: self.get_messages(episode_id))

    def symptom_snapshots(self, episode_id: int):
        return self.hub.snapshots("symptoms", episode_id, lambda: self.get_symptoms(episode_id))

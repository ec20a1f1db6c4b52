from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteMemoryDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS episodes (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  title TEXT NOT NULL,
                  closed INTEGER NOT NULL DEFAULT 0,
                  created_at TEXT NOT NULL,
                  last_updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  episode_id INTEGER NOT NULL REFERENCES episodes(id) ON DELETE CASCADE,
                  role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                  content TEXT NOT NULL,
                  timestamp TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS symptoms (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  episode_id INTEGER NOT NULL REFERENCES episodes(id) ON DELETE CASCADE,
                  code TEXT NOT NULL,
                  name TEXT NOT NULL,
                  present INTEGER NOT NULL,
                  confidence REAL NOT NULL,
                  duration TEXT,
                  severity TEXT,
                  extracted_from INTEGER REFERENCES messages(id) ON DELETE SET NULL,
                  timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_episodes_last_updated
                  ON episodes(last_updated_at DESC);
                CREATE INDEX IF NOT EXISTS idx_messages_episode_time
                  ON messages(episode_id, timestamp);
                CREATE INDEX IF NOT EXISTS idx_symptoms_episode_time
                  ON symptoms(episode_id, timestamp);
                CREATE INDEX IF NOT EXISTS idx_symptoms_episode_code
                  ON symptoms(episode_id, code);
                """
            )

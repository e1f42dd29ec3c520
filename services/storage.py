"""
Storage port and its implementations.

The dataset store writes through a StoragePort when durable backing is
configured. Implementations may be eventually consistent; callers never
rely on reading back their own upsert.
"""

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class StoragePort(Protocol):
    def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        ...

    def upsert(self, item_id: str, fields: Dict[str, Any]) -> None:
        ...

    def delete(self, item_id: str) -> None:
        ...

    def list_sessions(self) -> List[Dict[str, Any]]:
        ...


class InMemoryStorage:
    """Dict-backed storage, mainly for tests and unsaved local work."""

    def __init__(self, session_id: str = "default"):
        self.session_id = session_id
        self._sessions: Dict[str, Dict[str, Dict[str, Any]]] = {session_id: {}}
        self._lock = threading.Lock()

    @property
    def _items(self) -> Dict[str, Dict[str, Any]]:
        return self._sessions.setdefault(self.session_id, {})

    def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            payload = self._items.get(item_id)
            return dict(payload) if payload is not None else None

    def upsert(self, item_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            self._items.setdefault(item_id, {"id": item_id}).update(fields)

    def delete(self, item_id: str) -> None:
        with self._lock:
            self._items.pop(item_id, None)

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"id": sid, "name": sid, "item_count": len(items)}
                for sid, items in self._sessions.items()
            ]

    def load_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(payload) for payload in self._items.values()]


SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions(
  id TEXT PRIMARY KEY,
  name TEXT,
  created_at REAL
)
"""

RECORDS_DDL = """
CREATE TABLE IF NOT EXISTS records(
  session_id TEXT NOT NULL,
  id TEXT NOT NULL,
  payload TEXT NOT NULL,
  updated_at REAL,
  PRIMARY KEY (session_id, id)
)
"""


class SqliteStorage:
    """
    SQLite-backed storage. Each record is one JSON payload row.

    Attributes:
        db_path: Database file path (":memory:" works for tests)
        session_id: Session the records belong to
    """

    def __init__(self, db_path: str, session_id: str = "default", session_name: Optional[str] = None):
        self.db_path = db_path
        self.session_id = session_id
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute(SESSIONS_DDL)
        self._conn.execute(RECORDS_DDL)
        self._conn.execute(
            "INSERT OR IGNORE INTO sessions(id, name, created_at) VALUES (?, ?, ?)",
            (session_id, session_name or session_id, time.time()),
        )
        self._conn.commit()

    def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM records WHERE session_id=? AND id=?",
                (self.session_id, item_id),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def upsert(self, item_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM records WHERE session_id=? AND id=?",
                (self.session_id, item_id),
            ).fetchone()
            payload = json.loads(row[0]) if row else {"id": item_id}
            payload.update(fields)
            self._conn.execute(
                """
                INSERT INTO records(session_id, id, payload, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id, id) DO UPDATE
                   SET payload=excluded.payload, updated_at=excluded.updated_at
                """,
                (self.session_id, item_id, json.dumps(payload, ensure_ascii=False), time.time()),
            )
            self._conn.commit()

    def delete(self, item_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM records WHERE session_id=? AND id=?",
                (self.session_id, item_id),
            )
            self._conn.commit()

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT s.id, s.name, s.created_at, COUNT(r.id)
                  FROM sessions s
             LEFT JOIN records r ON r.session_id = s.id
              GROUP BY s.id
              ORDER BY s.created_at DESC
                """
            ).fetchall()
        return [
            {"id": sid, "name": name, "created_at": created, "item_count": count}
            for sid, name, created, count in rows
        ]

    def load_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT payload FROM records WHERE session_id=? ORDER BY rowid",
                (self.session_id,),
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

"""Memory persistence backends.

A backend only has to ``insert`` a record, run a hybrid ``similarity_search``
for one user and ``mark_expired`` records. Ranking happens in
:class:`~studybuddy_brain.memory.store.MemoryStore`; backends just return
every active candidate that is either close in vector space or shares a
content word with the query.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from studybuddy_brain.memory.records import MemoryRecord
from studybuddy_brain.scoring import cosine_similarity, tokenize

Candidate = Tuple[MemoryRecord, float]


def _lexical_hit(query_tokens: set[str], text: str) -> bool:
    if not query_tokens:
        return False
    return bool(query_tokens & set(tokenize(text, drop_stopwords=True)))


def _select(
    records: Sequence[MemoryRecord],
    vector: Optional[Sequence[float]],
    text: str,
    limit: int,
    min_similarity: float,
) -> List[Candidate]:
    query_tokens = set(tokenize(text, drop_stopwords=True))
    found: List[Candidate] = []
    for record in records:
        sim = cosine_similarity(vector, record.embedding) if vector is not None else 0.0
        if sim >= min_similarity or _lexical_hit(query_tokens, record.text):
            found.append((record, sim))
    found.sort(key=lambda c: c[1], reverse=True)
    if limit > 0:
        found = found[:limit]
    return found


class MemoryBackend:
    """Abstract persistence contract for memory records."""

    def insert(self, record: MemoryRecord) -> str:
        """Store ``record``; return the existing id if an active record has its natural key."""
        raise NotImplementedError

    def similarity_search(
        self,
        user_id: str,
        vector: Optional[Sequence[float]],
        text: str,
        limit: int,
        min_similarity: float,
    ) -> List[Candidate]:
        """Active records of ``user_id`` with their cosine similarity, best first.

        ``limit`` of 0 returns every match.
        """
        raise NotImplementedError

    def mark_expired(self, before: float) -> int:
        raise NotImplementedError

    def deactivate(self, record_id: str) -> bool:
        raise NotImplementedError

    def purge_inactive(self, before: float) -> int:
        raise NotImplementedError

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        raise NotImplementedError

    def count(self, user_id: str | None = None, *, active_only: bool = True) -> int:
        raise NotImplementedError


class InMemoryBackend(MemoryBackend):
    """Process-local backend used by tests and single-node deployments."""

    def __init__(self) -> None:
        self._records: Dict[str, MemoryRecord] = {}
        self._by_key: Dict[str, str] = {}
        self._lock = threading.Lock()

    def insert(self, record: MemoryRecord) -> str:
        with self._lock:
            existing = self._by_key.get(record.natural_key)
            if existing is not None and self._records[existing].active:
                return existing
            self._records[record.id] = record
            self._by_key[record.natural_key] = record.id
            return record.id

    def similarity_search(self, user_id, vector, text, limit, min_similarity):
        with self._lock:
            records = [r for r in self._records.values() if r.user_id == user_id and r.active]
        return _select(records, vector, text, limit, min_similarity)

    def mark_expired(self, before: float) -> int:
        count = 0
        with self._lock:
            for record in self._records.values():
                if record.active and record.expired(before):
                    record.active = False
                    count += 1
        return count

    def deactivate(self, record_id: str) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or not record.active:
                return False
            record.active = False
            return True

    def purge_inactive(self, before: float) -> int:
        with self._lock:
            doomed = [r for r in self._records.values() if not r.active and r.created_at < before]
            for record in doomed:
                del self._records[record.id]
                if self._by_key.get(record.natural_key) == record.id:
                    del self._by_key[record.natural_key]
            return len(doomed)

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            return self._records.get(record_id)

    def count(self, user_id: str | None = None, *, active_only: bool = True) -> int:
        with self._lock:
            return sum(
                1
                for r in self._records.values()
                if (user_id is None or r.user_id == user_id) and (r.active or not active_only)
            )


class SQLiteBackend(MemoryBackend):
    """SQLite-backed store; embeddings and tags are kept as JSON columns."""

    def __init__(self, path: Path | str = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS memories ("
                "id TEXT PRIMARY KEY,"
                "user_id TEXT NOT NULL,"
                "conversation_id TEXT,"
                "natural_key TEXT NOT NULL,"
                "text TEXT,"
                "embedding TEXT,"
                "importance INTEGER,"
                "tags TEXT,"
                "created_at REAL,"
                "expires_at REAL,"
                "active INTEGER DEFAULT 1"
                ")"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS memories_user_active ON memories (user_id, active)"
            )
            # a turn that was forgotten or expired may be stored again
            self._conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS memories_active_key ON memories (natural_key) WHERE active = 1"
            )
            self._conn.commit()

    def _row_to_record(self, row: sqlite3.Row) -> MemoryRecord:
        return MemoryRecord(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            natural_key=row["natural_key"],
            text=row["text"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
            importance=row["importance"] or 3,
            tags=frozenset(json.loads(row["tags"]) if row["tags"] else []),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            active=bool(row["active"]),
        )

    def insert(self, record: MemoryRecord) -> str:
        with self._lock:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO memories (id, user_id, conversation_id, natural_key, text, "
                "embedding, importance, tags, created_at, expires_at, active) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.user_id,
                    record.conversation_id,
                    record.natural_key,
                    record.text,
                    json.dumps(list(record.embedding)) if record.embedding is not None else None,
                    record.importance,
                    json.dumps(sorted(record.tags)),
                    record.created_at,
                    record.expires_at,
                    int(record.active),
                ),
            )
            self._conn.commit()
            if cur.rowcount:
                return record.id
            row = self._conn.execute(
                "SELECT id FROM memories WHERE natural_key = ? AND active = 1", (record.natural_key,)
            ).fetchone()
            return row["id"]

    def similarity_search(self, user_id, vector, text, limit, min_similarity):
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM memories WHERE user_id = ? AND active = 1", (user_id,)
            ).fetchall()
        return _select([self._row_to_record(r) for r in rows], vector, text, limit, min_similarity)

    def mark_expired(self, before: float) -> int:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE memories SET active = 0 "
                "WHERE active = 1 AND expires_at IS NOT NULL AND expires_at <= ?",
                (before,),
            )
            self._conn.commit()
            return cur.rowcount

    def deactivate(self, record_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE memories SET active = 0 WHERE id = ? AND active = 1", (record_id,)
            )
            self._conn.commit()
            return cur.rowcount > 0

    def purge_inactive(self, before: float) -> int:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM memories WHERE active = 0 AND created_at < ?", (before,)
            )
            self._conn.commit()
            return cur.rowcount

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM memories WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def count(self, user_id: str | None = None, *, active_only: bool = True) -> int:
        sql = "SELECT COUNT(*) FROM memories WHERE 1 = 1"
        params: list = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if active_only:
            sql += " AND active = 1"
        with self._lock:
            return self._conn.execute(sql, params).fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def backend_from_settings(memory_db_path: str | None) -> MemoryBackend:
    if memory_db_path:
        return SQLiteBackend(memory_db_path)
    return InMemoryBackend()


__all__ = [
    "Candidate",
    "InMemoryBackend",
    "MemoryBackend",
    "SQLiteBackend",
    "backend_from_settings",
]

"""
Durable Store

SQLite persistence for cached embeddings, historical fixes and export
mappings. The embedding cache treats this as the durable tier and probes
``is_available()`` before using it; every write is an upsert keyed by
primary key, so concurrent writers resolve as last-write-wins.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .schemas.records import EmbeddingEntry, HistoricalFix, IssueType

logger = logging.getLogger("signalhub.common.store")

FIX_EMBEDDING_KIND = "fixes"


class DurableStore(Protocol):
    """Storage operations required by the cache, retriever and exporter."""

    def is_available(self) -> bool:
        ...

    def get_embedding(self, kind: str, entity_id: str) -> Optional[EmbeddingEntry]:
        ...

    def upsert_embeddings(self, entries: List[EmbeddingEntry]) -> List[str]:
        ...

    def get_all_embeddings(self, kind: str, model: str) -> Dict[str, EmbeddingEntry]:
        ...

    def delete_embeddings(self, kind: str, model: Optional[str] = None) -> int:
        ...

    def delete_entity(self, kind: str, entity_id: str) -> None:
        ...

    def save_historical_fix(self, fix: HistoricalFix) -> bool:
        ...

    def has_historical_fix(self, content_hash: str) -> bool:
        ...

    def list_historical_fixes(
        self, issue_type: Optional[IssueType] = None, limit: Optional[int] = None
    ) -> List[HistoricalFix]:
        ...

    def get_export_mapping(self, group_id: str) -> Optional[Dict[str, str]]:
        ...

    def save_export_mapping(self, group_id: str, external_id: str, url: str) -> None:
        ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """Thin SQLite wrapper that satisfies the DurableStore contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - embeddings: one vector per (kind, entity_id), overwritten on change
        - historical_fixes: learned (issue, fix) pairs, unique per triple
        - export_mappings: external issue id/url recorded per exported group
        """
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS embeddings (
                    kind TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    model TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (kind, entity_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_embeddings_model ON embeddings (kind, model)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS historical_fixes (
                    content_hash TEXT PRIMARY KEY,
                    repo TEXT NOT NULL,
                    issue_number INTEGER NOT NULL,
                    fix_number INTEGER NOT NULL,
                    issue_type TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (issue_number, fix_number, repo)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS export_mappings (
                    group_id TEXT PRIMARY KEY,
                    external_id TEXT NOT NULL,
                    url TEXT,
                    exported_at TIMESTAMP NOT NULL
                )
                """
            )

    def is_available(self) -> bool:
        """Health probe used before attempting the durable path."""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1 FROM embeddings LIMIT 1")
            return True
        except sqlite3.Error as e:
            logger.warning("Durable store unavailable: %s", e)
            return False

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> EmbeddingEntry:
        return EmbeddingEntry(
            kind=row["kind"],
            entity_id=row["entity_id"],
            embedding=json.loads(row["embedding"]),
            content_hash=row["content_hash"],
            model=row["model"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_embedding(self, kind: str, entity_id: str) -> Optional[EmbeddingEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM embeddings WHERE kind = ? AND entity_id = ?",
                (kind, entity_id),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def upsert_embeddings(self, entries: List[EmbeddingEntry]) -> List[str]:
        """Upsert entries in one transaction, one statement per item.

        Returns:
            Entity IDs whose upsert failed; the others are committed
        """
        failed: List[str] = []
        with self._connect() as conn:
            for entry in entries:
                try:
                    conn.execute(
                        """
                        INSERT INTO embeddings
                            (kind, entity_id, model, content_hash, embedding, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(kind, entity_id) DO UPDATE SET
                            model = excluded.model,
                            content_hash = excluded.content_hash,
                            embedding = excluded.embedding,
                            updated_at = excluded.updated_at
                        """,
                        (
                            entry.kind,
                            entry.entity_id,
                            entry.model,
                            entry.content_hash,
                            json.dumps(entry.embedding),
                            entry.created_at.isoformat(),
                            _now(),
                        ),
                    )
                except sqlite3.Error as e:
                    logger.error("Failed to upsert embedding %s/%s: %s", entry.kind, entry.entity_id, e)
                    failed.append(entry.entity_id)
        return failed

    def get_all_embeddings(self, kind: str, model: str) -> Dict[str, EmbeddingEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM embeddings WHERE kind = ? AND model = ?",
                (kind, model),
            ).fetchall()
        return {row["entity_id"]: self._row_to_entry(row) for row in rows}

    def delete_embeddings(self, kind: str, model: Optional[str] = None) -> int:
        with self._connect() as conn:
            if model is None:
                cursor = conn.execute("DELETE FROM embeddings WHERE kind = ?", (kind,))
            else:
                cursor = conn.execute(
                    "DELETE FROM embeddings WHERE kind = ? AND model = ?", (kind, model)
                )
            return cursor.rowcount

    def delete_entity(self, kind: str, entity_id: str) -> None:
        """Remove an owning entity's embedding rows (and the fix row itself for fixes)."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM embeddings WHERE kind = ? AND entity_id = ?", (kind, entity_id)
            )
            if kind == FIX_EMBEDDING_KIND:
                conn.execute(
                    "DELETE FROM historical_fixes WHERE content_hash = ?", (entity_id,)
                )
            elif kind == "groups":
                conn.execute("DELETE FROM export_mappings WHERE group_id = ?", (entity_id,))

    # ------------------------------------------------------------------
    # Historical fixes
    # ------------------------------------------------------------------

    def save_historical_fix(self, fix: HistoricalFix) -> bool:
        """Insert a fix unless the (issue, fix, repo) triple is known.

        Returns:
            True if a new row was created
        """
        data = fix.model_dump(mode="json", exclude={"embedding"})
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO historical_fixes
                    (content_hash, repo, issue_number, fix_number, issue_type, data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
                    fix.content_hash,
                    fix.repo,
                    fix.issue_number,
                    fix.fix_number,
                    fix.issue_type.value,
                    json.dumps(data),
                    _now(),
                ),
            )
            return cursor.rowcount > 0

    def has_historical_fix(self, content_hash: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM historical_fixes WHERE content_hash = ?", (content_hash,)
            ).fetchone()
        return row is not None

    def list_historical_fixes(
        self, issue_type: Optional[IssueType] = None, limit: Optional[int] = None
    ) -> List[HistoricalFix]:
        """Return fixes (newest first) with their embeddings attached when present."""
        query = (
            "SELECT f.data, e.embedding FROM historical_fixes f "
            "LEFT JOIN embeddings e ON e.kind = ? AND e.entity_id = f.content_hash"
        )
        params: list = [FIX_EMBEDDING_KIND]
        if issue_type is not None:
            query += " WHERE f.issue_type = ?"
            params.append(issue_type.value)
        query += " ORDER BY f.created_at DESC, f.rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        fixes = []
        for row in rows:
            fix = HistoricalFix.model_validate(json.loads(row["data"]))
            if row["embedding"]:
                fix.embedding = json.loads(row["embedding"])
            fixes.append(fix)
        return fixes

    # ------------------------------------------------------------------
    # Export mappings
    # ------------------------------------------------------------------

    def get_export_mapping(self, group_id: str) -> Optional[Dict[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT external_id, url FROM export_mappings WHERE group_id = ?",
                (group_id,),
            ).fetchone()
        if not row:
            return None
        return {"external_id": row["external_id"], "url": row["url"] or ""}

    def save_export_mapping(self, group_id: str, external_id: str, url: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO export_mappings (group_id, external_id, url, exported_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    external_id = excluded.external_id,
                    url = excluded.url,
                    exported_at = excluded.exported_at
                """,
                (group_id, external_id, url, _now()),
            )

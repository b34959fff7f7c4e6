"""File Repository backed by SQLite.

Documents are stored as one JSON row each, keyed by id.  Every call opens
its own short-lived connection, so the repository is safe to use from the
worker threads ``run_sync`` dispatches to.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Sequence

from gist_shard_sync.core.async_utils import run_sync
from gist_shard_sync.sync.document import Document

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
)
"""


class SqliteFileRepository:
    """Document entities in a single SQLite database file."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def get_sync(self, document_id: str) -> Document | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        if row is None:
            return None
        return Document.model_validate_json(row[0])

    def save_many_sync(self, documents: Sequence[Document]) -> None:
        rows = [(doc.id, doc.model_dump_json()) for doc in documents]
        with closing(self._connect()) as conn, conn:
            conn.executemany(
                "INSERT OR REPLACE INTO documents (id, data) VALUES (?, ?)",
                rows,
            )

    def delete_sync(self, document_id: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))

    def ids_sync(self) -> list[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT id FROM documents ORDER BY id").fetchall()
        return [row[0] for row in rows]

    async def get(self, document_id: str) -> Document | None:
        return await run_sync(self.get_sync, document_id)

    async def save(self, document: Document) -> None:
        await run_sync(self.save_many_sync, [document])

    async def delete(self, document_id: str) -> None:
        await run_sync(self.delete_sync, document_id)

    async def save_bulk(self, documents: Sequence[Document]) -> None:
        """Save all *documents* in one transaction."""
        if documents:
            await run_sync(self.save_many_sync, list(documents))

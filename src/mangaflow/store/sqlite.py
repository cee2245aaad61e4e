"""SQLite-backed checkpoint store."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional

from ..exceptions import CheckpointStoreError
from ..models import ProjectCheckpoint
from .base import CheckpointStore, stamp_record

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    project_id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_thread_id ON checkpoints (thread_id);
"""


def get_conn(path: Path | str) -> sqlite3.Connection:
    """Return a sqlite3.Connection for *path*, creating parent directories."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(p), timeout=5.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA)
    conn.commit()


class SQLiteCheckpointStore(CheckpointStore):
    """Durable checkpoint store in a single SQLite file.

    Each save runs in one transaction, so a checkpoint is either fully
    written or not at all. Lookups by thread id use an index.
    """

    name = "sqlite"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        try:
            self._conn = get_conn(self.path)
            ensure_schema(self._conn)
        except sqlite3.Error as e:
            raise CheckpointStoreError(f"Cannot open checkpoint database {self.path}: {e}") from e
        logger.debug(f"Opened checkpoint database {self.path}")

    def save(self, checkpoint: ProjectCheckpoint) -> str:
        try:
            with self._conn:
                row = self._conn.execute(
                    "SELECT created_at, updated_at FROM checkpoints WHERE project_id = ?",
                    (checkpoint.project_id,),
                ).fetchone()
                existing = (
                    {"createdAt": row["created_at"], "updatedAt": row["updated_at"]}
                    if row else None
                )
                record = stamp_record(checkpoint.to_record(), existing)
                self._conn.execute(
                    """
                    INSERT INTO checkpoints (project_id, thread_id, payload, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(project_id) DO UPDATE SET
                        thread_id = excluded.thread_id,
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (
                        record["projectId"],
                        record["threadId"],
                        json.dumps(record, ensure_ascii=False),
                        record["createdAt"],
                        record["updatedAt"],
                    ),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to save checkpoint {checkpoint.project_id}: {e}")
            raise CheckpointStoreError(f"Failed to save checkpoint: {e}") from e

        self._apply_stamps(checkpoint, record)
        return checkpoint.project_id

    def load(self, project_id: str) -> Optional[ProjectCheckpoint]:
        row = self._fetch_one(
            "SELECT payload FROM checkpoints WHERE project_id = ?", (project_id,)
        )
        return self._decode(row) if row else None

    def list(self) -> List[ProjectCheckpoint]:
        try:
            rows = self._conn.execute(
                "SELECT payload FROM checkpoints ORDER BY updated_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise CheckpointStoreError(f"Failed to list checkpoints: {e}") from e
        return [self._decode(row) for row in rows]

    def delete(self, project_id: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM checkpoints WHERE project_id = ?", (project_id,))
        except sqlite3.Error as e:
            raise CheckpointStoreError(f"Failed to delete checkpoint: {e}") from e

    def find_by_thread_id(self, thread_id: str) -> Optional[ProjectCheckpoint]:
        row = self._fetch_one(
            "SELECT payload FROM checkpoints WHERE thread_id = ? ORDER BY updated_at DESC LIMIT 1",
            (thread_id,),
        )
        return self._decode(row) if row else None

    def close(self) -> None:
        self._conn.close()

    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            return self._conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise CheckpointStoreError(f"Failed to read checkpoint: {e}") from e

    @staticmethod
    def _decode(row: sqlite3.Row) -> ProjectCheckpoint:
        try:
            return ProjectCheckpoint.from_record(json.loads(row["payload"]))
        except ValueError as e:
            raise CheckpointStoreError(f"Corrupt checkpoint payload: {e}") from e

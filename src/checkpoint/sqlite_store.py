# src/checkpoint/sqlite_store.py — v1
"""SQLite checkpoint store (CHECKPOINT_BACKEND=sqlite).

Uses stdlib sqlite3 in WAL mode. Each put is a single upsert committed on
its own, so a checkpoint is either fully written or not at all.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from stagegate.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stagegate.checkpoint.manager import deserialize_checkpoint, serialize_checkpoint
from stagegate.checkpoint.models import Checkpoint
from stagegate.core.errors import ValidationError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    execution_id TEXT PRIMARY KEY,
    pipeline_name TEXT NOT NULL,
    project_id TEXT,
    stage TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_pipeline
    ON checkpoints(pipeline_name, updated_at);
"""


class SqliteCheckpointStore(BaseCheckpointStore):
    """SQLite-backed checkpoint store."""

    def __init__(self, db_path: Path | str) -> None:
        db = str(db_path)
        if db != ":memory:":
            path = Path(db).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            db = str(path)
        self._conn = sqlite3.connect(db)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def _write(self, checkpoint: Checkpoint) -> None:
        with self._conn:
            self._conn.execute(
                """INSERT OR REPLACE INTO checkpoints
                   (execution_id, pipeline_name, project_id, stage, status, data, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    checkpoint.execution_id,
                    checkpoint.pipeline_name,
                    checkpoint.context.project_id,
                    checkpoint.stage.value,
                    checkpoint.status.value,
                    serialize_checkpoint(checkpoint),
                    checkpoint.updated_at.isoformat(),
                ),
            )

    async def get(self, execution_id: str) -> Checkpoint | None:
        """Retrieve a checkpoint by execution id."""
        row = self._conn.execute(
            "SELECT data FROM checkpoints WHERE execution_id = ?", (execution_id,)
        ).fetchone()
        if row is None:
            return None
        return self._decode(execution_id, row[0])

    async def delete(self, execution_id: str) -> None:
        """Remove a checkpoint."""
        with self._conn:
            self._conn.execute(
                "DELETE FROM checkpoints WHERE execution_id = ?", (execution_id,)
            )

    async def list_checkpoints(
        self, pipeline_name: str | None = None
    ) -> list[Checkpoint]:
        """List stored checkpoints ordered by last update."""
        if pipeline_name is None:
            cursor = self._conn.execute(
                "SELECT execution_id, data FROM checkpoints ORDER BY updated_at"
            )
        else:
            cursor = self._conn.execute(
                "SELECT execution_id, data FROM checkpoints "
                "WHERE pipeline_name = ? ORDER BY updated_at",
                (pipeline_name,),
            )
        checkpoints: list[Checkpoint] = []
        for execution_id, data in cursor.fetchall():
            cp = self._decode(execution_id, data)
            if cp is not None:
                checkpoints.append(cp)
        return checkpoints

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @staticmethod
    def _decode(execution_id: str, data: str) -> Checkpoint | None:
        try:
            return deserialize_checkpoint(data)
        except ValidationError as e:
            logger.warning("Failed to deserialize checkpoint %s: %s", execution_id, e)
            return None

# src/project/sqlite_store.py — v2
"""SQLite project store (PROJECT_BACKEND=sqlite).

Uses stdlib sqlite3 in WAL mode. The audit table is append-only and indexed
by (project_id, ts) so the trail is read page by page, never loaded whole.
Every commit is a compare-and-set on (status, version), so two processes
sharing one database file cannot overwrite each other's changes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from stagegate.core.errors import NotFoundError, TransitionError, ValidationError
from stagegate.core.models import ensure_utc
from stagegate.project.base_project_store import BaseProjectStore, conflict_reason
from stagegate.project.models import AuditEntry, Project, ProjectStatus

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS audit_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    project_id TEXT NOT NULL REFERENCES projects(id),
    ts TEXT NOT NULL,
    action TEXT NOT NULL,
    actor TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_project_ts ON audit_log(project_id, ts, seq);
CREATE TRIGGER IF NOT EXISTS audit_log_no_update BEFORE UPDATE ON audit_log
BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;
CREATE TRIGGER IF NOT EXISTS audit_log_no_delete BEFORE DELETE ON audit_log
BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;
"""


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamp so text order equals time order."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f")


class SqliteProjectStore(BaseProjectStore):
    """SQLite-backed project and audit store."""

    def __init__(self, db_path: Path | str) -> None:
        db = str(db_path)
        if db != ":memory:":
            path = Path(db).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            db = str(path)
        self._conn = sqlite3.connect(db)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._migrate()

    async def _insert(self, project: Project, entry: AuditEntry) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO projects (id, status, data, updated_at, version) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (project.id, project.status.value, project.model_dump_json(),
                     _ts(project.updated_at), project.version),
                )
                self._insert_audit(entry)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Project already exists: {project.id}") from exc

    async def get(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT data FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if row is None:
            return None
        return Project.model_validate_json(row[0])

    async def commit(
        self, project: Project, entry: AuditEntry, expected_status: ProjectStatus
    ) -> Project:
        committed = project.model_copy(update={"version": project.version + 1})
        with self._conn:
            row = self._conn.execute(
                "SELECT status, version FROM projects WHERE id = ?", (project.id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Project not found: {project.id}")
            cursor = self._conn.execute(
                "UPDATE projects SET status = ?, data = ?, updated_at = ?, version = ? "
                "WHERE id = ? AND status = ? AND version = ?",
                (committed.status.value, committed.model_dump_json(),
                 _ts(committed.updated_at), committed.version,
                 project.id, expected_status.value, project.version),
            )
            if cursor.rowcount != 1:
                raise TransitionError(
                    row[0], project.status.value,
                    conflict_reason(row[0], row[1], project, expected_status),
                )
            self._insert_audit(entry)
        return committed

    async def append_audit(self, entry: AuditEntry) -> None:
        try:
            with self._conn:
                self._insert_audit(entry)
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"Project not found: {entry.project_id}") from exc

    async def audit_page(
        self,
        project_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        query = "SELECT data FROM audit_log WHERE project_id = ?"
        params: list[object] = [project_id]
        if start is not None:
            query += " AND ts >= ?"
            params.append(_ts(start))
        if end is not None:
            query += " AND ts < ?"
            params.append(_ts(end))
        query += " ORDER BY ts, seq LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self._conn.execute(query, params).fetchall()
        return [AuditEntry.model_validate_json(row[0]) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _migrate(self) -> None:
        """Add the version column to databases created before it existed."""
        columns = {row[1] for row in self._conn.execute("PRAGMA table_info(projects)")}
        if "version" not in columns:
            with self._conn:
                self._conn.execute(
                    "ALTER TABLE projects ADD COLUMN version INTEGER NOT NULL DEFAULT 0"
                )

    def _insert_audit(self, entry: AuditEntry) -> None:
        self._conn.execute(
            "INSERT INTO audit_log (id, project_id, ts, action, actor, data) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (entry.id, entry.project_id, _ts(entry.timestamp), entry.action.value,
             entry.actor, entry.model_dump_json()),
        )

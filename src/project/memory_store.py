# src/project/memory_store.py — v2
"""In-process project store (PROJECT_BACKEND=memory), for tests and dry runs.

No method awaits between reading and writing, so each call is atomic on the
event loop.
"""

from __future__ import annotations

from bisect import insort
from datetime import datetime

from stagegate.core.errors import NotFoundError, TransitionError, ValidationError
from stagegate.core.models import ensure_utc
from stagegate.project.base_project_store import BaseProjectStore, conflict_reason
from stagegate.project.models import AuditEntry, Project, ProjectStatus


class MemoryProjectStore(BaseProjectStore):
    """Dict-backed project store."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._audit: dict[str, list[tuple[datetime, int, AuditEntry]]] = {}
        self._seq = 0

    async def _insert(self, project: Project, entry: AuditEntry) -> None:
        if project.id in self._projects:
            raise ValidationError(f"Project already exists: {project.id}")
        self._projects[project.id] = project.model_copy(deep=True)
        self._audit[project.id] = []
        self._append(entry)

    async def get(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project is not None else None

    async def commit(
        self, project: Project, entry: AuditEntry, expected_status: ProjectStatus
    ) -> Project:
        stored = self._projects.get(project.id)
        if stored is None:
            raise NotFoundError(f"Project not found: {project.id}")
        if stored.status is not expected_status or stored.version != project.version:
            raise TransitionError(
                stored.status.value, project.status.value,
                conflict_reason(
                    stored.status.value, stored.version, project, expected_status
                ),
            )
        committed = project.model_copy(update={"version": project.version + 1}, deep=True)
        self._projects[project.id] = committed
        self._append(entry)
        return committed.model_copy(deep=True)

    async def append_audit(self, entry: AuditEntry) -> None:
        if entry.project_id not in self._projects:
            raise NotFoundError(f"Project not found: {entry.project_id}")
        self._append(entry)

    async def audit_page(
        self,
        project_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        lo = ensure_utc(start) if start is not None else None
        hi = ensure_utc(end) if end is not None else None
        matching = [
            entry
            for ts, _, entry in self._audit.get(project_id, [])
            if (lo is None or ts >= lo) and (hi is None or ts < hi)
        ]
        return matching[offset: offset + limit]

    def _append(self, entry: AuditEntry) -> None:
        self._seq += 1
        # seq is unique, so tuples never compare the entries themselves
        insort(
            self._audit.setdefault(entry.project_id, []),
            (entry.timestamp, self._seq, entry),
        )

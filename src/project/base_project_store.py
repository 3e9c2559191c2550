# src/project/base_project_store.py — v2
"""Abstract project store interface.

A store keeps two things: the current project record and an append-only,
time-ordered audit table. A status change and its audit entry are always
written by one commit() call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from stagegate.core.errors import NotFoundError
from stagegate.core.models import SYSTEM_ACTOR
from stagegate.project.models import AuditAction, AuditEntry, Project, ProjectStatus


class BaseProjectStore(ABC):
    """Unified interface for project storage backends."""

    async def create(self, project: Project, actor: str = SYSTEM_ACTOR) -> AuditEntry:
        """Insert a new project with its project_created entry.

        Raises:
            ValidationError: A project with this id already exists.
        """
        entry = AuditEntry(
            project_id=project.id,
            timestamp=project.created_at,
            action=AuditAction.PROJECT_CREATED,
            actor=actor,
            previous_state=None,
            new_state=project.snapshot(),
        )
        await self._insert(project, entry)
        return entry

    @abstractmethod
    async def _insert(self, project: Project, entry: AuditEntry) -> None:
        """Insert project and entry in one unit."""

    @abstractmethod
    async def get(self, project_id: str) -> Project | None:
        """Point lookup by id."""

    async def require(self, project_id: str) -> Project:
        """Like get() but raises NotFoundError."""
        project = await self.get(project_id)
        if project is None:
            raise NotFoundError(
                f"Project not found: {project_id}", details={"project_id": project_id}
            )
        return project

    @abstractmethod
    async def commit(
        self, project: Project, entry: AuditEntry, expected_status: ProjectStatus
    ) -> Project:
        """Write the project and its audit entry in one unit.

        ``project.version`` must still be the stored version; the stored
        record gets version + 1 and is returned.

        Raises:
            NotFoundError: Unknown project.
            TransitionError: Stored status is no longer ``expected_status``, or
                another writer committed since the project was loaded.
        """

    @abstractmethod
    async def append_audit(self, entry: AuditEntry) -> None:
        """Append an entry that does not change the project record."""

    @abstractmethod
    async def audit_page(
        self,
        project_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Audit entries with start <= timestamp < end, oldest first."""

    def close(self) -> None:
        """Release backend resources. No-op by default."""


def conflict_reason(
    stored_status: str,
    stored_version: int,
    project: Project,
    expected_status: ProjectStatus,
) -> str:
    """Explain why a commit lost the optimistic check."""
    if stored_status != expected_status.value:
        return f"stored status changed (expected {expected_status.value})"
    return (
        f"project modified concurrently (stored version {stored_version}, "
        f"loaded {project.version})"
    )

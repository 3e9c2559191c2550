# src/project/gate.py — v2
"""Persisting front end to the state machine.

Each method loads the project, applies one pure state-machine step and
commits the new record with its audit entry in a single store call. The
status and version read at load time are the optimistic-concurrency guard:
a concurrent writer makes the commit raise TransitionError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from stagegate.core.models import SYSTEM_ACTOR
from stagegate.project import state_machine
from stagegate.project.base_project_store import BaseProjectStore
from stagegate.project.models import AuditAction, AuditEntry, Project, ProjectStatus

logger = logging.getLogger(__name__)


class ProjectGate:
    """Status transitions, approvals and stage events for stored projects."""

    def __init__(self, store: BaseProjectStore) -> None:
        self._store = store

    @property
    def store(self) -> BaseProjectStore:
        return self._store

    async def create_project(
        self,
        project_id: str | None = None,
        actor: str = SYSTEM_ACTOR,
        stage_outputs: Mapping[str, Any] | None = None,
    ) -> Project:
        fields: dict[str, Any] = {"stage_outputs": dict(stage_outputs or {})}
        if project_id is not None:
            fields["id"] = project_id
        project = Project(**fields)
        await self._store.create(project, actor=actor)
        logger.info("Created project %s", project.id)
        return project

    async def get(self, project_id: str) -> Project:
        return await self._store.require(project_id)

    async def transition(
        self,
        project_id: str,
        target: ProjectStatus | str,
        actor: str,
        details: Mapping[str, Any] | None = None,
    ) -> Project:
        project = await self._store.require(project_id)
        updated, entry = state_machine.transition(project, target, actor, details)
        return await self._store.commit(updated, entry, expected_status=project.status)

    async def complete_stage(
        self,
        project_id: str,
        stage_name: str,
        actor: str = SYSTEM_ACTOR,
        output: Any = None,
        details: Mapping[str, Any] | None = None,
    ) -> Project:
        project = await self._store.require(project_id)
        updated, entry = state_machine.complete_stage(
            project, stage_name, actor, output=output, details=details
        )
        return await self._store.commit(updated, entry, expected_status=project.status)

    async def approve(self, project_id: str, checkpoint_name: str, actor: str) -> Project:
        project = await self._store.require(project_id)
        updated, entry = state_machine.approve_checkpoint(project, checkpoint_name, actor)
        return await self._store.commit(updated, entry, expected_status=project.status)

    async def reject(
        self, project_id: str, checkpoint_name: str, actor: str, reason: str
    ) -> Project:
        project = await self._store.require(project_id)
        updated, entry = state_machine.reject_checkpoint(
            project, checkpoint_name, actor, reason
        )
        return await self._store.commit(updated, entry, expected_status=project.status)

    async def record_event(
        self,
        project_id: str,
        action: AuditAction | str,
        actor: str = SYSTEM_ACTOR,
        details: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        project = await self._store.require(project_id)
        entry = state_machine.record_stage_event(project, action, actor, details)
        await self._store.append_audit(entry)
        return entry

    async def audit_trail(
        self,
        project_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int = 100,
    ) -> list[AuditEntry]:
        """Read a time range page by page and return it in order."""
        entries: list[AuditEntry] = []
        offset = 0
        while True:
            page = await self._store.audit_page(
                project_id, start=start, end=end, limit=page_size, offset=offset
            )
            entries.extend(page)
            if len(page) < page_size:
                return entries
            offset += page_size

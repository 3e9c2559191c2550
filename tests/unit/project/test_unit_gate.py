# tests/unit/project/test_unit_gate.py — v2
"""Tests for project/gate.py — persisted transitions and the audit trail."""

from __future__ import annotations

import pytest

from stagegate.core.errors import NotFoundError, TransitionError
from stagegate.project.models import AuditAction, ProjectStatus


class TestProjectGate:
    @pytest.mark.asyncio
    async def test_create_project(self, gate):
        project = await gate.create_project("p1", actor="alice")
        assert project.status is ProjectStatus.DRAFT
        trail = await gate.audit_trail("p1")
        assert len(trail) == 1
        assert trail[0].action is AuditAction.PROJECT_CREATED
        assert trail[0].actor == "alice"

    @pytest.mark.asyncio
    async def test_generated_id(self, gate):
        project = await gate.create_project()
        assert (await gate.get(project.id)).id == project.id

    @pytest.mark.asyncio
    async def test_get_missing(self, gate):
        with pytest.raises(NotFoundError):
            await gate.get("nope")

    @pytest.mark.asyncio
    async def test_transition_persists_with_one_entry(self, gate):
        await gate.create_project("p1")
        await gate.transition("p1", ProjectStatus.INTAKE_COMPLETE, "alice")

        assert (await gate.get("p1")).status is ProjectStatus.INTAKE_COMPLETE
        trail = await gate.audit_trail("p1")
        assert len(trail) == 2
        assert trail[1].previous_state["status"] == "draft"
        assert trail[1].new_state["status"] == "intake_complete"

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_no_trace(self, gate):
        await gate.create_project("p1")
        with pytest.raises(TransitionError):
            await gate.transition("p1", ProjectStatus.RESEARCH_COMPLETE, "alice")
        assert (await gate.get("p1")).status is ProjectStatus.DRAFT
        assert len(await gate.audit_trail("p1")) == 1

    @pytest.mark.asyncio
    async def test_approval_gate(self, gate):
        await gate.create_project("p1")
        await gate.complete_stage("p1", "intake", output={"question": "Q"})
        with pytest.raises(TransitionError):
            await gate.transition("p1", ProjectStatus.INTAKE_APPROVED, "alice")

        await gate.approve("p1", "intake", "reviewer")
        project = await gate.transition("p1", ProjectStatus.INTAKE_APPROVED, "alice")
        assert project.checkpoints.intake_approved is True
        assert project.stage_outputs == {"intake": {"question": "Q"}}

    @pytest.mark.asyncio
    async def test_reject_and_resubmit(self, gate):
        await gate.create_project("p1")
        await gate.complete_stage("p1", "intake")
        await gate.approve("p1", "intake", "reviewer")
        rejected = await gate.reject("p1", "intake", "reviewer", "Scope too broad")
        assert rejected.status is ProjectStatus.REVISION_REQUIRED
        assert rejected.checkpoints.intake_approved is False

        resubmitted = await gate.transition("p1", ProjectStatus.INTAKE_COMPLETE, "alice")
        assert resubmitted.status is ProjectStatus.INTAKE_COMPLETE

        actions = [e.action for e in await gate.audit_trail("p1")]
        assert actions == [
            AuditAction.PROJECT_CREATED,
            AuditAction.STATUS_CHANGED,
            AuditAction.CHECKPOINT_APPROVED,
            AuditAction.CHECKPOINT_REJECTED,
            AuditAction.STATUS_CHANGED,
        ]

    @pytest.mark.asyncio
    async def test_returns_committed_project(self, gate):
        created = await gate.create_project("p1")
        assert created.version == 0
        completed = await gate.complete_stage("p1", "intake")
        approved = await gate.approve("p1", "intake", "reviewer")
        assert (completed.version, approved.version) == (1, 2)
        assert await gate.get("p1") == approved

    @pytest.mark.asyncio
    async def test_record_event(self, gate):
        await gate.create_project("p1")
        entry = await gate.record_event(
            "p1", AuditAction.STAGE_STARTED, details={"stage": "fetch_pmids"}
        )
        assert entry.actor == "system"
        assert (await gate.get("p1")).status is ProjectStatus.DRAFT
        assert (await gate.audit_trail("p1"))[-1].id == entry.id

    @pytest.mark.asyncio
    async def test_audit_trail_pages(self, gate, project_store):
        await gate.create_project("p1")
        for i in range(7):
            await gate.record_event("p1", AuditAction.STAGE_STARTED, details={"i": i})

        calls = []
        original = project_store.audit_page

        async def spy(*args, **kwargs):
            calls.append(kwargs["offset"])
            return await original(*args, **kwargs)

        project_store.audit_page = spy
        trail = await gate.audit_trail("p1", page_size=3)
        assert len(trail) == 8
        assert calls == [0, 3, 6]
        assert [e.details.get("i") for e in trail[1:]] == list(range(7))

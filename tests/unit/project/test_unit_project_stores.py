# tests/unit/project/test_unit_project_stores.py — v2
"""Tests for project stores (memory, sqlite) and the store factory."""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from stagegate.core.errors import NotFoundError, TransitionError, ValidationError
from stagegate.project import state_machine as sm
from stagegate.project.memory_store import MemoryProjectStore
from stagegate.project.models import AuditAction, AuditEntry, Project, ProjectStatus
from stagegate.project.sqlite_store import SqliteProjectStore
from stagegate.project.store_factory import create_project_store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        backend = MemoryProjectStore()
    else:
        backend = SqliteProjectStore(tmp_path / "projects.db")
    yield backend
    backend.close()


def _entry(project_id: str, ts, action=AuditAction.STAGE_STARTED) -> AuditEntry:
    return AuditEntry(project_id=project_id, timestamp=ts, action=action, actor="system")


class TestProjectStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store, t0):
        project = Project(id="p1", created_at=t0, updated_at=t0)
        entry = await store.create(project, actor="alice")
        assert entry.action is AuditAction.PROJECT_CREATED
        assert entry.previous_state is None
        loaded = await store.get("p1")
        assert loaded.model_dump() == project.model_dump()

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nope") is None
        with pytest.raises(NotFoundError):
            await store.require("nope")

    @pytest.mark.asyncio
    async def test_duplicate_create(self, store):
        await store.create(Project(id="p1"))
        with pytest.raises(ValidationError):
            await store.create(Project(id="p1"))

    @pytest.mark.asyncio
    async def test_commit_writes_project_and_entry(self, store):
        project = Project(id="p1")
        await store.create(project)
        updated, entry = sm.transition(project, ProjectStatus.INTAKE_COMPLETE, "alice")
        await store.commit(updated, entry, expected_status=ProjectStatus.DRAFT)

        assert (await store.get("p1")).status is ProjectStatus.INTAKE_COMPLETE
        trail = await store.audit_page("p1")
        assert [e.action for e in trail] == [
            AuditAction.PROJECT_CREATED, AuditAction.STATUS_CHANGED,
        ]

    @pytest.mark.asyncio
    async def test_commit_rejects_stale_status(self, store):
        project = Project(id="p1")
        await store.create(project)
        first, entry_a = sm.transition(project, ProjectStatus.INTAKE_COMPLETE, "alice")
        await store.commit(first, entry_a, expected_status=ProjectStatus.DRAFT)

        # Second writer still believes the project is a draft
        second, entry_b = sm.transition(project, ProjectStatus.INTAKE_COMPLETE, "bob")
        with pytest.raises(TransitionError):
            await store.commit(second, entry_b, expected_status=ProjectStatus.DRAFT)
        assert len(await store.audit_page("p1")) == 2

    @pytest.mark.asyncio
    async def test_commit_bumps_version(self, store):
        project = Project(id="p1")
        await store.create(project)
        updated, entry = sm.transition(project, ProjectStatus.INTAKE_COMPLETE, "alice")
        committed = await store.commit(updated, entry, expected_status=ProjectStatus.DRAFT)
        assert committed.version == 1
        assert (await store.get("p1")) == committed

    @pytest.mark.asyncio
    async def test_commit_rejects_stale_version_with_same_status(self, store):
        project = Project(id="p1", status=ProjectStatus.INTAKE_COMPLETE)
        await store.create(project)
        loaded_a = await store.get("p1")
        loaded_b = await store.get("p1")

        approved, entry_a = sm.approve_checkpoint(loaded_a, "intake", "alice")
        await store.commit(approved, entry_a, expected_status=loaded_a.status)

        # Second writer loaded before the approval and changes another flag
        other, entry_b = sm.approve_checkpoint(loaded_b, "research", "bob")
        with pytest.raises(TransitionError, match="modified concurrently"):
            await store.commit(other, entry_b, expected_status=loaded_b.status)

        stored = await store.get("p1")
        assert stored.checkpoints.intake_approved is True
        assert stored.checkpoints.research_approved is False
        approvals = [
            e.details["checkpoint"]
            for e in await store.audit_page("p1")
            if e.action is AuditAction.CHECKPOINT_APPROVED
        ]
        assert approvals == ["intake"]

    @pytest.mark.asyncio
    async def test_commit_unknown_project(self, store):
        project = Project(id="ghost")
        updated, entry = sm.transition(project, ProjectStatus.INTAKE_COMPLETE, "alice")
        with pytest.raises(NotFoundError):
            await store.commit(updated, entry, expected_status=ProjectStatus.DRAFT)

    @pytest.mark.asyncio
    async def test_append_unknown_project(self, store, t0):
        with pytest.raises(NotFoundError):
            await store.append_audit(_entry("ghost", t0))

    @pytest.mark.asyncio
    async def test_audit_page_time_range(self, store, t0):
        await store.create(Project(id="p1", created_at=t0, updated_at=t0))
        for minutes in (10, 20, 30, 40):
            await store.append_audit(_entry("p1", t0 + timedelta(minutes=minutes)))

        page = await store.audit_page(
            "p1", start=t0 + timedelta(minutes=20), end=t0 + timedelta(minutes=40)
        )
        assert [e.timestamp for e in page] == [
            t0 + timedelta(minutes=20), t0 + timedelta(minutes=30),
        ]

    @pytest.mark.asyncio
    async def test_audit_page_ordered_by_timestamp(self, store, t0):
        await store.create(Project(id="p1", created_at=t0, updated_at=t0))
        await store.append_audit(_entry("p1", t0 + timedelta(minutes=5)))
        await store.append_audit(_entry("p1", t0 + timedelta(minutes=1)))
        page = await store.audit_page("p1")
        assert [e.timestamp for e in page] == [
            t0, t0 + timedelta(minutes=1), t0 + timedelta(minutes=5),
        ]

    @pytest.mark.asyncio
    async def test_audit_page_limit_offset(self, store, t0):
        await store.create(Project(id="p1", created_at=t0, updated_at=t0))
        for minutes in range(1, 6):
            await store.append_audit(_entry("p1", t0 + timedelta(minutes=minutes)))
        page = await store.audit_page("p1", limit=2, offset=2)
        assert [e.timestamp for e in page] == [
            t0 + timedelta(minutes=2), t0 + timedelta(minutes=3),
        ]

    @pytest.mark.asyncio
    async def test_trails_are_per_project(self, store):
        await store.create(Project(id="p1"))
        await store.create(Project(id="p2"))
        assert len(await store.audit_page("p1")) == 1
        assert await store.audit_page("missing") == []


class TestSqliteProjectStore:
    @pytest.mark.asyncio
    async def test_two_stores_on_one_file_do_not_lose_approvals(self, tmp_path):
        first = SqliteProjectStore(tmp_path / "shared.db")
        second = SqliteProjectStore(tmp_path / "shared.db")
        try:
            await first.create(Project(id="p1", status=ProjectStatus.INTAKE_COMPLETE))
            seen_first = await first.require("p1")
            seen_second = await second.require("p1")

            updated, entry = sm.approve_checkpoint(seen_first, "intake", "alice")
            await first.commit(updated, entry, expected_status=seen_first.status)
            updated, entry = sm.approve_checkpoint(seen_second, "research", "bob")
            with pytest.raises(TransitionError):
                await second.commit(updated, entry, expected_status=seen_second.status)

            stored = await second.require("p1")
            assert stored.checkpoints.intake_approved is True
            assert stored.checkpoints.research_approved is False
            assert stored.version == 1
            assert len(await second.audit_page("p1")) == 2
        finally:
            first.close()
            second.close()

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, tmp_path):
        db = tmp_path / "projects.db"
        first = SqliteProjectStore(db)
        await first.create(Project(id="p1"))
        first.close()

        second = SqliteProjectStore(db)
        assert (await second.get("p1")).id == "p1"
        assert len(await second.audit_page("p1")) == 1
        second.close()

    @pytest.mark.asyncio
    async def test_audit_log_is_append_only(self, tmp_path):
        store = SqliteProjectStore(tmp_path / "projects.db")
        await store.create(Project(id="p1"))
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            store._conn.execute("DELETE FROM audit_log")
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            store._conn.execute("UPDATE audit_log SET actor = 'mallory'")
        store.close()


class TestCreateProjectStore:
    def test_default_is_memory(self):
        assert isinstance(create_project_store(), MemoryProjectStore)

    def test_sqlite_from_settings(self, settings):
        store = create_project_store(settings)
        assert isinstance(store, SqliteProjectStore)
        store.close()
        assert settings.project_db_path.exists()

    def test_memory_from_settings(self, settings):
        settings = settings.model_copy(update={"project_backend": "memory"})
        assert isinstance(create_project_store(settings), MemoryProjectStore)

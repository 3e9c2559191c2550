# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides a fake clock for pacing tests, checkpoint/project builders and
in-process stores. No external services; Redis is mocked where used.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from stagegate.checkpoint.manager import create_checkpoint
from stagegate.checkpoint.models import Checkpoint
from stagegate.client.rate_limited_client import RateLimitedClient
from stagegate.config.settings import Settings
from stagegate.project.gate import ProjectGate
from stagegate.project.memory_store import MemoryProjectStore

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0, wall_start: float = 1_800_000_000.0) -> None:
        self.now = start
        self.wall_offset = wall_start - start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def wall(self) -> float:
        return self.now + self.wall_offset

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# === FIXTURES: Time ===


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# === FIXTURES: Configuration ===


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        checkpoint_root=tmp_path / "checkpoints",
        project_db_path=tmp_path / "projects.db",
    )


# === FIXTURES: Checkpoints ===


@pytest.fixture
def make_checkpoint():
    """Factory for fresh checkpoints at T0."""

    def _make(stage: str = "fetch_metadata", /, **context: Any) -> Checkpoint:
        ctx = {"pipeline_name": "screening", "project_id": "proj-1", **context}
        return create_checkpoint(stage, ctx, now=T0)

    return _make


@pytest.fixture
def checkpoint(make_checkpoint) -> Checkpoint:
    return make_checkpoint()


# === FIXTURES: Projects ===


@pytest.fixture
def project_store() -> MemoryProjectStore:
    return MemoryProjectStore()


@pytest.fixture
def gate(project_store) -> ProjectGate:
    return ProjectGate(project_store)


# === FIXTURES: Client ===


@pytest.fixture
def fast_client(fake_clock) -> RateLimitedClient:
    """Client with no backoff delay, driven by the fake clock."""
    return RateLimitedClient(
        requests_per_second=100.0,
        max_retries=3,
        base_delay_s=0.0,
        max_delay_s=0.0,
        jitter=0.0,
        clock=fake_clock.monotonic,
        wall_clock=fake_clock.wall,
        sleep=fake_clock.sleep,
    )



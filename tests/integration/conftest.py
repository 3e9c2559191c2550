# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

Wires the real file and SQLite stores together with a fake-clock client so
whole stage executions run in-process without sleeping.

Changelog:
    v8: Replace container fixtures with on-disk checkpoint/project stores.
"""

from __future__ import annotations

from collections.abc import Iterable

import pytest

from stagegate.checkpoint.json_store import JsonCheckpointStore
from stagegate.pipeline.runner import StageRunner
from stagegate.project.gate import ProjectGate
from stagegate.project.sqlite_store import SqliteProjectStore


def pytest_collection_modifyitems(items: Iterable[pytest.Item]) -> None:
    for item in items:
        if "tests/integration" in str(item.fspath).replace("\\", "/"):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def checkpoint_store(tmp_path) -> JsonCheckpointStore:
    return JsonCheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def sqlite_gate(tmp_path):
    store = SqliteProjectStore(tmp_path / "projects.db")
    yield ProjectGate(store)
    store.close()


@pytest.fixture
def make_runner(checkpoint_store, sqlite_gate, fast_client):
    """Factory for runners sharing one set of stores and one client."""

    def _make(**kwargs) -> StageRunner:
        kwargs.setdefault("batch_size", 20)
        return StageRunner(checkpoint_store, sqlite_gate, fast_client, **kwargs)

    return _make

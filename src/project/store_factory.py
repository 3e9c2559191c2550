# src/project/store_factory.py — v1
"""Factory for project store instantiation."""

from __future__ import annotations

from stagegate.config.settings import Settings
from stagegate.project.base_project_store import BaseProjectStore


def create_project_store(settings: Settings | None = None) -> BaseProjectStore:
    """Instantiate the configured project backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
    """
    backend = "memory" if settings is None else settings.project_backend

    if backend == "memory":
        from stagegate.project.memory_store import MemoryProjectStore
        return MemoryProjectStore()

    if backend == "sqlite":
        from stagegate.project.sqlite_store import SqliteProjectStore
        return SqliteProjectStore(db_path=str(settings.project_db_path))

    raise ValueError(f"Unsupported project backend: {backend!r}")

# src/checkpoint/store_factory.py — v1
"""Factory for checkpoint store instantiation."""

from __future__ import annotations

from stagegate.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stagegate.config.settings import Settings


def create_checkpoint_store(settings: Settings | None = None) -> BaseCheckpointStore:
    """Instantiate the configured checkpoint backend.

    Args:
        settings: Application settings. Defaults to the JSON backend.

    Returns:
        Configured BaseCheckpointStore implementation.
    """
    backend = "json" if settings is None else settings.checkpoint_backend
    root = "~/.stagegate/checkpoints" if settings is None else str(settings.checkpoint_root)

    if backend == "json":
        from stagegate.checkpoint.json_store import JsonCheckpointStore
        return JsonCheckpointStore(root=root)

    if backend == "sqlite":
        from stagegate.checkpoint.sqlite_store import SqliteCheckpointStore
        return SqliteCheckpointStore(db_path=f"{root}/checkpoints.db")

    if backend == "redis":
        from stagegate.checkpoint.redis_store import RedisCheckpointStore
        if settings is None or not settings.checkpoint_redis_url:
            raise ValueError(
                "CHECKPOINT_REDIS_URL must be set when CHECKPOINT_BACKEND=redis"
            )
        return RedisCheckpointStore(redis_url=settings.checkpoint_redis_url)

    raise ValueError(f"Unsupported checkpoint backend: {backend!r}")

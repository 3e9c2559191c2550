# src/checkpoint/redis_store.py — v1
"""Redis checkpoint store (CHECKPOINT_BACKEND=redis).

Requires 'redis' package: pip install stagegate[redis].
Suitable when several workers share one checkpoint namespace.
"""

from __future__ import annotations

import logging
from typing import Any

from stagegate.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stagegate.checkpoint.manager import deserialize_checkpoint, serialize_checkpoint
from stagegate.checkpoint.models import Checkpoint
from stagegate.core.errors import ValidationError

logger = logging.getLogger(__name__)

_KEY_PREFIX = "stagegate:checkpoint:"
_INDEX_KEY = "stagegate:checkpoint:__index__"


class RedisCheckpointStore(BaseCheckpointStore):
    """Redis-backed checkpoint store."""

    def __init__(self, redis_url: str, client: Any | None = None) -> None:
        if client is None:
            try:
                import redis
            except ImportError as e:
                raise ImportError(
                    "redis package required: pip install stagegate[redis]"
                ) from e
            client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._client = client

    async def _write(self, checkpoint: Checkpoint) -> None:
        # Value and index entry land together or not at all
        pipe = self._client.pipeline(transaction=True)
        pipe.set(f"{_KEY_PREFIX}{checkpoint.execution_id}", serialize_checkpoint(checkpoint))
        pipe.sadd(_INDEX_KEY, checkpoint.execution_id)
        pipe.execute()

    async def get(self, execution_id: str) -> Checkpoint | None:
        """Retrieve a checkpoint by execution id."""
        data = self._client.get(f"{_KEY_PREFIX}{execution_id}")
        if data is None:
            return None
        try:
            return deserialize_checkpoint(data)
        except ValidationError as e:
            logger.warning("Failed to deserialize checkpoint %s: %s", execution_id, e)
            return None

    async def delete(self, execution_id: str) -> None:
        """Remove a checkpoint."""
        self._client.delete(f"{_KEY_PREFIX}{execution_id}")
        self._client.srem(_INDEX_KEY, execution_id)

    async def list_checkpoints(
        self, pipeline_name: str | None = None
    ) -> list[Checkpoint]:
        """List stored checkpoints."""
        checkpoints: list[Checkpoint] = []
        for execution_id in sorted(self._client.smembers(_INDEX_KEY)):
            cp = await self.get(execution_id)
            if cp is None:
                continue
            if pipeline_name is None or cp.pipeline_name == pipeline_name:
                checkpoints.append(cp)
        return checkpoints

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()

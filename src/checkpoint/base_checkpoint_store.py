# src/checkpoint/base_checkpoint_store.py — v2
"""Abstract checkpoint store interface.

Every backend validates a checkpoint before it is written, so an invalid
checkpoint never reaches durable storage.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from stagegate.checkpoint.manager import validate_checkpoint
from stagegate.checkpoint.models import Checkpoint
from stagegate.core.errors import ValidationError


class BaseCheckpointStore(ABC):
    """Unified interface for checkpoint storage backends."""

    async def put(self, checkpoint: Checkpoint) -> None:
        """Validate then store a checkpoint (upsert by execution_id).

        Raises:
            ValidationError: If the checkpoint is structurally invalid.
        """
        result = validate_checkpoint(checkpoint)
        if not result.valid:
            raise ValidationError(
                f"Refusing to persist invalid checkpoint: {', '.join(result.errors)}",
                errors=result.errors,
            )
        await self._write(checkpoint)

    @abstractmethod
    async def _write(self, checkpoint: Checkpoint) -> None:
        """Persist an already-validated checkpoint."""

    @abstractmethod
    async def get(self, execution_id: str) -> Checkpoint | None:
        """Retrieve a checkpoint by execution id."""

    @abstractmethod
    async def delete(self, execution_id: str) -> None:
        """Remove a checkpoint."""

    @abstractmethod
    async def list_checkpoints(
        self, pipeline_name: str | None = None
    ) -> list[Checkpoint]:
        """List stored checkpoints, optionally for one pipeline."""

    async def latest(
        self,
        pipeline_name: str,
        project_id: str | None = None,
        stage: str | None = None,
    ) -> Checkpoint | None:
        """Most recently updated checkpoint of a pipeline (and project).

        ``stage`` matches the stage an execution was started for, so a
        completed execution is still found by its original stage.
        """
        candidates = [
            cp
            for cp in await self.list_checkpoints(pipeline_name)
            if (project_id is None or cp.context.project_id == project_id)
            and (stage is None or cp.execution_stage == stage)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda cp: cp.updated_at)

    def close(self) -> None:
        """Release backend resources. No-op by default."""

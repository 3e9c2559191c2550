# src/checkpoint/json_store.py — v2
"""JSON file checkpoint store (default CHECKPOINT_BACKEND=json).

One file per execution under CHECKPOINT_ROOT. Writes go to a temporary file
that is then renamed over the target, so a crash mid-write leaves the
previous checkpoint intact.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from stagegate.checkpoint.base_checkpoint_store import BaseCheckpointStore
from stagegate.checkpoint.manager import deserialize_checkpoint, serialize_checkpoint
from stagegate.checkpoint.models import Checkpoint
from stagegate.core.errors import ValidationError

logger = logging.getLogger(__name__)


class JsonCheckpointStore(BaseCheckpointStore):
    """File-based checkpoint store using JSON files."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def _write(self, checkpoint: Checkpoint) -> None:
        path = self._entry_path(checkpoint.execution_id)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self._root), prefix=".tmp-", suffix=".json"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(serialize_checkpoint(checkpoint))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def get(self, execution_id: str) -> Checkpoint | None:
        """Retrieve a checkpoint; unreadable files are logged and skipped."""
        path = self._entry_path(execution_id)
        if not path.exists():
            return None
        try:
            return deserialize_checkpoint(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.warning("Failed to read checkpoint %s: %s", execution_id, e)
            return None

    async def delete(self, execution_id: str) -> None:
        """Remove a checkpoint file."""
        self._entry_path(execution_id).unlink(missing_ok=True)

    async def list_checkpoints(
        self, pipeline_name: str | None = None
    ) -> list[Checkpoint]:
        """List stored checkpoints."""
        checkpoints: list[Checkpoint] = []
        for path in sorted(self._root.glob("*.json")):
            if path.name.startswith(".tmp-"):
                continue
            try:
                cp = deserialize_checkpoint(path.read_text(encoding="utf-8"))
            except ValidationError as e:
                logger.warning("Skipping unreadable checkpoint %s: %s", path.name, e)
                continue
            if pipeline_name is None or cp.pipeline_name == pipeline_name:
                checkpoints.append(cp)
        return checkpoints

    def _entry_path(self, execution_id: str) -> Path:
        """Return file path for an execution id.

        Raises:
            ValidationError: The id contains a path separator or is a dot name.
        """
        if "/" in execution_id or "\\" in execution_id or execution_id in (".", ".."):
            raise ValidationError(
                f"Execution id {execution_id!r} cannot be used as a file name"
            )
        return self._root / f"{execution_id}.json"

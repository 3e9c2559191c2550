# src/pipeline/runner.py — v3
"""Stage runner: checkpointed, paced, routed execution of one stage.

For one stage execution the runner:
  - loads the latest checkpoint of this stage and resumes from it when
    can_resume() allows, otherwise starts a fresh execution
  - when that checkpoint already completed, processes nothing and only
    replays the finishing step for a project that never moved
  - sends every item through the RateLimitedClient
  - routes each result through the decision router (optional)
  - checkpoints after every batch, so a crash replays at most one batch
  - on any error marks the checkpoint failed, audits a system_error and
    re-raises; the project status is left where it was
  - on success completes the checkpoint and moves the project to the
    stage's *_complete status, unless the project is already there or past it

Cancellation is advisory: the cancel event is checked between batches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from stagegate.checkpoint.manager import (
    can_resume,
    create_checkpoint,
    get_resume_context,
    update_checkpoint,
)
from stagegate.checkpoint.models import Checkpoint, CheckpointStatus, Stage
from stagegate.core.errors import StaleCheckpointError, ValidationError, format_error
from stagegate.core.models import SYSTEM_ACTOR
from stagegate.logging.context import (
    clear_context,
    set_actor_context,
    set_execution_context,
)
from stagegate.project.models import AuditAction
from stagegate.project.state_machine import complete_status_for, has_reached
from stagegate.routing.models import Lane, RoutingDecision
from stagegate.routing.router import DEFAULT_THRESHOLD, route_judgment

if TYPE_CHECKING:
    from stagegate.checkpoint.base_checkpoint_store import BaseCheckpointStore
    from stagegate.client.rate_limited_client import RateLimitedClient
    from stagegate.config.settings import Settings
    from stagegate.project.gate import ProjectGate

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

ProcessItem = Callable[[Any], Awaitable[Any]]
ItemKey = Callable[[Any, int], Any]


@dataclass
class StageResult:
    """Outcome of one StageRunner.run() call."""

    checkpoint: Checkpoint
    start_index: int = 0
    resumed: bool = False
    replayed: bool = False
    cancelled: bool = False
    results: list[Any] = field(default_factory=list)
    decisions: list[RoutingDecision] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def completed(self) -> bool:
        return self.checkpoint.status is CheckpointStatus.COMPLETED

    def lane_counts(self) -> dict[str, int]:
        counts = Counter(d.lane.value for d in self.decisions)
        return {lane.value: counts.get(lane.value, 0) for lane in Lane}


class StageRunner:
    """Run one stage of a project with checkpoint/resume.

    Args:
        checkpoint_store: Where checkpoints are persisted after every batch.
        gate: Project gate for audit events and the final status change.
        client: Paced retrying client every item call goes through.
        batch_size: Items per checkpointed batch (fresh executions only).
        threshold: Routing threshold for auto-accept/auto-reject.
        max_retries: can_resume() error_count limit.
        max_age_hours: can_resume() age limit.
        restart_stale: Start over when the latest checkpoint cannot be
            resumed; when False, raise StaleCheckpointError instead.
    """

    def __init__(
        self,
        checkpoint_store: BaseCheckpointStore,
        gate: ProjectGate,
        client: RateLimitedClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        threshold: float = DEFAULT_THRESHOLD,
        max_retries: int = 3,
        max_age_hours: float = 24.0,
        restart_stale: bool = True,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        if batch_size < 1:
            raise ValidationError("batch_size must be >= 1")
        self._store = checkpoint_store
        self._gate = gate
        self._client = client
        self._batch_size = batch_size
        self._threshold = threshold
        self._max_retries = max_retries
        self._max_age_hours = max_age_hours
        self._restart_stale = restart_stale
        self._actor = actor

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        checkpoint_store: BaseCheckpointStore,
        gate: ProjectGate,
        client: RateLimitedClient,
        **kwargs: Any,
    ) -> StageRunner:
        return cls(
            checkpoint_store,
            gate,
            client,
            batch_size=settings.stage_batch_size,
            threshold=settings.routing_threshold,
            max_retries=settings.checkpoint_max_retries,
            max_age_hours=settings.checkpoint_max_age_hours,
            **kwargs,
        )

    async def run(
        self,
        *,
        project_id: str,
        pipeline_name: str,
        stage: Stage | str,
        items: Sequence[Any],
        process: ProcessItem,
        project_stage: str | None = None,
        route_results: bool = False,
        item_key: ItemKey | None = None,
        cancel: asyncio.Event | None = None,
        restart: bool = False,
    ) -> StageResult:
        """Execute (or resume) the stage over ``items``.

        Args:
            project_id: Owning project.
            pipeline_name: Pipeline name used to find earlier checkpoints.
            stage: Checkpoint stage of this execution.
            items: Work units; their order must be stable across runs.
            process: Async callable applied to each item via the client.
            project_stage: Approvable stage ("intake", "research", ...) whose
                *_complete status the project moves to on success.
            route_results: Route each result as a screening judgment.
            item_key: (item, index) -> value stored as last_processed.
            cancel: Checked between batches; when set the run stops early.
            restart: Ignore earlier checkpoints of this stage and start over.

        Raises:
            TerminalCallError: An item call failed for good.
            PipelineError: Library errors from ``process`` or the stores, after
                the checkpoint has been marked failed.
            StaleCheckpointError: Latest checkpoint is not resumable and
                restart_stale is False.
        """
        start_ns = time.monotonic_ns()
        cp, resumed = await self._load_or_create(
            project_id, pipeline_name, stage, items, restart
        )
        ctx = get_resume_context(cp)
        start_index = ctx.start_index
        batch_size = ctx.context.batch_size or self._batch_size
        result = StageResult(checkpoint=cp, start_index=start_index, resumed=resumed)

        set_execution_context(cp.execution_id, cp.execution_stage, project_id)
        set_actor_context(self._actor)
        try:
            if cp.is_terminal:
                logger.info(
                    "Checkpoint %s already completed; nothing to process", cp.execution_id
                )
                result.replayed = True
                await self._finish(project_id, cp, project_stage, result, replay=True)
            elif await self._process(
                cp, project_id, items, start_index, batch_size, process, result,
                route_results, item_key, cancel,
            ):
                await self._finish(project_id, result.checkpoint, project_stage, result)
        finally:
            clear_context()

        result.duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        return result

    async def _process(
        self,
        cp: Checkpoint,
        project_id: str,
        items: Sequence[Any],
        start_index: int,
        batch_size: int,
        process: ProcessItem,
        result: StageResult,
        route_results: bool,
        item_key: ItemKey | None,
        cancel: asyncio.Event | None,
    ) -> bool:
        """Batch loop; returns True once the checkpoint is completed."""
        try:
            if result.resumed:
                logger.info(
                    "Resuming %s at item %d/%d", cp.pipeline_name, start_index, len(items)
                )
            else:
                await self._gate.record_event(
                    project_id,
                    AuditAction.STAGE_STARTED,
                    self._actor,
                    {"execution_id": cp.execution_id, "stage": cp.execution_stage,
                     "total": len(items)},
                )

            for batch_start in range(start_index, len(items), batch_size):
                if cancel is not None and cancel.is_set():
                    logger.warning(
                        "Cancelled before item %d; checkpoint kept for resume",
                        batch_start,
                    )
                    result.cancelled = True
                    return False
                batch = items[batch_start: batch_start + batch_size]
                result.checkpoint = await self._run_batch(
                    result.checkpoint, batch, batch_start, process, result,
                    route_results, item_key,
                )

            done = update_checkpoint(
                result.checkpoint,
                {"stage": Stage.COMPLETED, "status": CheckpointStatus.COMPLETED},
            )
            await self._store.put(done)
        except Exception as exc:
            await self._fail(
                result.checkpoint, project_id, exc, start_index + len(result.results)
            )
            raise
        result.checkpoint = done
        return True

    async def _load_or_create(
        self,
        project_id: str,
        pipeline_name: str,
        stage: Stage | str,
        items: Sequence[Any],
        restart: bool = False,
    ) -> tuple[Checkpoint, bool]:
        stage_value = stage.value if isinstance(stage, Stage) else stage
        latest = None
        if not restart:
            latest = await self._store.latest(
                pipeline_name, project_id, stage=stage_value
            )
        if latest is not None and latest.is_terminal:
            return latest, False

        if latest is not None:
            check = can_resume(
                latest, max_retries=self._max_retries, max_age_hours=self._max_age_hours
            )
            if check.can_resume:
                if latest.status is CheckpointStatus.FAILED:
                    latest = update_checkpoint(
                        latest, {"status": CheckpointStatus.IN_PROGRESS}
                    )
                    await self._store.put(latest)
                return latest, True
            if not self._restart_stale:
                raise StaleCheckpointError(latest.execution_id, check.reasons)
            logger.warning(
                "Restarting %s: checkpoint %s not resumable (%s)",
                pipeline_name, latest.execution_id, "; ".join(check.reasons),
            )

        cp = create_checkpoint(
            stage_value,
            {
                "pipeline_name": pipeline_name,
                "project_id": project_id,
                "batch_size": self._batch_size,
                "stage": stage_value,
            },
        )
        cp = update_checkpoint(cp, {"progress": {"total": len(items)}})
        await self._store.put(cp)
        return cp, False

    async def _run_batch(
        self,
        cp: Checkpoint,
        batch: Sequence[Any],
        batch_start: int,
        process: ProcessItem,
        result: StageResult,
        route_results: bool,
        item_key: ItemKey | None,
    ) -> Checkpoint:
        for item in batch:
            output = await self._client.call(process, item)
            result.results.append(output)
            if route_results:
                result.decisions.append(self._route(output))

        last_index = batch_start + len(batch) - 1
        last = item_key(batch[-1], last_index) if item_key is not None else last_index
        cp = update_checkpoint(
            cp,
            {"progress": {"processed": batch_start + len(batch)}, "last_processed": last},
        )
        await self._store.put(cp)
        logger.debug("Checkpointed %d/%d", cp.progress.processed, cp.progress.total)
        return cp

    def _route(self, output: Any) -> RoutingDecision:
        try:
            return route_judgment(output, self._threshold)
        except ValidationError as exc:
            # Malformed judgments go to a human, never silently dropped
            logger.info("Routing unparseable judgment to human review: %s", exc)
            return RoutingDecision(
                label="invalid",
                confidence=0.0,
                lane=Lane.HUMAN_REVIEW,
                threshold=self._threshold,
                reason=f"unparseable judgment: {exc}",
            )

    async def _fail(
        self, cp: Checkpoint, project_id: str, exc: Exception, item_index: int
    ) -> None:
        failed = update_checkpoint(
            cp, {"status": CheckpointStatus.FAILED, "context": {"last_error": str(exc)}}
        )
        await self._store.put(failed)
        await self._gate.record_event(
            project_id,
            AuditAction.SYSTEM_ERROR,
            self._actor,
            {
                "execution_id": cp.execution_id,
                "item_index": item_index,
                "error_count": failed.error_count,
                "error": format_error(exc),
            },
        )
        logger.error(
            "Stage %s failed at item %d (errors=%d): %s",
            cp.execution_stage, item_index, failed.error_count, exc,
        )

    async def _finish(
        self,
        project_id: str,
        cp: Checkpoint,
        project_stage: str | None,
        result: StageResult,
        replay: bool = False,
    ) -> None:
        """Audit completion and move the project; safe to repeat."""
        summary: dict[str, Any] = {
            "execution_id": cp.execution_id,
            "processed": cp.progress.processed,
        }
        if result.decisions:
            summary["lanes"] = result.lane_counts()

        move = False
        if project_stage is not None:
            project = await self._gate.get(project_id)
            target = complete_status_for(project_stage)
            move = not has_reached(project.status, target)
            if not move:
                logger.info(
                    "Project %s already at %s; status left unchanged",
                    project_id, project.status.value,
                )
        if replay and not move:
            return

        await self._gate.record_event(
            project_id, AuditAction.STAGE_COMPLETED, self._actor, summary
        )
        if move:
            await self._gate.complete_stage(
                project_id, project_stage, self._actor, output=summary
            )
        logger.info("Stage complete: %d items", cp.progress.processed)

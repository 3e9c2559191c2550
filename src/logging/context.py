# src/logging/context.py — v2
"""Which project, execution, stage and actor the current log line belongs to.

The state is one frozen LogContext held in a single context variable, so
concurrent stage runs on one event loop (each in its own task) never see
each other's values. Setters replace the snapshot instead of mutating it.
"""

from __future__ import annotations

import contextvars
from dataclasses import asdict, dataclass, replace
from typing import Any


@dataclass(frozen=True)
class LogContext:
    project_id: str | None = None
    execution_id: str | None = None
    stage: str | None = None
    actor: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Set fields only, for the JSON ``context`` key."""
        return {k: v for k, v in asdict(self).items() if v is not None}


_EMPTY = LogContext()
_current: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "stagegate_log_context", default=_EMPTY
)


def get_context() -> LogContext:
    return _current.get()


def set_execution_context(
    execution_id: str, stage: str, project_id: str | None = None
) -> None:
    """Bind a stage execution; the project stays bound when omitted."""
    ctx = replace(_current.get(), execution_id=execution_id, stage=stage)
    if project_id is not None:
        ctx = replace(ctx, project_id=project_id)
    _current.set(ctx)


def set_actor_context(actor: str) -> None:
    _current.set(replace(_current.get(), actor=actor))


def clear_context() -> None:
    _current.set(_EMPTY)

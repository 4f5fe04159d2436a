from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from supersearch.models.query import Query
from supersearch.models.results import ResultSet
from supersearch.models.schema import ResolvedSchema


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class RunPhase(str, Enum):
    PENDING = "pending"
    RESOLVING_SCHEMA = "resolving_schema"
    DISCOVERING = "discovering"
    RESEARCHING = "researching"
    AGGREGATING = "aggregating"
    SAVING = "saving"
    COMPLETED = "completed"


class RunProgress(BaseModel):
    """Current phase counters plus run-wide totals.

    `completed` and `total` describe the current phase only. `run_completed`
    and `run_total` accumulate across phases and never decrease for a run.
    """

    phase: str = RunPhase.PENDING.value
    completed: int = 0
    total: int = 0
    message: str = ""
    run_completed: int = 0
    run_total: int = 0


class PipelineRun(BaseModel):
    id: str
    query: Query
    fingerprint: str
    user_id: str | None = None
    status: RunStatus = RunStatus.PENDING
    resolved_schema: ResolvedSchema | None = None
    progress: RunProgress = Field(default_factory=RunProgress)
    result: ResultSet | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

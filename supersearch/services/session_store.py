from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import uuid4

from supersearch.config import settings
from supersearch.errors import RunNotFoundError
from supersearch.models.query import Query
from supersearch.models.results import ResultSet
from supersearch.models.run import PipelineRun, RunPhase, RunProgress, RunStatus
from supersearch.models.schema import ResolvedSchema

PHASE_ORDER = [phase.value for phase in RunPhase]


class SessionStore(Protocol):
    async def begin_run(self, query: Query, user_id: str | None = None, *, run_id: str | None = None) -> str: ...
    async def set_schema(self, run_id: str, schema: ResolvedSchema) -> None: ...
    async def advance(self, run_id: str, phase: str, completed: int, total: int, message: str = "") -> RunProgress: ...
    async def complete(self, run_id: str, result_set: ResultSet) -> None: ...
    async def fail(self, run_id: str, error: str) -> None: ...
    async def cancel(self, run_id: str) -> None: ...
    async def get_run(self, run_id: str) -> PipelineRun: ...
    async def load(self, fingerprint: str) -> ResultSet | None: ...
    async def is_fresh(self, result_set: ResultSet, max_age: timedelta | None = None) -> bool: ...
    async def clear(self, fingerprint: str) -> bool: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def is_fresh(result_set: ResultSet, max_age: timedelta | None = None) -> bool:
    """Whether a cached result is young enough to serve without re-running."""
    if max_age is None:
        max_age = timedelta(hours=settings.result_cache_max_age_hours)
    completed_at = result_set.completed_at
    if completed_at.tzinfo is None:
        completed_at = completed_at.replace(tzinfo=timezone.utc)
    return _now() - completed_at <= max_age


def advanced_progress(
    current: RunProgress,
    phase: str,
    completed: int,
    total: int,
    message: str = "",
) -> RunProgress:
    """Merge a progress update without ever moving backwards.

    Phases only move forward. Within a phase, `completed` and `total` never
    decrease; a later phase starts its own counters from the values it is
    given. The run-wide `run_completed` / `run_total` add up every phase's
    gains, so they never decrease across the whole run.
    """
    phase = RunPhase(phase).value
    current_rank = PHASE_ORDER.index(current.phase) if current.phase in PHASE_ORDER else 0
    new_rank = PHASE_ORDER.index(phase)

    if new_rank < current_rank:
        return current
    if new_rank == current_rank:
        merged_completed = max(current.completed, completed)
        merged_total = max(current.total, total)
        return RunProgress(
            phase=phase,
            completed=merged_completed,
            total=merged_total,
            message=message or current.message,
            run_completed=current.run_completed + merged_completed - current.completed,
            run_total=current.run_total + merged_total - current.total,
        )
    completed, total = max(completed, 0), max(total, 0)
    return RunProgress(
        phase=phase,
        completed=completed,
        total=total,
        message=message,
        run_completed=current.run_completed + completed,
        run_total=current.run_total + total,
    )


def cached_copy(result_set: ResultSet) -> ResultSet:
    return result_set.model_copy(update={"is_cached": True}, deep=True)


class InMemorySessionStore:
    """Process-local store. Runs and cached results live until restart."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._runs: dict[str, PipelineRun] = {}
        self._results: dict[str, ResultSet] = {}

    async def begin_run(
        self,
        query: Query,
        user_id: str | None = None,
        *,
        run_id: str | None = None,
    ) -> str:
        """Register a run. Re-registering an existing id is a no-op."""
        run = PipelineRun(
            id=run_id or str(uuid4()),
            query=query,
            fingerprint=query.fingerprint,
            user_id=user_id,
            status=RunStatus.RUNNING,
        )
        async with self._lock:
            self._runs.setdefault(run.id, run)
        return run.id

    def _require(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return run

    async def set_schema(self, run_id: str, schema: ResolvedSchema) -> None:
        async with self._lock:
            run = self._require(run_id)
            run.resolved_schema = schema
            run.updated_at = _now()

    async def advance(
        self,
        run_id: str,
        phase: str,
        completed: int,
        total: int,
        message: str = "",
    ) -> RunProgress:
        async with self._lock:
            run = self._require(run_id)
            if run.status.is_terminal:
                return run.progress
            run.progress = advanced_progress(run.progress, phase, completed, total, message)
            run.updated_at = _now()
            return run.progress

    async def complete(self, run_id: str, result_set: ResultSet) -> None:
        async with self._lock:
            run = self._require(run_id)
            run.status = RunStatus.COMPLETED
            run.result = result_set
            run.progress = advanced_progress(
                run.progress,
                RunPhase.COMPLETED.value,
                len(result_set.records),
                len(result_set.records),
                "Search complete",
            )
            run.updated_at = _now()
            # Cache entries are always stored unmarked; `load` marks the copies it hands out.
            self._results[result_set.fingerprint or run.fingerprint] = result_set.model_copy(
                update={"is_cached": False}, deep=True
            )

    async def fail(self, run_id: str, error: str) -> None:
        async with self._lock:
            run = self._require(run_id)
            run.status = RunStatus.FAILED
            run.error = error
            run.updated_at = _now()

    async def cancel(self, run_id: str) -> None:
        async with self._lock:
            run = self._require(run_id)
            if run.status.is_terminal:
                return
            run.status = RunStatus.CANCELLED
            run.updated_at = _now()

    async def get_run(self, run_id: str) -> PipelineRun:
        async with self._lock:
            return self._require(run_id).model_copy(deep=True)

    async def load(self, fingerprint: str) -> ResultSet | None:
        async with self._lock:
            result_set = self._results.get(fingerprint)
        return cached_copy(result_set) if result_set is not None else None

    async def is_fresh(self, result_set: ResultSet, max_age: timedelta | None = None) -> bool:
        return is_fresh(result_set, max_age)

    async def clear(self, fingerprint: str) -> bool:
        async with self._lock:
            return self._results.pop(fingerprint, None) is not None


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        backend = settings.session_backend.lower().strip()
        if backend == "memory":
            _store = InMemorySessionStore()
        elif backend == "postgres":
            from supersearch.services.database import PostgresSessionStore

            _store = PostgresSessionStore()
        else:
            raise ValueError(f"Unsupported SESSION_BACKEND: {settings.session_backend}")
    return _store

"""PostgreSQL session store using asyncpg."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any
from uuid import uuid4

import asyncpg

from supersearch.config import settings
from supersearch.errors import RunNotFoundError
from supersearch.models.query import Query
from supersearch.models.results import ResultSet
from supersearch.models.run import PipelineRun, RunPhase, RunProgress, RunStatus
from supersearch.models.schema import ResolvedSchema
from supersearch.services.session_store import advanced_progress, cached_copy, is_fresh


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS super_search_runs (
    id TEXT PRIMARY KEY,
    fingerprint TEXT NOT NULL,
    user_id TEXT,
    status TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS super_search_runs_fingerprint_idx
    ON super_search_runs (fingerprint);
CREATE TABLE IF NOT EXISTS super_search_results (
    fingerprint TEXT PRIMARY KEY,
    payload JSONB NOT NULL,
    completed_at TIMESTAMPTZ NOT NULL
);
"""


# Connection pool
_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    """Check if database is configured and available."""
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool, creating tables on first use."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=10,
        )
        async with _pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """JSONB comes back as text unless a codec is registered on the pool."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


class PostgresSessionStore:
    """Runs and cached results persisted in two JSONB tables.

    Updates to a run happen inside a transaction holding a row lock, so
    concurrent `advance` calls cannot move progress backwards.
    """

    def __init__(self, pool: Any | None = None):
        self._pool = pool

    async def _acquire_pool(self) -> Any:
        if self._pool is None:
            self._pool = await _get_pool()
        return self._pool

    async def begin_run(
        self,
        query: Query,
        user_id: str | None = None,
        *,
        run_id: str | None = None,
    ) -> str:
        run = PipelineRun(
            id=run_id or str(uuid4()),
            query=query,
            fingerprint=query.fingerprint,
            user_id=user_id,
            status=RunStatus.RUNNING,
        )
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO super_search_runs (id, fingerprint, user_id, status, payload)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (id) DO NOTHING
                """,
                run.id,
                run.fingerprint,
                user_id,
                run.status.value,
                run.model_dump_json(),
            )
        return run.id

    async def _update_run(self, run_id: str, mutate) -> PipelineRun:
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT payload FROM super_search_runs WHERE id = $1 FOR UPDATE",
                    run_id,
                )
                if row is None:
                    raise RunNotFoundError(f"Run not found: {run_id}")
                run = PipelineRun.model_validate(_coerce_json_object(row["payload"]))
                mutate(run)
                await conn.execute(
                    """
                    UPDATE super_search_runs
                    SET status = $2, payload = $3::jsonb, updated_at = now()
                    WHERE id = $1
                    """,
                    run_id,
                    run.status.value,
                    run.model_dump_json(),
                )
        return run

    async def set_schema(self, run_id: str, schema: ResolvedSchema) -> None:
        def mutate(run: PipelineRun) -> None:
            run.resolved_schema = schema

        await self._update_run(run_id, mutate)

    async def advance(
        self,
        run_id: str,
        phase: str,
        completed: int,
        total: int,
        message: str = "",
    ) -> RunProgress:
        def mutate(run: PipelineRun) -> None:
            if not run.status.is_terminal:
                run.progress = advanced_progress(run.progress, phase, completed, total, message)

        run = await self._update_run(run_id, mutate)
        return run.progress

    async def complete(self, run_id: str, result_set: ResultSet) -> None:
        def mutate(run: PipelineRun) -> None:
            run.status = RunStatus.COMPLETED
            run.result = result_set
            run.progress = advanced_progress(
                run.progress,
                RunPhase.COMPLETED.value,
                len(result_set.records),
                len(result_set.records),
                "Search complete",
            )

        run = await self._update_run(run_id, mutate)
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO super_search_results (fingerprint, payload, completed_at)
                VALUES ($1, $2::jsonb, $3)
                ON CONFLICT (fingerprint)
                DO UPDATE SET payload = EXCLUDED.payload, completed_at = EXCLUDED.completed_at
                """,
                result_set.fingerprint or run.fingerprint,
                result_set.model_copy(update={"is_cached": False}).model_dump_json(),
                result_set.completed_at,
            )

    async def fail(self, run_id: str, error: str) -> None:
        def mutate(run: PipelineRun) -> None:
            run.status = RunStatus.FAILED
            run.error = error

        await self._update_run(run_id, mutate)

    async def cancel(self, run_id: str) -> None:
        def mutate(run: PipelineRun) -> None:
            if not run.status.is_terminal:
                run.status = RunStatus.CANCELLED

        await self._update_run(run_id, mutate)

    async def get_run(self, run_id: str) -> PipelineRun:
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT payload FROM super_search_runs WHERE id = $1",
                run_id,
            )
        if row is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return PipelineRun.model_validate(_coerce_json_object(row["payload"]))

    async def load(self, fingerprint: str) -> ResultSet | None:
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT payload FROM super_search_results WHERE fingerprint = $1",
                fingerprint,
            )
        if row is None:
            return None
        return cached_copy(ResultSet.model_validate(_coerce_json_object(row["payload"])))

    async def is_fresh(self, result_set: ResultSet, max_age: timedelta | None = None) -> bool:
        return is_fresh(result_set, max_age)

    async def clear(self, fingerprint: str) -> bool:
        pool = await self._acquire_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM super_search_results WHERE fingerprint = $1",
                fingerprint,
            )
        # asyncpg returns the command tag, e.g. "DELETE 1".
        return status.split()[-1] != "0"

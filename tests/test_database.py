"""Tests for the asyncpg-backed session store against a fake pool."""
import json
from datetime import datetime, timezone

import pytest

from supersearch.errors import RunNotFoundError
from supersearch.models.query import Query
from supersearch.models.records import ContactRecord
from supersearch.models.results import ResultSet
from supersearch.models.run import RunStatus
from supersearch.services.database import PostgresSessionStore, _coerce_json_object

QUERY = Query(text="CTOs at fintech startups")


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class FakeConnection:
    """Enough of asyncpg.Connection for the store's SQL, backed by dicts."""

    def __init__(self, db):
        self.db = db

    def transaction(self):
        return FakeTransaction()

    async def execute(self, sql, *args):
        self.db.statements.append(sql)
        if "INSERT INTO super_search_runs" in sql:
            run_id, fingerprint, user_id, status, payload = args
            self.db.runs.setdefault(run_id, payload)
            return "INSERT 0 1"
        if "UPDATE super_search_runs" in sql:
            run_id, status, payload = args
            self.db.runs[run_id] = payload
            return "UPDATE 1"
        if "INSERT INTO super_search_results" in sql:
            fingerprint, payload, completed_at = args
            self.db.results[fingerprint] = payload
            return "INSERT 0 1"
        if "DELETE FROM super_search_results" in sql:
            removed = self.db.results.pop(args[0], None)
            return f"DELETE {0 if removed is None else 1}"
        raise AssertionError(f"unexpected SQL: {sql}")

    async def fetchrow(self, sql, *args):
        if "FROM super_search_runs" in sql:
            payload = self.db.runs.get(args[0])
        elif "FROM super_search_results" in sql:
            payload = self.db.results.get(args[0])
        else:
            raise AssertionError(f"unexpected SQL: {sql}")
        return {"payload": payload} if payload is not None else None


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return None


class FakePool:
    def __init__(self):
        self.runs = {}
        self.results = {}
        self.statements = []

    def acquire(self):
        return FakeAcquire(FakeConnection(self))


def test_coerce_json_object():
    assert _coerce_json_object('{"a": 1}') == {"a": 1}
    assert _coerce_json_object({"a": 1}) == {"a": 1}
    assert _coerce_json_object("[1, 2]") == {}
    assert _coerce_json_object("not json") == {}
    assert _coerce_json_object(None) == {}


@pytest.mark.asyncio
async def test_run_lifecycle_persists_payload():
    pool = FakePool()
    store = PostgresSessionStore(pool=pool)

    run_id = await store.begin_run(QUERY, "user-9")
    await store.advance(run_id, "researching", 3, 10, "Researching...")
    await store.advance(run_id, "researching", 1, 10)
    run = await store.get_run(run_id)

    assert run.status == RunStatus.RUNNING
    assert run.progress.completed == 3
    assert json.loads(pool.runs[run_id])["user_id"] == "user-9"


@pytest.mark.asyncio
async def test_complete_caches_result_by_fingerprint():
    pool = FakePool()
    store = PostgresSessionStore(pool=pool)
    run_id = await store.begin_run(QUERY)
    result_set = ResultSet(
        fingerprint=QUERY.fingerprint,
        query=QUERY.text,
        records=[ContactRecord(name="Jane Doe", role="CTO", company="Acme", relevance=88)],
        total_contacts=1,
        completed_at=datetime.now(timezone.utc),
    )

    await store.complete(run_id, result_set)
    cached = await store.load(QUERY.fingerprint)

    assert cached is not None
    assert cached.is_cached is True
    assert cached.records[0].name == "Jane Doe"
    assert isinstance(cached.records[0], ContactRecord)
    assert (await store.get_run(run_id)).status == RunStatus.COMPLETED
    assert await store.is_fresh(cached) is True


@pytest.mark.asyncio
async def test_completing_with_a_cached_copy_stores_it_unmarked():
    pool = FakePool()
    store = PostgresSessionStore(pool=pool)
    run_id = await store.begin_run(QUERY)
    served = ResultSet(fingerprint=QUERY.fingerprint, query=QUERY.text, is_cached=True)

    await store.complete(run_id, served)

    assert json.loads(pool.results[QUERY.fingerprint])["is_cached"] is False


@pytest.mark.asyncio
async def test_clear_reports_whether_a_row_was_deleted():
    pool = FakePool()
    store = PostgresSessionStore(pool=pool)
    pool.results[QUERY.fingerprint] = ResultSet(fingerprint=QUERY.fingerprint).model_dump_json()

    assert await store.clear(QUERY.fingerprint) is True
    assert await store.clear(QUERY.fingerprint) is False


@pytest.mark.asyncio
async def test_missing_run_raises():
    store = PostgresSessionStore(pool=FakePool())

    with pytest.raises(RunNotFoundError):
        await store.get_run("nope")
    with pytest.raises(RunNotFoundError):
        await store.fail("nope", "boom")

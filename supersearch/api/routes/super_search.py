from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from supersearch.api.deps import get_quota_gate, get_run_manager, get_store, get_user_id
from supersearch.errors import QuotaExceededError, RunNotFoundError
from supersearch.models.query import Query
from supersearch.models.schemas import (
    CreditCheckResponse,
    RunSnapshotResponse,
    SuperSearchRequest,
    SuperSearchStartResponse,
)
from supersearch.services import logger as log_service
from supersearch.services.collaborators import QuotaGate
from supersearch.services.run_manager import RunManager
from supersearch.services.session_store import SessionStore

router = APIRouter(prefix="/api/super-search", tags=["super-search"])


def _parse_last_event_id(value: str | None) -> int:
    try:
        return max(int(value or 0), 0)
    except ValueError:
        return 0


@router.post("", response_model=SuperSearchStartResponse)
async def start_super_search(
    request: SuperSearchRequest,
    user_id: str | None = Depends(get_user_id),
    quota: QuotaGate = Depends(get_quota_gate),
    store: SessionStore = Depends(get_store),
    manager: RunManager = Depends(get_run_manager),
):
    """Start a run, or return the cached result for an identical recent query."""
    try:
        query = Query(
            text=request.query,
            target_count=request.max_results,
            variant=request.variant,
            list_id=request.list_id,
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail="Query is required")

    decision = await quota.check(user_id)
    if not decision.allowed:
        error = QuotaExceededError(decision.balance or 0, decision.required)
        raise HTTPException(status_code=402, detail=str(error))

    if not request.refresh:
        cached = await store.load(query.fingerprint)
        if cached is not None and await store.is_fresh(cached):
            log_service.log_event(
                event_type="super_search_cache_hit",
                message="Served cached super search result",
                fingerprint=query.fingerprint,
            )
            return SuperSearchStartResponse(
                fingerprint=query.fingerprint,
                cached=True,
                result=cached,
            )

    run_id = await manager.start(query, user_id=user_id, refresh=request.refresh)
    log_service.log_event(
        event_type="super_search_started",
        message="Super search started",
        run_id=run_id,
        user_id=user_id,
        query=query.text[:100],
    )
    return SuperSearchStartResponse(run_id=run_id, fingerprint=query.fingerprint)


@router.post("/check-credits", response_model=CreditCheckResponse)
async def check_credits(
    user_id: str | None = Depends(get_user_id),
    quota: QuotaGate = Depends(get_quota_gate),
):
    decision = await quota.check(user_id)
    return CreditCheckResponse(
        can_search=decision.allowed,
        current_balance=decision.balance,
        required_credits=decision.required,
    )


@router.delete("/cache/{fingerprint}")
async def clear_cached_result(fingerprint: str, store: SessionStore = Depends(get_store)):
    cleared = await store.clear(fingerprint)
    return {"fingerprint": fingerprint, "cleared": cleared}


@router.get("/{run_id}/stream")
async def stream_super_search(
    run_id: str,
    last_event_id: str | None = Header(default=None),
    manager: RunManager = Depends(get_run_manager),
):
    """SSE endpoint; replays from the start or from Last-Event-ID, then follows live."""
    try:
        manager.get(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")

    after = _parse_last_event_id(last_event_id)

    async def event_generator():
        async for event in manager.subscribe(run_id, after=after):
            yield event.to_sse()

    return EventSourceResponse(event_generator())


@router.get("/{run_id}", response_model=RunSnapshotResponse)
async def get_super_search(run_id: str, store: SessionStore = Depends(get_store)):
    """Polling alternative to the stream."""
    try:
        run = await store.get_run(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    return RunSnapshotResponse(
        run_id=run.id,
        query=run.query.text,
        fingerprint=run.fingerprint,
        status=run.status,
        progress=run.progress,
        result=run.result,
        error=run.error,
    )


@router.post("/{run_id}/cancel")
async def cancel_super_search(run_id: str, manager: RunManager = Depends(get_run_manager)):
    try:
        cancelled = manager.cancel(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    return {"run_id": run_id, "cancelled": cancelled}

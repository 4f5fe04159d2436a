from __future__ import annotations

from pydantic import BaseModel, Field

from supersearch.models.results import ResultSet
from supersearch.models.run import RunProgress, RunStatus


# --- Requests ---


class SuperSearchRequest(BaseModel):
    query: str
    refresh: bool = False
    max_results: int | None = Field(default=None, ge=1, le=100)
    variant: str | None = None
    list_id: int | None = None


# --- Responses ---


class SuperSearchStartResponse(BaseModel):
    run_id: str | None = None
    fingerprint: str
    cached: bool = False
    result: ResultSet | None = None


class RunSnapshotResponse(BaseModel):
    run_id: str
    query: str
    fingerprint: str
    status: RunStatus
    progress: RunProgress
    result: ResultSet | None = None
    error: str | None = None


class CreditCheckResponse(BaseModel):
    can_search: bool
    current_balance: int | None = None
    required_credits: int

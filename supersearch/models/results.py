from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from supersearch.models.records import EntityRecord
from supersearch.models.schema import ResolvedSchema

DEFAULT_MAX_PER_PARENT = 3
DEFAULT_MIN_RELEVANCE = 50.0


class AggregateOptions(BaseModel):
    max_per_parent: int = Field(default=DEFAULT_MAX_PER_PARENT, ge=1)
    min_relevance: float = Field(default=DEFAULT_MIN_RELEVANCE, ge=0, le=100)
    missing_relevance: float = Field(default=0.0, ge=0, le=100)


class ResultSet(BaseModel):
    """Final, ordered output of one pipeline run."""

    fingerprint: str = ""
    query: str = ""
    resolved_schema: ResolvedSchema | None = None
    records: list[EntityRecord] = Field(default_factory=list)
    total_companies: int = 0
    total_contacts: int = 0
    target_count: int = 0
    source_breakdown: dict[str, int] = Field(default_factory=dict)
    failed_entities: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_cached: bool = False

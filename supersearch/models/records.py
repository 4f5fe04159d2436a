from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from supersearch.models.query import normalize_key
from supersearch.models.schema import QueryType


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CandidateEntity(BaseModel):
    """A named entity produced by discovery, consumed by the fetcher."""

    model_config = ConfigDict(frozen=True)

    name: str
    query_type: QueryType
    discovery_index: int = 0

    @property
    def normalized_name(self) -> str:
        return normalize_key(self.name)


class RawResearch(BaseModel):
    """Unstructured research for one entity from one provider."""

    entity_name: str
    provider: str
    content: str
    fetched_at: datetime = Field(default_factory=_utc_now)
    citations: list[str] = Field(default_factory=list)


class _RecordBase(BaseModel):
    name: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    note: str | None = None
    relevance: float | None = None
    custom_field_values: dict[str, Any] = Field(default_factory=dict)
    sources: list[str] = Field(default_factory=list)
    discovery_index: int = 0


class CompanyRecord(_RecordBase):
    type: Literal["company"] = "company"
    website: str | None = None
    description: str | None = None
    size: str | None = None
    services: str | None = None


class ContactRecord(_RecordBase):
    type: Literal["contact"] = "contact"
    role: str | None = None
    company: str | None = None
    company_website: str | None = None
    linkedin_url: str | None = None
    email: str | None = None
    department: str | None = None
    company_id: int | None = None


EntityRecord = Annotated[Union[CompanyRecord, ContactRecord], Field(discriminator="type")]

RECORD_MODELS: dict[str, type[_RecordBase]] = {
    "company": CompanyRecord,
    "contact": ContactRecord,
}


def identity_key(record: CompanyRecord | ContactRecord) -> str:
    """Key used to deduplicate records.

    Contacts with an email are keyed by the normalized email. Everything else
    falls back to type plus normalized name (and parent for contacts).
    """
    if isinstance(record, ContactRecord) and normalize_key(record.email):
        return f"email:{normalize_key(record.email)}"
    key = f"{record.type}:{normalize_key(record.name)}"
    parent = parent_key(record)
    if parent:
        key = f"{key}@{parent}"
    return key


def parent_key(record: CompanyRecord | ContactRecord) -> str | None:
    """Parent company of a contact, used for per-company fan-out caps."""
    if not isinstance(record, ContactRecord):
        return None
    if record.company_id is not None:
        return f"id:{record.company_id}"
    company = normalize_key(record.company)
    return f"name:{company}" if company else None

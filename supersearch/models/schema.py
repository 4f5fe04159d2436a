from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

QueryType = Literal["company", "contact"]

COMPANY_FIELDS: tuple[str, ...] = (
    "name",
    "website",
    "city",
    "state",
    "country",
    "description",
    "size",
    "services",
)
CONTACT_FIELDS: tuple[str, ...] = (
    "name",
    "role",
    "company",
    "company_website",
    "linkedin_url",
    "email",
    "city",
    "state",
    "country",
    "department",
)
STANDARD_FIELD_CATALOG: dict[str, tuple[str, ...]] = {
    "company": COMPANY_FIELDS,
    "contact": CONTACT_FIELDS,
}
ALL_STANDARD_FIELDS = frozenset(COMPANY_FIELDS + CONTACT_FIELDS)

# Aliases the classifier tends to emit for catalog fields.
STANDARD_FIELD_ALIASES: dict[str, str] = {
    "companywebsite": "company_website",
    "linkedinurl": "linkedin_url",
    "linkedin": "linkedin_url",
    "title": "role",
    "job_title": "role",
    "location": "city",
}

CUSTOM_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,39}$")
CUSTOM_KEY_MAX_LEN = 40

MIN_TARGET_COUNT = 5
MAX_TARGET_COUNT = 20
DEFAULT_TARGET_COUNT = 10


def clamp_target_count(value: object) -> int:
    try:
        count = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_TARGET_COUNT
    return max(MIN_TARGET_COUNT, min(count, MAX_TARGET_COUNT))


def slugify_key(raw: str) -> str:
    """Turn a proposed field key or label into a restricted-charset key.

    ``annualRevenue`` and ``Annual Revenue ($)`` both become ``annual_revenue``.
    Returns an empty string when nothing usable is left.
    """
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", raw.strip())
    text = re.sub(r"[^A-Za-z0-9]+", "_", text).strip("_").lower()
    text = re.sub(r"_+", "_", text)
    if not text:
        return ""
    if not text[0].isalpha():
        text = f"f_{text}"
    return text[:CUSTOM_KEY_MAX_LEN].rstrip("_")


def canonical_standard_field(raw: str) -> str:
    key = slugify_key(raw)
    if key in STANDARD_FIELD_ALIASES:
        return STANDARD_FIELD_ALIASES[key]
    return STANDARD_FIELD_ALIASES.get(key.replace("_", ""), key)


class CustomField(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str

    @field_validator("key")
    @classmethod
    def _key_charset(cls, value: str) -> str:
        if not CUSTOM_KEY_PATTERN.match(value):
            raise ValueError(f"Custom field key '{value}' is not slug-safe")
        return value


class ResolvedSchema(BaseModel):
    """Result schema for one query, computed once and never mutated."""

    model_config = ConfigDict(frozen=True)

    query_type: QueryType
    target_count: int = DEFAULT_TARGET_COUNT
    standard_fields: tuple[str, ...] = ("name",)
    custom_fields: tuple[CustomField, ...] = ()
    search_strategy: str = ""

    @model_validator(mode="after")
    def _check_invariants(self) -> "ResolvedSchema":
        if not MIN_TARGET_COUNT <= self.target_count <= MAX_TARGET_COUNT:
            raise ValueError(
                f"target_count must be within [{MIN_TARGET_COUNT}, {MAX_TARGET_COUNT}]"
            )

        catalog = STANDARD_FIELD_CATALOG[self.query_type]
        unknown = [f for f in self.standard_fields if f not in catalog]
        if unknown:
            raise ValueError(f"Unknown standard fields for {self.query_type}: {unknown}")
        if len(set(self.standard_fields)) != len(self.standard_fields):
            raise ValueError("Duplicate standard fields")
        if "name" not in self.standard_fields:
            raise ValueError("Standard fields must include 'name'")

        keys = [f.key for f in self.custom_fields]
        if len(set(keys)) != len(keys):
            raise ValueError("Duplicate custom field keys")
        shadowing = [k for k in keys if k in ALL_STANDARD_FIELDS]
        if shadowing:
            raise ValueError(f"Custom fields shadow standard fields: {shadowing}")
        return self

    @property
    def custom_keys(self) -> tuple[str, ...]:
        return tuple(f.key for f in self.custom_fields)

    @property
    def research_topics(self) -> list[str]:
        """Standard field names plus custom labels, used to steer enrichment queries."""
        return [*self.standard_fields, *(f.label for f in self.custom_fields)]

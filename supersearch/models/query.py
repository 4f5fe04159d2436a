from __future__ import annotations

from hashlib import sha256

from pydantic import BaseModel, ConfigDict, field_validator

from supersearch.models.schema import clamp_target_count

FINGERPRINT_VERSION = 1


def normalize_key(value: str | None) -> str:
    """Case- and whitespace-insensitive form used for names, emails and queries."""
    if not value:
        return ""
    return " ".join(value.split()).casefold()


def query_fingerprint(
    text: str,
    *,
    target_count: int | None = None,
    variant: str | None = None,
) -> str:
    # Targets are clamped the same way the resolved schema clamps them.
    target = clamp_target_count(target_count) if target_count is not None else "-"
    material = (
        f"v{FINGERPRINT_VERSION}|{normalize_key(text)}|"
        f"target={target}|"
        f"variant={normalize_key(variant) or '-'}"
    )
    return sha256(material.encode("utf-8")).hexdigest()


class Query(BaseModel):
    """A submitted search query. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    text: str
    target_count: int | None = None
    variant: str | None = None
    list_id: int | None = None

    @field_validator("text")
    @classmethod
    def _collapse_whitespace(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not cleaned:
            raise ValueError("Query is required")
        return cleaned

    @property
    def fingerprint(self) -> str:
        return query_fingerprint(
            self.text,
            target_count=self.target_count,
            variant=self.variant,
        )

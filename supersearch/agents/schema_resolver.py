from __future__ import annotations

from typing import Any

from loguru import logger

from supersearch.agents.base import StructuredAgent, StructuredOutputError
from supersearch.config import settings
from supersearch.errors import RunFatalError, SchemaResolutionError
from supersearch.models.query import Query
from supersearch.models.schema import (
    ALL_STANDARD_FIELDS,
    STANDARD_FIELD_CATALOG,
    CustomField,
    ResolvedSchema,
    canonical_standard_field,
    clamp_target_count,
    slugify_key,
)
from supersearch.services.prompt_store import render_prompt


def _coerce_query_type(raw: Any) -> str:
    value = str(raw or "").strip().lower()
    if value in ("company", "companies", "organization", "organisation"):
        return "company"
    if value in ("contact", "contacts", "person", "people"):
        return "contact"
    raise ValueError(f"query_type must be 'company' or 'contact', got {raw!r}")


def _standard_fields(query_type: str, raw: Any) -> tuple[str, ...]:
    catalog = STANDARD_FIELD_CATALOG[query_type]
    fields: list[str] = ["name"]
    for item in raw if isinstance(raw, list) else []:
        field = canonical_standard_field(str(item))
        if field in catalog and field not in fields:
            fields.append(field)
    return tuple(fields)


def _custom_fields(raw: Any) -> tuple[CustomField, ...]:
    fields: list[CustomField] = []
    seen: set[str] = set()
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, str):
            item = {"key": item, "label": item}
        if not isinstance(item, dict):
            continue
        label = str(item.get("label") or item.get("key") or "").strip()
        key = slugify_key(str(item.get("key") or label))
        if not key:
            continue
        if key in ALL_STANDARD_FIELDS or canonical_standard_field(key) in ALL_STANDARD_FIELDS:
            logger.debug(f"Dropping custom field '{key}': shadows a standard field")
            continue
        if key in seen:
            continue
        seen.add(key)
        fields.append(CustomField(key=key, label=label or key.replace("_", " ").title()))
    return tuple(fields)


def build_schema(payload: dict[str, Any], *, target_override: int | None = None) -> ResolvedSchema:
    """Normalize a classifier payload into a valid ResolvedSchema.

    Raises ValueError (or pydantic.ValidationError) when the payload cannot
    be salvaged, which the structured-output loop treats as a retryable
    failure.
    """
    query_type = _coerce_query_type(payload.get("query_type") or payload.get("type"))
    target = target_override if target_override is not None else payload.get("target_count")
    return ResolvedSchema(
        query_type=query_type,
        target_count=clamp_target_count(target),
        standard_fields=_standard_fields(query_type, payload.get("standard_fields")),
        custom_fields=_custom_fields(payload.get("custom_fields")),
        search_strategy=str(payload.get("search_strategy") or "").strip(),
    )


class SchemaResolver(StructuredAgent):
    """Classifies a query and decides which fields every result carries."""

    name = "schema_resolver"
    max_tokens = 1500

    def __init__(self, model: str | None = None, **kwargs: Any):
        kwargs.setdefault("timeout", settings.schema_timeout_seconds)
        super().__init__(model or settings.schema_model or None, **kwargs)

    async def resolve(self, query: Query) -> ResolvedSchema:
        target_hint = (
            render_prompt("schema_resolver.target_hint", target_count=query.target_count)
            if query.target_count is not None
            else ""
        )
        user_message = render_prompt(
            "schema_resolver.user_prompt",
            query=query.text,
            target_hint=target_hint,
        )

        def parse(payload: dict[str, Any]) -> ResolvedSchema:
            return build_schema(payload, target_override=query.target_count)

        try:
            schema = await self.request_structured(
                render_prompt("schema_resolver.system_prompt"),
                user_message,
                parse,
            )
        except StructuredOutputError as e:
            raise SchemaResolutionError(e.reason) from e
        except Exception as e:
            raise RunFatalError(
                f"Structured-output service unavailable: {str(e) or type(e).__name__}"
            ) from e

        logger.info(
            f"Resolved schema for '{query.text}': type={schema.query_type} "
            f"target={schema.target_count} standard={list(schema.standard_fields)} "
            f"custom={list(schema.custom_keys)}"
        )
        return schema

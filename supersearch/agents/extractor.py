from __future__ import annotations

from typing import Any

from supersearch.agents.base import StructuredAgent, StructuredOutputError
from supersearch.config import settings
from supersearch.errors import ExtractionError
from supersearch.models.records import (
    RECORD_MODELS,
    CandidateEntity,
    CompanyRecord,
    ContactRecord,
    RawResearch,
)
from supersearch.models.schema import ResolvedSchema
from supersearch.services.prompt_store import render_prompt

NOTE_MAX_CHARS = 100


def _clean_value(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in ("null", "none", "n/a", "unknown"):
            return None
        return value
    if isinstance(value, list):
        items = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return ", ".join(items) or None
    return value


def _relevance(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(score, 100.0))


def build_record(
    payload: dict[str, Any],
    entity: CandidateEntity,
    schema: ResolvedSchema,
    sources: list[str],
) -> CompanyRecord | ContactRecord:
    """Validate one extraction payload against the schema.

    Unknown custom keys are rejected. Missing custom keys are filled with
    None, and standard fields the schema did not request are dropped.
    """
    raw_custom = payload.get("custom_field_values")
    if raw_custom is None:
        raw_custom = {}
    if not isinstance(raw_custom, dict):
        raise ValueError("custom_field_values must be an object")

    allowed = set(schema.custom_keys)
    unknown = sorted(k for k in raw_custom if k not in allowed)
    if unknown:
        raise ValueError(f"unknown custom field keys: {unknown}")
    custom_values = {key: _clean_value(raw_custom.get(key)) for key in schema.custom_keys}

    # Standard fields are all text; models sometimes answer with numbers.
    fields: dict[str, Any] = {}
    for field in schema.standard_fields:
        value = _clean_value(payload.get(field))
        fields[field] = str(value) if value is not None else None
    fields["name"] = fields.get("name") or entity.name

    note = _clean_value(payload.get("note"))
    if note is not None:
        note = str(note)[:NOTE_MAX_CHARS]

    model = RECORD_MODELS[schema.query_type]
    return model(
        **fields,
        note=note,
        relevance=_relevance(payload.get("relevance")),
        custom_field_values=custom_values,
        sources=sources,
        discovery_index=entity.discovery_index,
    )


def _format_research(research: list[RawResearch], max_chars: int) -> str:
    blocks: list[str] = []
    for item in research:
        block = f"### Source: {item.provider}\n{item.content.strip()}"
        if item.citations:
            block += "\nCitations: " + ", ".join(item.citations[:10])
        blocks.append(block)
    return "\n\n".join(blocks)[:max_chars]


class StructuredExtractor(StructuredAgent):
    """Turns raw research for one entity into exactly one validated record."""

    name = "extractor"
    max_tokens = 2000

    def __init__(self, model: str | None = None, **kwargs: Any):
        kwargs.setdefault("timeout", settings.extraction_timeout_seconds)
        super().__init__(model or settings.extraction_model or None, **kwargs)

    async def extract(
        self,
        entity: CandidateEntity,
        research: list[RawResearch],
        schema: ResolvedSchema,
        *,
        query_text: str | None = None,
    ) -> CompanyRecord | ContactRecord:
        usable = [r for r in research if r.content and r.content.strip()]
        if not usable:
            raise ExtractionError(entity.name, "no research to extract from")

        sources = list(dict.fromkeys(r.provider for r in usable))
        custom_fields = (
            "\n".join(f"- {f.key}: {f.label}" for f in schema.custom_fields) or "(none)"
        )
        user_message = render_prompt(
            "extractor.user_prompt",
            entity=entity.name,
            query=query_text or schema.search_strategy or entity.name,
            query_type=schema.query_type,
            standard_fields=", ".join(schema.standard_fields),
            custom_fields=custom_fields,
            research=_format_research(usable, settings.research_max_chars),
        )

        def parse(payload: dict[str, Any]) -> CompanyRecord | ContactRecord:
            return build_record(payload, entity, schema, sources)

        try:
            return await self.request_structured(
                render_prompt("extractor.system_prompt"),
                user_message,
                parse,
            )
        except StructuredOutputError as e:
            raise ExtractionError(entity.name, e.reason) from e
        except Exception as e:
            raise ExtractionError(entity.name, str(e) or type(e).__name__) from e

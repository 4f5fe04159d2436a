"""Tests for schema resolution and the structured-output retry loop."""
import asyncio

import pytest

from supersearch.agents.base import extract_json_object
from supersearch.agents.schema_resolver import SchemaResolver, build_schema
from supersearch.config import settings
from supersearch.errors import RunFatalError, SchemaResolutionError
from supersearch.models.query import Query


def _payload(**overrides):
    payload = {
        "query_type": "company",
        "target_count": 12,
        "standard_fields": ["name", "website", "city", "description"],
        "custom_fields": [{"key": "funding_stage", "label": "Funding Stage"}],
        "search_strategy": "Look at startup directories",
    }
    payload.update(overrides)
    return payload


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object_with_prose(self):
        text = 'Here you go:\n```json\n{"a": {"b": 2}}\n```'
        assert extract_json_object(text) == {"a": {"b": 2}}

    def test_missing_object_raises(self):
        with pytest.raises(ValueError):
            extract_json_object("no json here")


class TestBuildSchema:
    def test_drops_unknown_standard_fields_and_keeps_name(self):
        schema = build_schema(_payload(standard_fields=["website", "revenue", "role", "Website"]))
        assert schema.standard_fields == ("name", "website")

    def test_maps_aliases_into_catalog(self):
        schema = build_schema(
            _payload(query_type="contact", standard_fields=["title", "linkedinUrl", "company"])
        )
        assert schema.standard_fields == ("name", "role", "linkedin_url", "company")

    def test_slugifies_and_dedupes_custom_keys(self):
        schema = build_schema(
            _payload(
                custom_fields=[
                    {"key": "fundingStage", "label": "Funding Stage"},
                    {"key": "funding_stage", "label": "Stage again"},
                    {"key": "Website", "label": "Website"},
                    {"key": "location", "label": "Location"},
                    {"label": "Employee Count"},
                ]
            )
        )
        assert schema.custom_keys == ("funding_stage", "employee_count")

    def test_clamps_target_count(self):
        assert build_schema(_payload(target_count=100)).target_count == 20
        assert build_schema(_payload(target_count=1)).target_count == 5
        assert build_schema(_payload(target_count=None)).target_count == 10

    def test_target_override_wins(self):
        assert build_schema(_payload(target_count=20), target_override=7).target_count == 7

    def test_rejects_unknown_query_type(self):
        with pytest.raises(ValueError):
            build_schema(_payload(query_type="product"))


class TestSchemaResolver:
    @pytest.mark.asyncio
    async def test_resolve_returns_schema(self, make_llm):
        llm = make_llm([_payload()])
        resolver = SchemaResolver(model="test-model", client=llm)

        schema = await resolver.resolve(Query(text="fintech startups in Austin"))

        assert schema.query_type == "company"
        assert schema.target_count == 12
        assert schema.custom_keys == ("funding_stage",)
        call = llm.calls[0]
        assert call["json_mode"] is True
        assert "fintech startups in Austin" in call["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_query_target_count_is_passed_and_applied(self, make_llm):
        llm = make_llm([_payload(target_count=20)])
        resolver = SchemaResolver(model="test-model", client=llm)

        schema = await resolver.resolve(Query(text="ai startups", target_count=6))

        assert schema.target_count == 6
        assert "about 6 results" in llm.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_retries_with_repair_prompt_after_bad_output(self, make_llm):
        llm = make_llm(["not json at all", _payload()])
        resolver = SchemaResolver(model="test-model", client=llm, max_retries=1)

        schema = await resolver.resolve(Query(text="ai startups"))

        assert schema.query_type == "company"
        assert len(llm.calls) == 2
        retry_messages = llm.calls[1]["messages"]
        assert retry_messages[1] == {"role": "assistant", "content": "not json at all"}
        assert "could not be used" in retry_messages[2]["content"]

    @pytest.mark.asyncio
    async def test_raises_after_retries_exhausted(self, make_llm):
        llm = make_llm(["{}", {"query_type": "nope"}])
        resolver = SchemaResolver(model="test-model", client=llm, max_retries=1)

        with pytest.raises(SchemaResolutionError):
            await resolver.resolve(Query(text="ai startups"))
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_unreachable_service_is_fatal(self, make_llm):
        llm = make_llm([ConnectionError("connection refused")])
        resolver = SchemaResolver(model="test-model", client=llm)

        with pytest.raises(RunFatalError):
            await resolver.resolve(Query(text="ai startups"))

    @pytest.mark.asyncio
    async def test_stalled_service_times_out_as_fatal(self):
        class StalledClient:
            async def complete(self, **kwargs):
                await asyncio.sleep(1)

        resolver = SchemaResolver(model="test-model", client=StalledClient(), timeout=0.01)

        with pytest.raises(RunFatalError, match="TimeoutError"):
            await resolver.resolve(Query(text="ai startups"))

    def test_timeout_defaults_to_setting(self, make_llm):
        resolver = SchemaResolver(model="test-model", client=make_llm([]))
        assert resolver.timeout == settings.schema_timeout_seconds

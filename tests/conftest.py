from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest

from supersearch.agents.orchestrator import SuperSearchOrchestrator
from supersearch.errors import ExtractionError
from supersearch.llm_client import Completion
from supersearch.models.query import Query
from supersearch.models.records import CandidateEntity, CompanyRecord
from supersearch.models.results import AggregateOptions
from supersearch.models.schema import CustomField, ResolvedSchema
from supersearch.services.session_store import InMemorySessionStore
from supersearch.tools.research_provider import ProviderResult


class FakeLLMClient:
    """Stands in for OpenRouterChat; replies are consumed in order.

    A reply may be a dict (sent as JSON), a raw string, an exception to
    raise, or a callable receiving the complete() kwargs.
    """

    def __init__(self, replies: list[Any]):
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def complete(self, **kwargs: Any) -> Completion:
        self.calls.append(kwargs)
        if not self.replies:
            raise AssertionError("unexpected LLM call")
        reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(kwargs)
        if isinstance(reply, BaseException):
            raise reply
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return Completion(text=text, input_tokens=10, output_tokens=5)


class FakeProvider:
    def __init__(
        self,
        name: str = "fake",
        *,
        content: str = "Research notes",
        fail_for: tuple[str, ...] = (),
        empty_for: tuple[str, ...] = (),
        delay: float = 0.0,
    ):
        self.name = name
        self.content = content
        self.fail_for = set(fail_for)
        self.empty_for = set(empty_for)
        self.delay = delay
        self.calls: list[tuple[str, str, str]] = []

    async def research(self, entity_name: str, query_type: str, context: str) -> ProviderResult:
        self.calls.append((entity_name, query_type, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if entity_name in self.fail_for:
            raise RuntimeError(f"{self.name} unavailable")
        if entity_name in self.empty_for:
            return ProviderResult(content="")
        slug = entity_name.lower().replace(" ", "-")
        return ProviderResult(
            content=f"{self.content} about {entity_name}",
            citations=[f"https://{self.name}.example.com/{slug}"],
        )


@pytest.fixture
def make_llm():
    return FakeLLMClient


@pytest.fixture
def make_provider():
    return FakeProvider


SCHEMA = ResolvedSchema(
    query_type="company",
    target_count=10,
    standard_fields=("name", "website"),
    custom_fields=(CustomField(key="funding_stage", label="Funding Stage"),),
    search_strategy="Startup directories",
)


class FakeResolver:
    def __init__(self, schema: ResolvedSchema = SCHEMA, error: Exception | None = None):
        self.schema = schema
        self.error = error
        self.calls = 0

    async def resolve(self, query: Query) -> ResolvedSchema:
        self.calls += 1
        if self.error:
            raise self.error
        return self.schema


class FakeDiscovery:
    def __init__(self, names: list[str], on_done=None):
        self.names = names
        self.on_done = on_done

    async def discover(self, query: Query, schema: ResolvedSchema):
        for index, name in enumerate(self.names[: schema.target_count]):
            yield CandidateEntity(name=name, query_type=schema.query_type, discovery_index=index)
        if self.on_done:
            self.on_done()


class FakeExtractor:
    def __init__(self, scores: dict[str, float] | None = None, fail_for=(), on_extract=None):
        self.scores = scores or {}
        self.fail_for = set(fail_for)
        self.on_extract = on_extract
        self.extracted: list[str] = []

    async def extract(self, entity, research, schema, *, query_text=None):
        if self.on_extract:
            self.on_extract(entity)
        if entity.name in self.fail_for:
            raise ExtractionError(entity.name, "invalid structured output")
        self.extracted.append(entity.name)
        return CompanyRecord(
            name=entity.name,
            relevance=self.scores.get(entity.name, 80),
            custom_field_values={key: None for key in schema.custom_keys},
            sources=[r.provider for r in research],
            discovery_index=entity.discovery_index,
        )


def company_names(count: int) -> list[str]:
    return [f"Company {i}" for i in range(count)]


@pytest.fixture
def make_orchestrator():
    """Builds an orchestrator over fakes; keyword overrides replace any part."""

    def build(store=None, **overrides: Any) -> SuperSearchOrchestrator:
        parts: dict[str, Any] = {
            "store": store or InMemorySessionStore(),
            "schema_resolver": FakeResolver(),
            "discovery": FakeDiscovery(company_names(10)),
            "extractor": FakeExtractor(),
            "providers": [FakeProvider()],
            "aggregate_options": AggregateOptions(),
        }
        parts.update(overrides)
        return SuperSearchOrchestrator(**parts)

    return build


@pytest.fixture
def fakes():
    return SimpleNamespace(
        schema=SCHEMA,
        resolver=FakeResolver,
        discovery=FakeDiscovery,
        extractor=FakeExtractor,
        names=company_names,
    )

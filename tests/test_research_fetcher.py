"""Tests for concurrent per-entity research."""
import asyncio

import pytest

from supersearch.models.query import Query
from supersearch.models.records import CandidateEntity
from supersearch.models.schema import CustomField, ResolvedSchema
from supersearch.services.research_fetcher import ResearchFetcher, enrichment_query

SCHEMA = ResolvedSchema(
    query_type="company",
    standard_fields=("name", "website"),
    custom_fields=(CustomField(key="funding_stage", label="Funding Stage"),),
)
QUERY = Query(text="fintech startups in Austin")
ACME = CandidateEntity(name="Acme", query_type="company")


def test_enrichment_query_lists_fields_and_labels():
    assert enrichment_query(ACME, SCHEMA, QUERY) == (
        "Acme: name, website, Funding Stage related to fintech startups in Austin"
    )


@pytest.mark.asyncio
async def test_fetch_collects_from_every_provider(make_provider):
    providers = [make_provider("perplexity"), make_provider("brave")]
    fetcher = ResearchFetcher(providers, timeout=1)

    research = await fetcher.fetch(ACME, SCHEMA, QUERY)

    assert [r.provider for r in research] == ["perplexity", "brave"]
    assert research[0].citations == ["https://perplexity.example.com/acme"]
    assert providers[0].calls[0][2].startswith("Acme: name, website")
    assert fetcher.source_breakdown() == {"perplexity": 1, "brave": 1}


@pytest.mark.asyncio
async def test_failed_provider_contributes_nothing(make_provider):
    providers = [make_provider("perplexity", fail_for=("Acme",)), make_provider("tavily")]
    fetcher = ResearchFetcher(providers, timeout=1)

    research = await fetcher.fetch(ACME, SCHEMA, QUERY)

    assert [r.provider for r in research] == ["tavily"]
    assert fetcher.source_breakdown() == {"tavily": 1}


@pytest.mark.asyncio
async def test_timed_out_provider_is_dropped(make_provider):
    providers = [make_provider("slow", delay=0.5), make_provider("fast")]
    fetcher = ResearchFetcher(providers, timeout=0.05)

    research = await fetcher.fetch(ACME, SCHEMA, QUERY)

    assert [r.provider for r in research] == ["fast"]


@pytest.mark.asyncio
async def test_empty_content_is_not_counted(make_provider):
    providers = [make_provider("brave", empty_for=("Acme",))]
    fetcher = ResearchFetcher(providers, timeout=1)

    assert await fetcher.fetch(ACME, SCHEMA, QUERY) == []
    assert fetcher.source_breakdown() == {}


@pytest.mark.asyncio
async def test_counters_are_consistent_under_concurrency(make_provider):
    providers = [make_provider("perplexity", delay=0.01), make_provider("tavily", delay=0.01)]
    fetcher = ResearchFetcher(providers, timeout=1, max_parallel=2)
    entities = [CandidateEntity(name=f"Entity {i}", query_type="company") for i in range(10)]

    await asyncio.gather(*(fetcher.fetch(e, SCHEMA, QUERY) for e in entities))

    assert fetcher.source_breakdown() == {"perplexity": 10, "tavily": 10}

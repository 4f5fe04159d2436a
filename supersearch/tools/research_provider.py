from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from supersearch.config import settings


@dataclass
class ProviderResult:
    content: str
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    citations: list[str] = field(default_factory=list)


class ResearchProvider(Protocol):
    """External source of unstructured research text.

    `context` is the full research question; `entity_name` is the subject it
    is about. The pipeline only ever records `name` for provenance.
    """

    name: str

    async def research(
        self,
        entity_name: str,
        query_type: str,
        context: str,
    ) -> ProviderResult:
        ...


def get_research_providers(names: list[str] | None = None) -> list[ResearchProvider]:
    """Build the configured providers in priority order (first is primary)."""
    from supersearch.tools.brave_research import BraveResearch
    from supersearch.tools.perplexity_research import PerplexityResearch
    from supersearch.tools.tavily_research import TavilyResearch

    registry: dict[str, type] = {
        PerplexityResearch.name: PerplexityResearch,
        TavilyResearch.name: TavilyResearch,
        BraveResearch.name: BraveResearch,
    }

    selected = names if names is not None else settings.research_provider_list
    providers: list[ResearchProvider] = []
    for provider_name in selected:
        key = provider_name.strip().lower()
        if key not in registry:
            raise ValueError(f"Unsupported research provider: {provider_name}")
        if any(p.name == key for p in providers):
            continue
        providers.append(registry[key]())
    if not providers:
        raise ValueError("No research providers configured (RESEARCH_PROVIDERS is empty)")
    return providers

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from supersearch.agents.base import StructuredAgent, StructuredOutputError
from supersearch.config import settings
from supersearch.errors import DiscoveryPartialError, RunFatalError
from supersearch.models.query import Query, normalize_key
from supersearch.models.records import CandidateEntity
from supersearch.models.schema import ResolvedSchema
from supersearch.services import logger as log_service
from supersearch.services.prompt_store import render_prompt
from supersearch.tools.research_provider import ResearchProvider, get_research_providers

ENTITY_NOUNS = {
    "company": "companies, organizations, or entities",
    "contact": "people, decision-makers, or professionals",
}


def _parse_listing(payload: dict[str, Any]) -> list[str]:
    raw = payload.get("entities")
    if not isinstance(raw, list):
        raise ValueError("'entities' must be a list of names")
    names: list[str] = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("name")
        if isinstance(item, str) and item.strip():
            names.append(" ".join(item.split()))
    return names


class EntityDiscovery(StructuredAgent):
    """Finds the candidate entities a run will research."""

    name = "entity_discovery"
    max_tokens = 2000

    def __init__(
        self,
        model: str | None = None,
        *,
        providers: list[ResearchProvider] | None = None,
        exploratory: bool | None = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("timeout", settings.discovery_timeout_seconds)
        super().__init__(model, **kwargs)
        self._providers = providers
        self.exploratory = (
            settings.exploratory_search_enabled if exploratory is None else exploratory
        )

    @property
    def providers(self) -> list[ResearchProvider]:
        if self._providers is None:
            self._providers = get_research_providers()
        return self._providers

    async def _exploratory_research(self, query: Query, schema: ResolvedSchema) -> str:
        if not self.exploratory or not self.providers:
            return ""
        primary = self.providers[0]
        context = render_prompt(
            "discovery.exploratory_query",
            entity_noun=ENTITY_NOUNS[schema.query_type],
            query=query.text,
        )
        try:
            result = await asyncio.wait_for(
                primary.research(query.text, schema.query_type, context),
                timeout=settings.provider_timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Exploratory research via {primary.name} failed: {e!r}")
            return ""
        return result.content[: settings.research_max_chars]

    async def discover(self, query: Query, schema: ResolvedSchema) -> AsyncIterator[CandidateEntity]:
        """Yield up to `schema.target_count` distinct candidates in discovery order."""
        research = await self._exploratory_research(query, schema)
        user_message = render_prompt(
            "discovery.user_prompt",
            query=query.text,
            query_type=schema.query_type,
            target_count=schema.target_count,
            search_strategy=schema.search_strategy or "(none)",
            exploratory_research=research or "(no research available)",
        )

        try:
            names = await self.request_structured(
                render_prompt("discovery.system_prompt"),
                user_message,
                _parse_listing,
            )
        except StructuredOutputError as e:
            logger.warning(f"Entity listing unusable, discovering nothing: {e}")
            names = []
        except Exception as e:
            raise RunFatalError(
                f"Structured-output service unavailable: {str(e) or type(e).__name__}"
            ) from e

        seen: set[str] = set()
        count = 0
        for name in names:
            if count >= schema.target_count:
                break
            key = normalize_key(name)
            if key in seen:
                continue
            seen.add(key)
            yield CandidateEntity(name=name, query_type=schema.query_type, discovery_index=count)
            count += 1

        if count < schema.target_count:
            shortfall = DiscoveryPartialError(count, schema.target_count)
            log_service.log_event(
                "discovery_partial",
                str(shortfall),
                found=shortfall.found,
                requested=shortfall.requested,
            )

from __future__ import annotations

import asyncio
import time

from supersearch.config import settings
from supersearch.errors import ProviderError
from supersearch.models.query import Query
from supersearch.models.records import CandidateEntity, RawResearch
from supersearch.models.schema import ResolvedSchema
from supersearch.services import logger as log_service
from supersearch.services.prompt_store import render_prompt
from supersearch.tools.research_provider import ResearchProvider, get_research_providers


def enrichment_query(entity: CandidateEntity, schema: ResolvedSchema, query: Query) -> str:
    """Per-entity research question steering providers at the schema's fields."""
    return render_prompt(
        "research.enrichment_query",
        entity=entity.name,
        topics=", ".join(schema.research_topics),
        query=query.text,
    )


class ResearchFetcher:
    """Fans one entity out to every configured provider.

    One fetcher is created per run; its provider counters feed the run's
    `source_breakdown`.
    """

    def __init__(
        self,
        providers: list[ResearchProvider] | None = None,
        *,
        timeout: float | None = None,
        max_parallel: int | None = None,
    ):
        self.providers = providers if providers is not None else get_research_providers()
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._semaphore = asyncio.Semaphore(
            max(max_parallel if max_parallel is not None else settings.max_parallel_provider_calls, 1)
        )
        self._lock = asyncio.Lock()
        self._contributions: dict[str, int] = {p.name: 0 for p in self.providers}

    async def _call(
        self,
        provider: ResearchProvider,
        entity: CandidateEntity,
        context: str,
    ) -> RawResearch:
        t0 = time.monotonic()
        try:
            async with self._semaphore:
                result = await asyncio.wait_for(
                    provider.research(entity.name, entity.query_type, context),
                    timeout=self.timeout,
                )
        except asyncio.TimeoutError as e:
            raise ProviderError(provider.name, entity.name, f"timed out after {self.timeout}s") from e
        except Exception as e:
            raise ProviderError(provider.name, entity.name, str(e) or type(e).__name__) from e

        log_service.log_provider_call(
            provider=provider.name,
            entity=entity.name,
            duration_ms=int((time.monotonic() - t0) * 1000),
            chars=len(result.content),
        )
        return RawResearch(
            entity_name=entity.name,
            provider=provider.name,
            content=result.content,
            fetched_at=result.fetched_at,
            citations=result.citations,
        )

    async def fetch(
        self,
        entity: CandidateEntity,
        schema: ResolvedSchema,
        query: Query,
    ) -> list[RawResearch]:
        """Collect research from all providers; failed providers contribute nothing."""
        context = enrichment_query(entity, schema, query)
        outcomes = await asyncio.gather(
            *(self._call(p, entity, context) for p in self.providers),
            return_exceptions=True,
        )

        research: list[RawResearch] = []
        for outcome in outcomes:
            if isinstance(outcome, ProviderError):
                log_service.log_provider_call(
                    provider=outcome.provider,
                    entity=outcome.entity,
                    duration_ms=0,
                    status="error",
                    error=outcome.reason,
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if not outcome.content.strip():
                continue
            async with self._lock:
                self._contributions[outcome.provider] = self._contributions.get(outcome.provider, 0) + 1
            research.append(outcome)
        return research

    def source_breakdown(self) -> dict[str, int]:
        return {name: count for name, count in self._contributions.items() if count}

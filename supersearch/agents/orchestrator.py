from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator

from loguru import logger

from supersearch.agents.entity_discovery import EntityDiscovery
from supersearch.agents.extractor import StructuredExtractor
from supersearch.agents.schema_resolver import SchemaResolver
from supersearch.config import settings
from supersearch.errors import ExtractionError, RunFatalError, SchemaResolutionError
from supersearch.models.events import SSEEvent
from supersearch.models.query import Query
from supersearch.models.records import CandidateEntity, CompanyRecord, ContactRecord
from supersearch.models.results import AggregateOptions, ResultSet
from supersearch.models.run import RunPhase
from supersearch.models.schema import ResolvedSchema
from supersearch.services import logger as log_service
from supersearch.services import streaming
from supersearch.services.aggregator import aggregate
from supersearch.services.collaborators import CountingResultSink, ResultSink, SaveSummary
from supersearch.services.research_fetcher import ResearchFetcher
from supersearch.services.session_store import SessionStore, get_session_store
from supersearch.tools.research_provider import ResearchProvider, get_research_providers


@dataclass
class UnitOutcome:
    """What one per-entity fetch/extract unit produced."""

    entity: CandidateEntity
    record: CompanyRecord | ContactRecord | None = None
    error: str | None = None
    skipped: bool = False


def default_aggregate_options() -> AggregateOptions:
    return AggregateOptions(
        max_per_parent=settings.max_per_parent,
        min_relevance=settings.min_relevance,
        missing_relevance=settings.missing_relevance_default,
    )


class SuperSearchOrchestrator:
    """Runs one query through the whole pipeline.

    Flow:
      1. Serve a fresh cached ResultSet for the fingerprint, unless refreshing
      2. Resolve the result schema (fatal on failure)
      3. Discover candidate entities
      4. Fan out: fetch research and extract one record per entity, bounded
         by `max_parallel_entities`
      5. Aggregate and rank the collected records
      6. Hand the result to the saved-list sink when the query names a list,
         persist, emit `complete`

    Per-entity failures are recorded and skipped. Cancellation and the
    global timeout stop new entity units from starting; units already
    running finish under their own timeouts.
    """

    def __init__(
        self,
        *,
        store: SessionStore | None = None,
        schema_resolver: SchemaResolver | None = None,
        discovery: EntityDiscovery | None = None,
        extractor: StructuredExtractor | None = None,
        providers: list[ResearchProvider] | None = None,
        result_sink: ResultSink | None = None,
        aggregate_options: AggregateOptions | None = None,
        max_parallel_entities: int | None = None,
        run_timeout: float | None = None,
    ):
        self.store = store or get_session_store()
        self._providers = providers
        self.schema_resolver = schema_resolver or SchemaResolver()
        self.discovery = discovery or EntityDiscovery(providers=providers)
        self.extractor = extractor or StructuredExtractor()
        self.result_sink = result_sink or CountingResultSink()
        self.aggregate_options = aggregate_options or default_aggregate_options()
        self.max_parallel_entities = max(
            int(max_parallel_entities or settings.max_parallel_entities), 1
        )
        self.run_timeout = run_timeout if run_timeout is not None else settings.run_timeout_seconds

    @property
    def providers(self) -> list[ResearchProvider]:
        if self._providers is None:
            self._providers = get_research_providers()
        return self._providers

    async def _progress(
        self,
        run_id: str,
        phase: RunPhase,
        completed: int,
        total: int,
        message: str,
    ) -> SSEEvent:
        progress = await self.store.advance(run_id, phase.value, completed, total, message)
        return streaming.progress(
            progress.phase,
            progress.completed,
            progress.total,
            progress.message,
            run_completed=progress.run_completed,
            run_total=progress.run_total,
        )

    async def search(
        self,
        query: Query,
        *,
        run_id: str | None = None,
        refresh: bool = False,
        user_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[SSEEvent, None]:
        """Run the pipeline, yielding SSE events as it goes.

        Always ends with exactly one terminal event: `complete`, `cancelled`
        or `error`.
        """
        cancel_event = cancel_event or asyncio.Event()
        started = time.monotonic()
        run_id = await self.store.begin_run(query, user_id, run_id=run_id)
        log_service.log_pipeline_step(run_id, "start", "running", {"query": query.text})

        try:
            if not refresh:
                cached = await self.store.load(query.fingerprint)
                if cached is not None and await self.store.is_fresh(cached):
                    async for event in self._replay_cached(run_id, cached):
                        yield event
                    return

            yield await self._progress(
                run_id, RunPhase.RESOLVING_SCHEMA, 0, 1, "Analyzing your query..."
            )
            schema = await self.schema_resolver.resolve(query)
            await self.store.set_schema(run_id, schema)
            yield streaming.plan(schema, run_id=run_id)

            yield await self._progress(
                run_id, RunPhase.DISCOVERING, 0, schema.target_count, "Finding candidates..."
            )
            entities: list[CandidateEntity] = []
            async for entity in self.discovery.discover(query, schema):
                entities.append(entity)
                yield streaming.entity_discovered(entity)
            log_service.log_pipeline_step(
                run_id, RunPhase.DISCOVERING.value, "done", {"entities": len(entities)}
            )

            if cancel_event.is_set():
                async for event in self._cancel(run_id):
                    yield event
                return
            if not entities:
                raise RunFatalError("No entities were discovered for this query")

            fetcher = ResearchFetcher(self.providers)
            outcomes: list[UnitOutcome] = []
            async for event in self._research_entities(
                run_id, query, schema, entities, fetcher, cancel_event, started, outcomes
            ):
                yield event

            if cancel_event.is_set():
                async for event in self._cancel(run_id):
                    yield event
                return

            records = [o.record for o in outcomes if o.record is not None]
            failed = [o.entity.name for o in outcomes if o.error]
            skipped = [o.entity.name for o in outcomes if o.skipped]
            if skipped:
                logger.warning(
                    f"Run {run_id} hit its {self.run_timeout}s limit; "
                    f"{len(skipped)} entities were not researched"
                )
            if not records:
                raise RunFatalError(
                    f"None of the {len(entities)} discovered entities could be researched"
                )

            yield await self._progress(
                run_id, RunPhase.AGGREGATING, 0, len(records), "Ranking results..."
            )
            ranked = aggregate(records, self.aggregate_options)
            result_set = ranked.model_copy(
                update={
                    "fingerprint": query.fingerprint,
                    "query": query.text,
                    "resolved_schema": schema,
                    "target_count": schema.target_count,
                    "source_breakdown": fetcher.source_breakdown(),
                    "failed_entities": failed,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "completed_at": datetime.now(timezone.utc),
                }
            )
            for record in result_set.records:
                yield streaming.result(record)

            yield await self._progress(
                run_id, RunPhase.SAVING, 0, len(result_set.records), "Saving results..."
            )
            summary = await self._save(user_id, query.list_id, result_set)

            await self.store.complete(run_id, result_set)
            log_service.log_pipeline_step(
                run_id,
                RunPhase.COMPLETED.value,
                "completed",
                {
                    "records": len(result_set.records),
                    "failed_entities": len(failed),
                    "duration_ms": result_set.duration_ms,
                },
            )
            yield streaming.complete(
                result_set,
                companies_saved=summary.companies_saved,
                contacts_saved=summary.contacts_saved,
            )

        except asyncio.CancelledError:
            await self.store.cancel(run_id)
            raise
        except (SchemaResolutionError, RunFatalError) as e:
            logger.error(f"Run {run_id} failed: {e}")
            await self.store.fail(run_id, str(e))
            log_service.log_pipeline_step(run_id, "failed", "error", {"error": str(e)})
            yield streaming.error(str(e), retryable=True)
        except Exception as e:
            logger.exception(f"Run {run_id} crashed")
            message = f"Search failed: {e}"
            await self.store.fail(run_id, message)
            yield streaming.error(message, retryable=False)

    async def _replay_cached(self, run_id: str, cached: ResultSet) -> AsyncGenerator[SSEEvent, None]:
        logger.info(f"Serving cached result for fingerprint {cached.fingerprint[:12]}")
        await self.store.complete(run_id, cached)
        if cached.resolved_schema is not None:
            yield streaming.plan(cached.resolved_schema, run_id=run_id)
        for record in cached.records:
            yield streaming.result(record)
        yield streaming.complete(cached)

    async def _cancel(self, run_id: str) -> AsyncGenerator[SSEEvent, None]:
        await self.store.cancel(run_id)
        log_service.log_pipeline_step(run_id, "cancelled", "cancelled")
        yield streaming.cancelled("Search cancelled")

    async def _save(self, user_id: str | None, list_id: int | None, result_set: ResultSet) -> SaveSummary:
        if list_id is None:
            return SaveSummary()
        try:
            return await self.result_sink.save(user_id, list_id, result_set)
        except Exception as e:
            logger.error(f"Saving results failed, returning them unsaved: {e!r}")
            return SaveSummary()

    async def _research_entities(
        self,
        run_id: str,
        query: Query,
        schema: ResolvedSchema,
        entities: list[CandidateEntity],
        fetcher: ResearchFetcher,
        cancel_event: asyncio.Event,
        started: float,
        outcomes: list[UnitOutcome],
    ) -> AsyncGenerator[SSEEvent, None]:
        """Fan out fetch and extract per entity, appending to `outcomes`."""
        semaphore = asyncio.Semaphore(self.max_parallel_entities)
        deadline = started + self.run_timeout
        total = len(entities)

        async def run_unit(entity: CandidateEntity) -> UnitOutcome:
            async with semaphore:
                if cancel_event.is_set() or time.monotonic() >= deadline:
                    return UnitOutcome(entity=entity, skipped=True)
                try:
                    research = await fetcher.fetch(entity, schema, query)
                    if not research:
                        return UnitOutcome(entity=entity, error="no provider returned research")
                    record = await self.extractor.extract(
                        entity, research, schema, query_text=query.text
                    )
                except ExtractionError as e:
                    logger.warning(str(e))
                    return UnitOutcome(entity=entity, error=e.reason)
                except Exception as e:
                    logger.exception(f"Research unit for '{entity.name}' crashed")
                    return UnitOutcome(entity=entity, error=str(e) or type(e).__name__)
                return UnitOutcome(entity=entity, record=record)

        yield await self._progress(
            run_id, RunPhase.RESEARCHING, 0, total, f"Researching {total} entities..."
        )
        tasks = [asyncio.create_task(run_unit(entity)) for entity in entities]
        done_count = 0
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                outcomes.append(outcome)
                if outcome.skipped:
                    continue
                done_count += 1
                status = "failed" if outcome.error else "done"
                yield await self._progress(
                    run_id,
                    RunPhase.RESEARCHING,
                    done_count,
                    total,
                    f"Researched {outcome.entity.name} ({done_count}/{total}, {status})",
                )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

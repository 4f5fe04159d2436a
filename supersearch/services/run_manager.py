from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import AsyncGenerator, Callable
from uuid import uuid4

from loguru import logger

from supersearch.agents.orchestrator import SuperSearchOrchestrator
from supersearch.errors import RunNotFoundError
from supersearch.models.events import SSEEvent
from supersearch.models.query import Query
from supersearch.services import streaming

MAX_TRACKED_RUNS = 200


@dataclass
class RunHandle:
    run_id: str
    fingerprint: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)
    events: list[SSEEvent] = field(default_factory=list)
    finished: bool = False
    task: asyncio.Task | None = None


class RunManager:
    """Drives orchestrator runs as background tasks.

    Every event a run emits is numbered and kept, so any number of stream
    subscribers can attach late or reconnect with `Last-Event-ID` and replay
    from where they left off. Stopping a subscriber never stops the run.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[[], SuperSearchOrchestrator] | None = None,
        *,
        max_tracked_runs: int = MAX_TRACKED_RUNS,
    ):
        self._factory = orchestrator_factory or SuperSearchOrchestrator
        self._orchestrator: SuperSearchOrchestrator | None = None
        self._runs: OrderedDict[str, RunHandle] = OrderedDict()
        self.max_tracked_runs = max(max_tracked_runs, 1)

    @property
    def orchestrator(self) -> SuperSearchOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = self._factory()
        return self._orchestrator

    async def start(
        self,
        query: Query,
        *,
        user_id: str | None = None,
        refresh: bool = False,
    ) -> str:
        orchestrator = self.orchestrator
        run_id = str(uuid4())
        await orchestrator.store.begin_run(query, user_id, run_id=run_id)

        handle = RunHandle(run_id=run_id, fingerprint=query.fingerprint)
        self._runs[run_id] = handle
        self._evict_finished()
        handle.task = asyncio.create_task(
            self._drive(handle, orchestrator, query, user_id=user_id, refresh=refresh)
        )
        logger.info(f"Started run {run_id} for '{query.text}'")
        return run_id

    async def _drive(
        self,
        handle: RunHandle,
        orchestrator: SuperSearchOrchestrator,
        query: Query,
        *,
        user_id: str | None,
        refresh: bool,
    ) -> None:
        terminal_seen = False
        try:
            async for event in orchestrator.search(
                query,
                run_id=handle.run_id,
                refresh=refresh,
                user_id=user_id,
                cancel_event=handle.cancel_event,
            ):
                terminal_seen = terminal_seen or event.event.is_terminal
                await self._publish(handle, event)
        except asyncio.CancelledError:
            if not terminal_seen:
                await self._publish(handle, streaming.cancelled("Search stopped"))
            raise
        except Exception as e:
            logger.exception(f"Run {handle.run_id} stopped unexpectedly")
            if not terminal_seen:
                await self._publish(handle, streaming.error(f"Search failed: {e}", retryable=False))
        finally:
            async with handle.condition:
                handle.finished = True
                handle.condition.notify_all()

    async def _publish(self, handle: RunHandle, event: SSEEvent) -> None:
        async with handle.condition:
            event.id = len(handle.events) + 1
            handle.events.append(event)
            handle.condition.notify_all()

    def _evict_finished(self) -> None:
        while len(self._runs) > self.max_tracked_runs:
            oldest_id = next(
                (run_id for run_id, h in self._runs.items() if h.finished),
                None,
            )
            if oldest_id is None:
                return
            del self._runs[oldest_id]

    def get(self, run_id: str) -> RunHandle:
        handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return handle

    async def subscribe(self, run_id: str, *, after: int = 0) -> AsyncGenerator[SSEEvent, None]:
        """Yield the run's events with id > `after`, then follow it live until it ends."""
        handle = self.get(run_id)
        index = max(after, 0)
        while True:
            async with handle.condition:
                await handle.condition.wait_for(
                    lambda: len(handle.events) > index or handle.finished
                )
                pending = handle.events[index:]
                finished = handle.finished
            for event in pending:
                yield event
            index += len(pending)
            if finished and index >= len(handle.events):
                return

    def cancel(self, run_id: str) -> bool:
        """Ask a run to stop starting new work. Returns False if it already ended."""
        handle = self.get(run_id)
        if handle.finished:
            return False
        handle.cancel_event.set()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    async def shutdown(self) -> None:
        tasks = [h.task for h in self._runs.values() if h.task and not h.task.done()]
        for handle in self._runs.values():
            handle.cancel_event.set()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

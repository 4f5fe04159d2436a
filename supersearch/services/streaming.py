from __future__ import annotations

from typing import Any

from supersearch.models.events import EventType, SSEEvent
from supersearch.models.records import CandidateEntity, CompanyRecord, ContactRecord
from supersearch.models.results import ResultSet
from supersearch.models.schema import ResolvedSchema


def plan(schema: ResolvedSchema, *, run_id: str | None = None) -> SSEEvent:
    """Emit the resolved schema as the run's plan."""
    data: dict[str, Any] = schema.model_dump(mode="json")
    if run_id:
        data["run_id"] = run_id
    return SSEEvent(event=EventType.PLAN, data=data)


def progress(
    phase: str,
    completed: int,
    total: int,
    message: str = "",
    *,
    run_completed: int = 0,
    run_total: int = 0,
) -> SSEEvent:
    return SSEEvent(
        event=EventType.PROGRESS,
        data={
            "phase": phase,
            "completed": completed,
            "total": total,
            "message": message,
            "run_completed": run_completed,
            "run_total": run_total,
        },
    )


def entity_discovered(entity: CandidateEntity) -> SSEEvent:
    return SSEEvent(
        event=EventType.ENTITY_DISCOVERED,
        data={
            "name": entity.name,
            "query_type": entity.query_type,
            "index": entity.discovery_index,
        },
    )


def result(record: CompanyRecord | ContactRecord) -> SSEEvent:
    return SSEEvent(event=EventType.RESULT, data=record.model_dump(mode="json"))


def complete(
    result_set: ResultSet,
    *,
    companies_saved: int = 0,
    contacts_saved: int = 0,
) -> SSEEvent:
    data = result_set.model_dump(mode="json")
    data["total_results"] = len(result_set.records)
    data["companies_saved"] = companies_saved
    data["contacts_saved"] = contacts_saved
    return SSEEvent(event=EventType.COMPLETE, data=data)


def cancelled(reason: str) -> SSEEvent:
    return SSEEvent(event=EventType.CANCELLED, data={"message": reason})


def error(message: str, *, retryable: bool = True) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"message": message, "retryable": retryable})

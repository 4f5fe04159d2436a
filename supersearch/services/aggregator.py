from __future__ import annotations

from typing import Iterable

from supersearch.models.records import CompanyRecord, ContactRecord, identity_key, parent_key
from supersearch.models.results import AggregateOptions, ResultSet

Record = CompanyRecord | ContactRecord


def effective_relevance(record: Record, missing: float = 0.0) -> float:
    return record.relevance if record.relevance is not None else missing


def aggregate(records: Iterable[Record], options: AggregateOptions | None = None) -> ResultSet:
    """Deduplicate, cap per parent and rank records in one left-to-right pass.

    Input is first put back into discovery order so the output does not depend
    on which extraction finished first. The sort is stable, so equal scores
    keep discovery order. Feeding the output back in yields the same records.
    """
    options = options or AggregateOptions()
    ordered = sorted(records, key=lambda r: r.discovery_index)

    eligible = [
        r
        for r in ordered
        if (r.name or "").strip()
        and effective_relevance(r, options.missing_relevance) >= options.min_relevance
    ]
    eligible.sort(key=lambda r: effective_relevance(r, options.missing_relevance), reverse=True)

    emitted: list[Record] = []
    seen_keys: set[str] = set()
    per_parent: dict[str, int] = {}

    for record in eligible:
        key = identity_key(record)
        if key in seen_keys:
            continue
        parent = parent_key(record)
        if parent is not None and per_parent.get(parent, 0) >= options.max_per_parent:
            continue
        emitted.append(record)
        seen_keys.add(key)
        if parent is not None:
            per_parent[parent] = per_parent.get(parent, 0) + 1

    return ResultSet(
        records=emitted,
        total_companies=sum(1 for r in emitted if r.type == "company"),
        total_contacts=sum(1 for r in emitted if r.type == "contact"),
    )

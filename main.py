"""Super Search - structured entity research

Simple CLI for running super search queries.
"""

import argparse
import asyncio

from supersearch.agents.orchestrator import SuperSearchOrchestrator
from supersearch.models.query import Query


def _format_record(record: dict) -> str:
    relevance = record.get("relevance")
    score = f"{relevance:.0f}" if isinstance(relevance, (int, float)) else "-"
    if record.get("type") == "contact":
        detail = ", ".join(v for v in (record.get("role"), record.get("company")) if v)
    else:
        detail = record.get("website") or ""
    line = f"  [{score:>3}] {record.get('name')}"
    return f"{line} ({detail})" if detail else line


async def run_search(query: Query, refresh: bool = False):
    """Run a super search for the given query."""
    print(f"Super search: {query.text}")
    print("-" * 50)

    orchestrator = SuperSearchOrchestrator()

    async for event in orchestrator.search(query, refresh=refresh):
        event_type = event.event.value
        data = event.data

        if event_type == "plan":
            print(f"\n[*] Looking for {data.get('target_count')} {data.get('query_type')} results")
            print(f"    Fields: {', '.join(data.get('standard_fields', []))}")
            custom = [f.get("label", "") for f in data.get("custom_fields", [])]
            if custom:
                print(f"    Custom: {', '.join(custom)}")
            if data.get("search_strategy"):
                print(f"    Strategy: {data['search_strategy']}")

        elif event_type == "entity_discovered":
            print(f"  [+] {data.get('name')}")

        elif event_type == "progress":
            print(f"[~] {data.get('message', '')}")

        elif event_type == "complete":
            print(f"\n[*] Search Complete!")
            print(f"   Results: {data.get('total_results')}")
            print(f"   Runtime: {data.get('duration_ms')}ms")
            print(f"   Sources: {data.get('source_breakdown')}")
            if data.get("is_cached"):
                print("   (served from cache)")
            if data.get("failed_entities"):
                print(f"   Failed: {', '.join(data['failed_entities'])}")
            print(f"\n{'='*50}")
            for record in data.get("records", []):
                print(_format_record(record))

        elif event_type == "cancelled":
            print(f"\n[!] Cancelled: {data.get('message', '')}")

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}")


def main():
    parser = argparse.ArgumentParser(description="Super Search structured entity research")
    parser.add_argument("--query", "-q", required=True, help="Search query")
    parser.add_argument("--refresh", action="store_true", help="Ignore cached results")
    parser.add_argument("--max-results", "-n", type=int, help="Target number of results (5-20)")
    parser.add_argument("--variant", help="Variant flag carried in the cache key")

    args = parser.parse_args()

    query = Query(text=args.query, target_count=args.max_results, variant=args.variant)
    asyncio.run(run_search(query, refresh=args.refresh))


if __name__ == "__main__":
    main()

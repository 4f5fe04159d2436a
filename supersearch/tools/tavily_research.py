from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from supersearch.config import settings
from supersearch.tools.research_provider import ProviderResult


class TavilyResearch:
    """Tavily search with a generated answer, flattened into research text."""

    name = "tavily"

    def __init__(self, *, max_results: int = 5, search_depth: str = "advanced"):
        self.max_results = max_results
        self.search_depth = search_depth

    async def research(
        self,
        entity_name: str,
        query_type: str,
        context: str,
    ) -> ProviderResult:
        if not settings.tavily_api_key:
            raise RuntimeError("TAVILY_API_KEY is not configured")

        client = AsyncTavilyClient(api_key=settings.tavily_api_key)
        # Tavily caps query length at 400 characters.
        kwargs: dict[str, Any] = {
            "query": (context or entity_name)[:400],
            "search_depth": self.search_depth,
            "max_results": self.max_results,
            "include_answer": True,
        }
        response = await client.search(**kwargs)

        sections: list[str] = []
        answer = (response.get("answer") or "").strip()
        if answer:
            sections.append(answer)

        citations: list[str] = []
        for r in response.get("results", []):
            url = r.get("url", "")
            snippet = (r.get("content") or "").strip()
            if url:
                citations.append(url)
            if snippet:
                sections.append(f"[{r.get('title', '')}]({url})\n{snippet}")

        return ProviderResult(content="\n\n".join(sections), citations=citations)

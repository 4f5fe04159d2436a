from __future__ import annotations

from typing import Any

import httpx

from supersearch.config import settings
from supersearch.tools.research_provider import ProviderResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveResearch:
    """Brave web search; snippets are concatenated into research text."""

    name = "brave"

    def __init__(self, *, max_results: int = 10):
        self.max_results = max_results

    async def research(
        self,
        entity_name: str,
        query_type: str,
        context: str,
    ) -> ProviderResult:
        if not settings.brave_api_key:
            raise RuntimeError("BRAVE_API_KEY is not configured")

        params: dict[str, Any] = {
            "q": context or entity_name,
            "count": self.max_results,
            "extra_snippets": "true",
        }

        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": settings.brave_api_key,
                },
            )
            response.raise_for_status()
            payload = response.json()

        sections: list[str] = []
        citations: list[str] = []
        for item in payload.get("web", {}).get("results", []):
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            text = " ".join([description.strip(), *(s.strip() for s in snippets)]).strip()
            url = item.get("url", "")
            if url:
                citations.append(url)
            if text:
                sections.append(f"[{item.get('title', '')}]({url})\n{text}")

        return ProviderResult(content="\n\n".join(sections), citations=citations)

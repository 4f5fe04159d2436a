from __future__ import annotations

from typing import Any

import httpx

from supersearch.config import settings
from supersearch.services.prompt_store import render_prompt
from supersearch.tools.research_provider import ProviderResult


class PerplexityResearch:
    """Sonar chat completions; returns the answer text plus its citations."""

    name = "perplexity"

    def __init__(self, *, model: str | None = None, max_tokens: int = 4000):
        self.model = model or settings.perplexity_model
        self.max_tokens = max_tokens

    async def research(
        self,
        entity_name: str,
        query_type: str,
        context: str,
    ) -> ProviderResult:
        if not settings.perplexity_api_key:
            raise RuntimeError("PERPLEXITY_API_KEY is not configured")

        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": render_prompt("research.system_prompt")},
                {"role": "user", "content": context or entity_name},
            ],
            "temperature": 0.1,
            "max_tokens": self.max_tokens,
        }
        base_url = settings.perplexity_base_url.rstrip("/")

        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            response = await client.post(
                f"{base_url}/chat/completions",
                json=body,
                headers={
                    "Authorization": f"Bearer {settings.perplexity_api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            payload = response.json()

        choices = payload.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        content = (message.get("content") or "").strip()

        citations = [c for c in payload.get("citations", []) or [] if isinstance(c, str)]
        if not citations:
            citations = [
                r.get("url", "")
                for r in payload.get("search_results", []) or []
                if isinstance(r, dict) and r.get("url")
            ]
        return ProviderResult(content=content, citations=citations)

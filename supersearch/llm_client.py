"""OpenRouter access for the structured-output calls (schema, listing, extraction)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from supersearch.config import settings

OPENROUTER_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class Completion:
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


def _temperature(model: str) -> int:
    # GPT-5 family models only accept the default temperature.
    return 1 if "gpt-5" in (model or "").lower() else 0


class OpenRouterChat:
    """Chat completions through the OpenAI SDK, pointed at OpenRouter.

    Callers pass the system prompt separately from the conversation turns;
    `json_mode` asks the gateway for a bare JSON object reply.
    """

    def __init__(self, openai_client: Any):
        self._client = openai_client

    async def complete(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        json_mode: bool = False,
    ) -> Completion:
        request: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                *({"role": m["role"], "content": str(m["content"])} for m in messages),
            ],
            "max_tokens": max_tokens,
            "temperature": _temperature(model),
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**request)

        usage = getattr(response, "usage", None)
        return Completion(
            text=(response.choices[0].message.content or "").strip(),
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


def get_model() -> str:
    """Model id used when an agent is not given one explicitly."""
    return settings.openrouter_model or settings.default_model


_chat: OpenRouterChat | None = None


def client() -> OpenRouterChat:
    """Shared OpenRouter chat client, created on first use."""
    global _chat
    if _chat is None:
        from openai import AsyncOpenAI

        _chat = OpenRouterChat(
            AsyncOpenAI(
                api_key=settings.openrouter_api_key,
                base_url=settings.openrouter_base_url.strip() or OPENROUTER_DEFAULT_BASE_URL,
            )
        )
    return _chat

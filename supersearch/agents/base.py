from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, TypeVar

from loguru import logger

from supersearch.config import settings
from supersearch.errors import SuperSearchError
from supersearch.llm_client import Completion, client as llm_client, get_model
from supersearch.services import logger as log_service
from supersearch.services.prompt_store import render_prompt

T = TypeVar("T")


class StructuredOutputError(SuperSearchError):
    """No parseable, valid JSON object after all retries were spent."""

    def __init__(self, caller: str, attempts: int, reason: str):
        super().__init__(f"{caller}: no valid structured output after {attempts} attempt(s): {reason}")
        self.caller = caller
        self.attempts = attempts
        self.reason = reason


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model response.

    Handles markdown fences and leading/trailing prose around the object.
    """
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


class StructuredAgent:
    """Base agent for single-shot JSON calls to the structured-output service.

    `request_structured` sends one system/user exchange, parses the reply into
    a JSON object and hands it to a caller-supplied parser. Parse or
    validation failures are fed back to the model as a repair turn until the
    retries are spent. Transport errors and timeouts are not retried here;
    they propagate to the caller, which decides whether they are fatal.
    """

    name: str = "base"
    max_tokens: int = 2000

    def __init__(
        self,
        model: str | None = None,
        *,
        client: Any | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
    ):
        self.model = model or get_model()
        self.client = client
        retries = settings.llm_structured_retry_max if max_retries is None else max_retries
        self.max_retries = max(int(retries), 0)
        self.timeout = timeout

    async def _complete(self, system: str, messages: list[dict[str, Any]]) -> Completion:
        active_client = self.client or llm_client()
        call = active_client.complete(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=messages,
            json_mode=True,
        )
        t0 = time.monotonic()
        try:
            if self.timeout:
                response = await asyncio.wait_for(call, timeout=self.timeout)
            else:
                response = await call
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e) or type(e).__name__,
            )
            raise

        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    async def request_structured(
        self,
        system: str,
        user_message: str,
        parse: Callable[[dict[str, Any]], T],
    ) -> T:
        messages: list[dict[str, Any]] = [{"role": "user", "content": user_message}]
        attempts = self.max_retries + 1
        last_error = "empty response"

        for attempt in range(1, attempts + 1):
            response = await self._complete(system, messages)
            text = response.text
            try:
                return parse(extract_json_object(text))
            except (ValueError, TypeError) as e:
                # pydantic.ValidationError and JSONDecodeError are both ValueErrors.
                last_error = " ".join(str(e).split())[:300] or type(e).__name__
                logger.warning(
                    f"{self.name}: invalid structured output "
                    f"(attempt {attempt}/{attempts}): {last_error}"
                )
                messages = [
                    *messages,
                    {"role": "assistant", "content": text or "(empty)"},
                    {
                        "role": "user",
                        "content": render_prompt(
                            "structured_output.repair_prompt", error=last_error
                        ),
                    },
                ]

        raise StructuredOutputError(self.name, attempts, last_error)
